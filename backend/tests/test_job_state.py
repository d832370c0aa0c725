import pytest

from app.models_sqlalchemy.models import SyncJobStatus
from app.services.sync.errors import InvalidJobTransition, JobNotFound
from app.services.sync.job_state import (
    LOG_ERROR,
    LOG_INFO,
    add_log,
    can_transition,
    get_job,
    mark_failed,
    mark_running,
    mark_success,
)


@pytest.fixture
def job(make_connector, make_job, admin_user):
    return make_job(make_connector(admin_user), admin_user)


def test_new_job_is_pending_with_empty_log(job):
    assert job.status == SyncJobStatus.PENDING.value
    assert job.logs == []
    assert job.started_at is None
    assert job.completed_at is None
    assert job.created_at is not None


def test_running_then_success(db, job):
    mark_running(db, job)
    assert job.status == "RUNNING"
    assert job.started_at is not None

    mark_success(db, job)
    assert job.status == "SUCCESS"
    assert job.completed_at is not None
    assert job.error is None


def test_running_then_failed_records_error(db, job):
    mark_running(db, job)
    mark_failed(db, job, error_message="HTTP 500: Internal Server Error")

    reloaded = get_job(db, job.id)
    assert reloaded.status == "FAILED"
    assert reloaded.error == "HTTP 500: Internal Server Error"
    assert reloaded.completed_at is not None


def test_pending_cannot_skip_to_terminal(db, job):
    with pytest.raises(InvalidJobTransition):
        mark_success(db, job)
    with pytest.raises(InvalidJobTransition):
        mark_failed(db, job, error_message="boom")


def test_terminal_jobs_are_never_reopened(db, job):
    mark_running(db, job)
    mark_success(db, job)

    with pytest.raises(InvalidJobTransition):
        mark_running(db, job)
    with pytest.raises(InvalidJobTransition):
        mark_failed(db, job, error_message="late failure")


@pytest.mark.parametrize("current, target, allowed", [
    ("PENDING", "RUNNING", True),
    ("RUNNING", "SUCCESS", True),
    ("RUNNING", "FAILED", True),
    ("PENDING", "SUCCESS", False),
    ("FAILED", "RUNNING", False),
    ("SUCCESS", "FAILED", False),
    ("RUNNING", "PENDING", False),
])
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_add_log_appends_in_order(db, job):
    add_log(db, job.id, LOG_INFO, "first")
    add_log(db, job.id, LOG_INFO, "second")
    add_log(db, job.id, LOG_ERROR, "third")

    logs = get_job(db, job.id).logs
    assert [entry["message"] for entry in logs] == ["first", "second", "third"]
    assert [entry["level"] for entry in logs] == ["info", "info", "error"]
    assert all(entry["timestamp"].endswith("Z") for entry in logs)


def test_add_log_is_visible_from_another_session(session_factory, db, job):
    add_log(db, job.id, LOG_INFO, "hello")

    other = session_factory()
    try:
        assert [e["message"] for e in get_job(other, job.id).logs] == ["hello"]
    finally:
        other.close()


def test_add_log_for_missing_job_is_dropped(db):
    assert add_log(db, "does-not-exist", LOG_INFO, "lost") is None


def test_get_job_missing_raises(db):
    with pytest.raises(JobNotFound):
        get_job(db, "does-not-exist")
