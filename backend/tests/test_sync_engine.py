import httpx
import pytest

from app.models_sqlalchemy.models import NormalizedData, RawApiData, SyncJobStatus
from app.services.sync.engine import SyncEngine, build_auth_headers
from app.services.sync.errors import JobNotRetryable
from app.services.sync.job_state import get_job
from app.services.sync.rate_limiter import RateLimiter

BASE_URL = "https://api.example.com"

POSTS = [
    {"id": 1, "title": "first", "userId": 10},
    {"id": 2, "title": "second", "userId": 11},
]

POST_MAPPINGS = {
    "mappings": [
        {"source": "id", "target": "postId", "type": "number", "isEntityKey": True},
        {"source": "title", "target": "title", "type": "string"},
    ]
}


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class Upstream:
    """httpx.MockTransport handler serving canned responses per path.

    A route is a handler ``request -> Response`` or a list of handlers used
    in turn, the last one repeating.
    """

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        return route(request)


def reply(status_code, **kwargs):
    return lambda request: httpx.Response(status_code, **kwargs)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_engine(session_factory, sleeper):
    def _make(upstream: Upstream, **kwargs) -> SyncEngine:
        kwargs.setdefault("initial_backoff_seconds", 0.5)
        kwargs.setdefault("default_max_retries", 3)
        return SyncEngine(
            session_factory,
            rate_limiter=RateLimiter(sleep=sleeper),
            transport=httpx.MockTransport(upstream),
            **kwargs,
        )

    return _make


def _messages(job):
    return [entry["message"] for entry in job.logs]


def _reload(session_factory, job_id):
    db = session_factory()
    try:
        job = get_job(db, job_id)
        db.expunge(job)
        return job
    finally:
        db.close()


@pytest.mark.asyncio
async def test_trigger_returns_pending_then_completes(
    session_factory, make_connector, make_engine, admin_user
):
    connector = make_connector(
        admin_user,
        endpoint_config=[{"path": "/posts", "method": "GET"}],
        field_mapping_config=POST_MAPPINGS,
    )
    upstream = Upstream({"/posts": reply(200, json=POSTS)})
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)

    assert summary.status == SyncJobStatus.PENDING.value
    assert summary.connector_id == connector.id
    assert _reload(session_factory, summary.id).status == "PENDING"

    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "SUCCESS"
    assert job.started_at is not None
    assert job.completed_at is not None
    assert job.error is None
    assert _messages(job) == [
        "Sync job started",
        f"Fetching data from {BASE_URL}",
        f"Fetching GET {BASE_URL}/posts",
        f"Successfully fetched data from {BASE_URL}/posts",
        "Normalized and stored 2 records",
        "Sync job completed successfully",
    ]
    timestamps = [entry["timestamp"] for entry in job.logs]
    assert timestamps == sorted(timestamps)
    assert engine.active_job_count == 0


@pytest.mark.asyncio
async def test_raw_and_normalized_records_are_persisted(
    db, make_connector, make_engine, admin_user
):
    connector = make_connector(
        admin_user,
        endpoint_config=[{"path": "/posts", "method": "GET"}],
        field_mapping_config=POST_MAPPINGS,
    )
    engine = make_engine(Upstream({"/posts": reply(200, json=POSTS)}))

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    raw = db.query(RawApiData).filter(RawApiData.sync_job_id == summary.id).all()
    assert len(raw) == 1
    assert raw[0].endpoint == f"{BASE_URL}/posts"
    assert raw[0].response == POSTS

    normalized = (
        db.query(NormalizedData)
        .filter(NormalizedData.sync_job_id == summary.id)
        .order_by(NormalizedData.entity_key)
        .all()
    )
    assert [n.entity_key for n in normalized] == ["1", "2"]
    assert normalized[0].data == {"postId": 1, "title": "first"}
    assert normalized[0].connector_id == connector.id
    assert normalized[0].record_metadata["endpoint"] == f"{BASE_URL}/posts"
    assert normalized[0].record_metadata["normalizedAt"].endswith("Z")


@pytest.mark.asyncio
async def test_endpoints_run_in_order_and_partial_failure_keeps_earlier_records(
    db, session_factory, make_connector, make_engine, admin_user
):
    connector = make_connector(
        admin_user,
        endpoint_config=[
            {"path": "/a", "method": "GET"},
            {"path": "/b", "method": "GET"},
            {"path": "/c", "method": "GET"},
        ],
    )
    upstream = Upstream({
        "/a": reply(200, json={"ok": True}),
        "/b": reply(500),
        "/c": reply(200, json={"never": "fetched"}),
    })
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "FAILED"
    assert job.error == "HTTP 500: Internal Server Error"
    assert [r.url.path for r in upstream.requests] == ["/a", "/b"]
    assert _messages(job)[-2:] == [
        f"Failed to fetch {BASE_URL}/b: HTTP 500: Internal Server Error",
        "Sync job failed: HTTP 500: Internal Server Error",
    ]
    assert job.logs[-1]["level"] == "error"

    raw = db.query(RawApiData).filter(RawApiData.sync_job_id == summary.id).all()
    assert [r.endpoint for r in raw] == [f"{BASE_URL}/a"]


@pytest.mark.asyncio
async def test_429_is_retried_with_backoff(session_factory, make_connector, make_engine, admin_user, sleeper):
    connector = make_connector(admin_user, endpoint_config=[{"path": "/items"}])
    upstream = Upstream({
        "/items": [reply(429), reply(429), reply(200, json=[{"id": 1}])],
    })
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    assert _reload(session_factory, summary.id).status == "SUCCESS"
    assert len(upstream.requests) == 3
    assert sleeper.calls == [0.5, 1.0]


@pytest.mark.asyncio
async def test_endpoints_are_paced_by_rate_limit(session_factory, make_connector, admin_user, sleeper):
    connector = make_connector(
        admin_user,
        endpoint_config=[{"path": "/a"}, {"path": "/b"}, {"path": "/c"}],
        rate_limit_config={"requestsPerSecond": 2},
    )
    upstream = Upstream({path: reply(200, json={}) for path in ("/a", "/b", "/c")})
    # frozen clock: every request after the first waits the full interval
    engine = SyncEngine(
        session_factory,
        rate_limiter=RateLimiter(clock=lambda: 100.0, sleep=sleeper),
        transport=httpx.MockTransport(upstream),
    )

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    assert _reload(session_factory, summary.id).status == "SUCCESS"
    assert len(upstream.requests) == 3
    assert sleeper.calls == [0.5, 0.5]


@pytest.mark.asyncio
async def test_api_key_placeholder_is_filled_only_on_the_wire(db, session_factory, make_connector, make_engine, admin_user):
    connector = make_connector(
        admin_user,
        auth_type="API_KEY",
        auth_config={"apiKey": "secret-key-123"},
        endpoint_config=[{"path": "/query?symbol=AAPL&apikey={{apiKey}}"}],
    )
    upstream = Upstream({"/query": reply(200, json={"ok": True})})
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    assert upstream.requests[0].url.params["apikey"] == "secret-key-123"

    job = _reload(session_factory, summary.id)
    assert job.status == "SUCCESS"
    assert f"Fetching GET {BASE_URL}/query?symbol=AAPL&apikey={{{{apiKey}}}}" in _messages(job)
    assert not any("secret-key-123" in message for message in _messages(job))

    raw = db.query(RawApiData).filter(RawApiData.sync_job_id == summary.id).one()
    assert raw.endpoint == f"{BASE_URL}/query?symbol=AAPL&apikey={{{{apiKey}}}}"


@pytest.mark.asyncio
async def test_retry_attempts_from_connector_config(session_factory, make_connector, make_engine, admin_user):
    connector = make_connector(
        admin_user,
        endpoint_config=[{"path": "/items"}],
        rate_limit_config={"retryAttempts": 1},
    )
    upstream = Upstream({"/items": reply(429)})
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "FAILED"
    assert job.error == "HTTP 429: Too Many Requests"
    assert len(upstream.requests) == 2


@pytest.mark.asyncio
async def test_missing_connector_fails_job(session_factory, make_engine, admin_user):
    engine = make_engine(Upstream({}))

    summary = await engine.trigger_sync("no-such-connector", admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "FAILED"
    assert job.error == "Connector not found"
    assert _messages(job) == ["Sync job started", "Sync job failed: Connector not found"]


@pytest.mark.asyncio
async def test_no_endpoints_fails_job(session_factory, make_connector, make_engine, admin_user):
    connector = make_connector(admin_user, endpoint_config=[])
    upstream = Upstream({})
    engine = make_engine(upstream)

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "FAILED"
    assert job.error == "No endpoints configured"
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_transport_error_fails_job(session_factory, make_connector, make_engine, admin_user):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    connector = make_connector(admin_user, endpoint_config=[{"path": "/items"}])
    engine = make_engine(Upstream({"/items": refuse}))

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "FAILED"
    assert job.error == "connection refused"
    assert f"Failed to fetch {BASE_URL}/items: connection refused" in _messages(job)


@pytest.mark.asyncio
async def test_auth_and_content_type_headers_are_sent(make_connector, make_engine, admin_user):
    connector = make_connector(
        admin_user,
        auth_type="API_KEY",
        auth_config={"apiKey": "secret-key-123", "headerName": "X-Finnhub-Token", "headers": {"Accept": "application/json"}},
        endpoint_config=[{"path": "/quote", "method": "get"}],
    )
    upstream = Upstream({"/quote": reply(200, json={"c": 1})})
    engine = make_engine(upstream)

    await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    request = upstream.requests[0]
    assert request.method == "GET"
    assert request.headers["X-Finnhub-Token"] == "secret-key-123"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["Accept"] == "application/json"


@pytest.mark.asyncio
async def test_nan_values_are_stored_as_null(db, make_connector, make_engine, admin_user):
    connector = make_connector(
        admin_user,
        endpoint_config=[{"path": "/prices"}],
        field_mapping_config={
            "mappings": [
                {"source": "sym", "target": "symbol", "isEntityKey": True},
                {"source": "price", "target": "price", "type": "number"},
            ]
        },
    )
    engine = make_engine(Upstream({"/prices": reply(200, json=[{"sym": "X", "price": "n/a"}])}))

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    record = db.query(NormalizedData).filter(NormalizedData.sync_job_id == summary.id).one()
    assert record.data == {"symbol": "X", "price": None}


@pytest.mark.asyncio
async def test_non_json_body_is_stored_as_text(session_factory, db, make_connector, make_engine, admin_user):
    connector = make_connector(admin_user, endpoint_config=[{"path": "/plain"}])
    engine = make_engine(Upstream({"/plain": reply(200, text="hello world")}))

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    assert _reload(session_factory, summary.id).status == "SUCCESS"
    raw = db.query(RawApiData).filter(RawApiData.sync_job_id == summary.id).one()
    assert raw.response == "hello world"


@pytest.mark.asyncio
async def test_without_mappings_no_normalized_records(session_factory, db, make_connector, make_engine, admin_user):
    connector = make_connector(admin_user, endpoint_config=[{"path": "/items"}], field_mapping_config={})
    engine = make_engine(Upstream({"/items": reply(200, json=[{"id": 1}])}))

    summary = await engine.trigger_sync(connector.id, admin_user.id)
    await engine.drain()

    job = _reload(session_factory, summary.id)
    assert job.status == "SUCCESS"
    assert not any(m.startswith("Normalized") for m in _messages(job))
    assert db.query(NormalizedData).count() == 0


@pytest.mark.asyncio
async def test_trigger_requires_ids(make_engine):
    engine = make_engine(Upstream({}))

    with pytest.raises(ValueError):
        await engine.trigger_sync("", "user")
    with pytest.raises(ValueError):
        await engine.trigger_sync("connector", "  ")


@pytest.mark.asyncio
async def test_retry_only_for_failed_jobs(session_factory, make_connector, make_job, make_engine, admin_user):
    connector = make_connector(admin_user, endpoint_config=[{"path": "/items"}])
    engine = make_engine(Upstream({"/items": reply(200, json=[])}))

    done = make_job(connector, admin_user, status="SUCCESS")
    with pytest.raises(JobNotRetryable):
        await engine.retry_job(done.id, admin_user.id)

    failed = make_job(connector, admin_user, status="FAILED")
    new_job = await engine.retry_job(failed.id, admin_user.id)
    await engine.drain()

    assert new_job.id != failed.id
    assert new_job.connector_id == connector.id
    assert _reload(session_factory, new_job.id).status == "SUCCESS"
    assert _reload(session_factory, failed.id).status == "FAILED"


@pytest.mark.asyncio
async def test_concurrent_jobs_each_reach_terminal_state(session_factory, make_connector, make_engine, admin_user):
    first = make_connector(admin_user, endpoint_config=[{"path": "/ok"}])
    second = make_connector(admin_user, endpoint_config=[{"path": "/broken"}])
    engine = make_engine(Upstream({
        "/ok": reply(200, json={"a": 1}),
        "/broken": reply(503),
    }))

    ok = await engine.trigger_sync(first.id, admin_user.id)
    broken = await engine.trigger_sync(second.id, admin_user.id)
    await engine.drain()

    assert _reload(session_factory, ok.id).status == "SUCCESS"
    assert _reload(session_factory, broken.id).status == "FAILED"


def test_build_auth_headers():
    assert build_auth_headers("NONE", {}) == {}
    assert build_auth_headers("API_KEY", {"apiKey": "k"}) == {"X-API-Key": "k"}
    assert build_auth_headers("API_KEY", {"apiKey": "k", "headerName": "X-Token"}) == {"X-Token": "k"}
    assert build_auth_headers("BEARER", {"bearerToken": "t"}) == {"Authorization": "Bearer t"}
    assert build_auth_headers("BEARER", {}) == {}
    assert build_auth_headers("NONE", {"headers": {"X-Extra": 1}}) == {"X-Extra": "1"}
    assert build_auth_headers("API_KEY", None) == {}

