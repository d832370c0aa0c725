"""Parsing of connector ``syncSchedule`` strings into fixed intervals.

Two notations are understood:

- shorthand ``<N><unit>`` with unit ``s``, ``m``, ``h`` or ``d`` (``"15m"``);
- a cron-like string of five or more whitespace separated fields, of which
  only two shapes are recognised: ``*/N * * * *`` (every N minutes) and
  ``0 */N * * *`` (every N hours). Any other cron shape runs hourly.

Anything else, including a zero or non-numeric ``N``, is unparseable and
yields ``None``: such a connector is not scheduled.
"""
from __future__ import annotations

import re
from typing import Optional

HOURLY_SECONDS = 60 * 60

_SHORTHAND_RE = re.compile(r"^(\d+)([smhd])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def _every(field: str) -> Optional[int]:
    """Return N for a ``*/N`` cron field, None when N is not a positive int."""
    step = field[2:]
    if not step.isdigit():
        return None
    value = int(step)
    return value if value > 0 else None


def parse_schedule_to_interval(schedule: Optional[str]) -> Optional[float]:
    """Translate a schedule string into an interval in seconds."""
    if not schedule or not isinstance(schedule, str):
        return None
    schedule = schedule.strip()

    match = _SHORTHAND_RE.match(schedule)
    if match:
        value = int(match.group(1))
        if value <= 0:
            return None
        return float(value * _UNIT_SECONDS[match.group(2)])

    parts = schedule.split()
    if len(parts) < 5:
        return None

    minute, hour = parts[0], parts[1]

    if minute.startswith("*/"):
        minutes = _every(minute)
        return float(minutes * 60) if minutes else None

    if minute == "0" and hour.startswith("*/"):
        hours = _every(hour)
        return float(hours * 60 * 60) if hours else None

    return float(HOURLY_SECONDS)


def describe_interval(seconds: float) -> str:
    """Compact human label for log lines, e.g. ``90s`` or ``6h``."""
    seconds = int(seconds)
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"
