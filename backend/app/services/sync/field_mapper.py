"""Field mapping: raw JSON -> normalized records.

``normalize`` is a pure function. Type coercion deliberately mirrors the
loose JSON semantics connectors were written against (JavaScript-style
``Number()``, truthiness and ``String()``), including two known footguns
that are passed through rather than rejected:

- a ``number`` mapping over non-numeric input yields ``float("nan")``;
- a ``date`` mapping over an unparseable value yields ``"Invalid Date"``.
"""
from __future__ import annotations

import math
import random
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

INVALID_DATE = "Invalid Date"

# Number() literals: ASCII decimal with optional exponent, or an unsigned
# 0x/0o/0b integer. No digit separators.
_DECIMAL_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$", re.ASCII)
_PREFIXED_RE = re.compile(r"^0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")
_INFINITIES = {"Infinity": math.inf, "+Infinity": math.inf, "-Infinity": -math.inf}


@dataclass
class NormalizedItem:
    data: Dict[str, Any] = field(default_factory=dict)
    entity_key: str = ""


def resolve_path(item: Any, path: str) -> Any:
    """Walk a dot-separated path; any missing segment yields None."""
    current = item
    for segment in path.split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def to_number(value: Any) -> Any:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if text in _INFINITIES:
            return _INFINITIES[text]
        if _PREFIXED_RE.match(text):
            return int(text, 0)
        if not _DECIMAL_RE.match(text):
            return math.nan
        if any(c in text for c in ".eE"):
            return float(text)
        return int(text)
    if isinstance(value, list):
        # Number([]) is 0 and Number([x]) is Number(x) for scalar x.
        if not value:
            return 0
        if len(value) == 1 and isinstance(value[0], (str, int, float)):
            return to_number(value[0])
        return math.nan
    return math.nan


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return value is not None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
        for fmt in ("%Y/%m/%d", "%Y/%m/%d %H:%M:%S"):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        # RFC 2822 / HTTP dates, e.g. "Mon, 15 Jan 2024 10:30:00 GMT"
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            parsed = None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso_date(value: Any) -> str:
    """ISO-8601 UTC with milliseconds, e.g. ``2024-01-15T10:30:00.000Z``."""
    parsed = _parse_datetime(value)
    if parsed is None:
        return INVALID_DATE
    parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%dT%H:%M:%S.") + f"{parsed.microsecond // 1000:03d}Z"


def stringify(value: Any) -> str:
    """Render a converted value the way it is used as an entity key."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        # Array.prototype.join renders null/undefined elements as ""
        return ",".join("" if v is None else stringify(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def convert_value(value: Any, mapping_type: Optional[str]) -> Any:
    if mapping_type == "number":
        return to_number(value)
    if mapping_type == "boolean":
        return is_truthy(value)
    if mapping_type == "date":
        return to_iso_date(value)
    return value


def placeholder_entity_key() -> str:
    return f"entity_{int(time.time() * 1000)}_{random.random()}"


def _mappings_of(field_mapping_config: Any) -> List[Dict[str, Any]]:
    if field_mapping_config is None:
        return []
    if hasattr(field_mapping_config, "model_dump"):
        field_mapping_config = field_mapping_config.model_dump(mode="json", by_alias=True)
    if not isinstance(field_mapping_config, dict):
        return []
    mappings = field_mapping_config.get("mappings")
    if not isinstance(mappings, list):
        return []
    return [
        m for m in mappings
        if isinstance(m, dict) and isinstance(m.get("source"), str) and isinstance(m.get("target"), str)
    ]


def normalize(raw_data: Any, field_mapping_config: Any) -> List[NormalizedItem]:
    """Apply field mappings to one object or a list of objects.

    Items where no mapping produced a value are dropped. When no mapping is
    flagged ``isEntityKey`` the entity key is a unique placeholder, so
    re-running the same input does not reproduce the same keys.
    """
    mappings = _mappings_of(field_mapping_config)
    if not mappings:
        return []

    items = raw_data if isinstance(raw_data, list) else [raw_data]
    normalized: List[NormalizedItem] = []

    for item in items:
        data: Dict[str, Any] = {}
        entity_key: Optional[str] = None

        for mapping in mappings:
            value = resolve_path(item, mapping["source"])
            if value is None:
                continue

            converted = convert_value(value, mapping.get("type"))
            data[mapping["target"]] = converted

            if mapping.get("isEntityKey"):
                entity_key = stringify(converted)

        if data:
            normalized.append(
                NormalizedItem(data=data, entity_key=entity_key or placeholder_entity_key())
            )

    return normalized
