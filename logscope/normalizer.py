"""Field normalization shared by file parsing and live streaming.

Structured sources (JSON, CSV, XML, stream payloads) carry their fields under
many names. Each normalized field has an ordered alias list; the first alias
with a non-empty value wins. An exact key match is tried before a
case-insensitive one, so a raw object that already uses the normalized names
comes through unchanged.
"""

import json
import logging
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable

from logscope.models import DEFAULT_LEVEL, LogRecord

logger = logging.getLogger(__name__)

TIMESTAMP_KEYS = ("timestamp", "time", "date", "datetime", "@timestamp")
LEVEL_KEYS = ("level", "severity", "priority", "type", "lvl")
SOURCE_KEYS = ("source", "component", "logger", "service")
MESSAGE_KEYS = ("message", "msg", "text", "content", "event")

# Checked in order; the first group with a matching substring wins.
_LEVEL_RULES = (
    ("ERROR", ("ERR", "CRIT", "FATAL", "EMERG", "ALERT", "SEVERE")),
    ("WARNING", ("WARN",)),
    ("DEBUG", ("DEBUG",)),
    ("TRACE", ("TRACE",)),
)

_ISO_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:[.,]\d+)?)?(?:[Zz]|[+-]\d{2}:?\d{2})?)?$"
)

_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%d/%b/%Y:%H:%M:%S %z",
    "%Y-%m-%d",
)

# Epoch values above this are taken to be milliseconds.
_EPOCH_MS_THRESHOLD = 1e11


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def format_iso(dt: datetime) -> str:
    """Render a datetime as 'YYYY-MM-DDTHH:MM:SS.mmmZ' in UTC."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_iso() -> str:
    return format_iso(datetime.now(timezone.utc))


def to_datetime(value: Any) -> datetime | None:
    """Best-effort conversion to an aware UTC datetime. Returns None on failure.

    Accepts ISO-8601 (with 'Z' or offsets), comma decimal seconds as written by
    log4j, a few common date layouts, and Apache access-log times. Naive values
    are taken as UTC.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return None
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            dt = None
            for fmt in _TIMESTAMP_FORMATS:
                try:
                    dt = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if dt is None:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: str) -> str:
    """Parse a timestamp substring to ISO-8601, falling back to the current time."""
    dt = to_datetime(value)
    if dt is None:
        logger.debug("Unparseable timestamp %r, substituting current time", value)
        return now_iso()
    return format_iso(dt)


def _is_iso(text: str) -> bool:
    return bool(_ISO_RE.match(text.strip())) and to_datetime(text) is not None


def normalize_timestamp(value: Any) -> str:
    """Normalize a raw timestamp field.

    ISO-8601 strings pass through verbatim. Other date strings are converted,
    numbers are read as epoch seconds (or milliseconds), and anything else
    becomes the current time.
    """
    if isinstance(value, str):
        if _is_iso(value):
            return value
        return parse_timestamp(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        try:
            return format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return now_iso()
    return now_iso()


# ---------------------------------------------------------------------------
# Levels and fields
# ---------------------------------------------------------------------------


def normalize_level(value: Any) -> str:
    """Map any level-like value onto the closed level set. Defaults to INFO."""
    text = str(value).upper()
    for level, needles in _LEVEL_RULES:
        if any(needle in text for needle in needles):
            return level
    return DEFAULT_LEVEL


def _present(value: Any) -> bool:
    if value is None or value == "":
        return False
    if isinstance(value, (list, dict)) and not value:
        return False
    return True


def find_field(raw: dict[str, Any], keys: Iterable[str]) -> Any:
    """Return the first non-empty value among the alias keys, or None."""
    for key in keys:
        value = raw.get(key)
        if _present(value):
            return value
        lowered = key.lower()
        for name, candidate in raw.items():
            if str(name).lower() == lowered and _present(candidate):
                return candidate
    return None


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def normalize_record(
    raw: dict[str, Any],
    fallback_id: str,
    default_source: str = "System",
) -> LogRecord:
    """Build a LogRecord from a raw structured record using the alias lists."""
    raw_id = raw.get("id")
    timestamp = find_field(raw, TIMESTAMP_KEYS)
    level = find_field(raw, LEVEL_KEYS)
    source = find_field(raw, SOURCE_KEYS)
    message = find_field(raw, MESSAGE_KEYS)

    return LogRecord(
        id=_to_text(raw_id) if _present(raw_id) else fallback_id,
        timestamp=normalize_timestamp(timestamp) if timestamp is not None else now_iso(),
        level=normalize_level(level) if level is not None else DEFAULT_LEVEL,
        source=_to_text(source) if source is not None else default_source,
        message=(
            _to_text(message) if message is not None
            else json.dumps(raw, default=str, separators=(",", ":"))
        ),
        metadata=dict(raw),
    )


def ensure_unique_ids(records: list[LogRecord]) -> list[LogRecord]:
    """Suffix repeated ids with '-N' so every id in the batch is unique."""
    seen: set[str] = set()
    result = []
    for record in records:
        candidate = record.id
        n = 1
        while candidate in seen:
            candidate = f"{record.id}-{n}"
            n += 1
        seen.add(candidate)
        result.append(record if candidate == record.id else replace(record, id=candidate))
    return result
