"""Format parser: JSON, CSV, XML and free-form text into LogRecords.

Dispatch is by format hint (file extension); anything unknown is plain text.

Plain-text lines are matched against TEXT_PATTERNS in order and the first
match wins. The order is part of the contract: patterns that capture more
structure (thread, logger, HTTP status) come before the generic
level/message shapes, so an access-log line is never read as a bare
"LEVEL message" pair. Reordering changes how ambiguous lines are classified.

  1. json-line                {"level": "...", ...}
  2. log4j                    2024-01-27 08:15:22,123 [main] ERROR com.foo.Bar - msg
  3. slf4j                    2024-01-27 08:15:22 [main] ERROR com.foo.Bar msg
  4. http-access              GET /api 503 120 - upstream timeout
  5. bracket-level            [ERROR] 2024-01-27 08:15:22 source msg
  6. timestamp-bracket-level  2024-01-27 08:15:22 [ERROR] msg
  7. timestamp-level          2024-01-27 08:15:22 ERROR source msg
  8. python-logging           ERROR:root:msg
  9. syslog                   <34>Oct 11 22:14:15 host sshd[42]: msg
 10. combined-access          127.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET / HTTP/1.1" 200 2326
 (no match)                   INFO / System / raw line
"""

import html
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from logscope.models import DEFAULT_LEVEL, LogRecord
from logscope.normalizer import (
    ensure_unique_ids,
    normalize_level,
    normalize_record,
    now_iso,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "System"

_FORMATS = {"json": "json", "csv": "csv", "xml": "xml"}

# ---------------------------------------------------------------------------
# Compiled regex patterns
# ---------------------------------------------------------------------------

_JSON_LINE_RE = re.compile(r"^\s*(?P<body>\{.*\})\s*$")

_LOG4J_RE = re.compile(
    r"^(?P<time>\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2},\d+)\s+"
    r"\[(?P<thread>[^\]]+)\]\s+"
    r"(?P<level>\w+)\s+"
    r"(?P<logger>\S+)\s*-\s*"
    r"(?P<message>.+)$"
)

_SLF4J_RE = re.compile(
    r"^(?P<time>\d{4}-\d{2}-\d{2}\s+\d{2}:\d{2}:\d{2})\s+"
    r"\[(?P<thread>[^\]]+)\]\s+"
    r"(?P<level>\w+)\s+"
    r"(?P<logger>\S+)\s+"
    r"(?P<message>.+)$"
)

_HTTP_ACCESS_RE = re.compile(
    r"^(?P<method>\w+)\s+(?P<path>/\S*)\s+(?P<status>\d{3})\s+(?P<size>\d+)\s+-\s+(?P<details>.+)$"
)

_BRACKET_LEVEL_RE = re.compile(
    r"^\[(?P<level>\w+)\]\s+"
    r"(?P<time>\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2})\s+"
    r"(?P<source>\S+)\s+"
    r"(?P<message>.+)$"
)

_TIMESTAMP_BRACKET_LEVEL_RE = re.compile(
    r"^(?P<time>\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2})\s+"
    r"\[(?P<level>\w+)\]\s+"
    r"(?P<message>.+)$"
)

_TIMESTAMP_LEVEL_RE = re.compile(
    r"^(?P<time>\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}:\d{2})\s+"
    r"(?P<level>ERROR|WARNING|INFO|DEBUG|TRACE)\s+"
    r"(?P<source>\S+)\s+"
    r"(?P<message>.+)$"
)

_PYTHON_LOGGING_RE = re.compile(r"^(?P<level>\w+):(?P<source>[^\s:]+):(?P<message>.+)$")
_PYTHON_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_SYSLOG_RE = re.compile(
    r"^<(?P<priority>\d{1,3})>"
    r"(?P<time>\w{3}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2}) "
    r"(?P<hostname>\S+) "
    r"(?P<tag>[\w/.\-]+)"
    r"(?:\[(?P<pid>\d+)\])?: "
    r"(?P<message>.*)$"
)

# Syslog severity -> level name (normalized afterwards)
_SEVERITY_LEVELS = {
    0: "EMERGENCY", 1: "ALERT", 2: "CRITICAL", 3: "ERROR",
    4: "WARNING", 5: "NOTICE", 6: "INFO", 7: "DEBUG",
}

_COMBINED_ACCESS_RE = re.compile(
    r'^(?P<host>\S+) \S+ \S+ '
    r'\[(?P<time>[^\]]+)\] '
    r'"(?P<request>[^"]*)" '
    r'(?P<status>\d{3}|-) '
    r'(?P<size>\d+|-)'
    r'(?: "(?P<referer>[^"]*)" "(?P<user_agent>[^"]*)")?$'
)

_XML_LOG_RE = re.compile(r"<log(?:\s[^>]*)?>(.*?)</log>", re.IGNORECASE | re.DOTALL)
_XML_FIELD_RE = re.compile(r"<([^<>/\s]+)>([^<]*)</\1>")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def http_status_level(status_code: int) -> str:
    if status_code >= 500:
        return "ERROR"
    if status_code >= 400:
        return "WARNING"
    return "INFO"


def _syslog_time_to_iso(time_str: str) -> str:
    """Syslog omits the year, so the current one is assumed."""
    try:
        year = datetime.now(timezone.utc).year
        dt = datetime.strptime(f"{year} {time_str}", "%Y %b %d %H:%M:%S")
        return parse_timestamp(dt.isoformat())
    except ValueError:
        return now_iso()


def detect_format(format_hint: str) -> str:
    """Map an extension or file name to 'json', 'csv', 'xml' or 'text'."""
    ext = (format_hint or "").strip().lower().rsplit(".", 1)[-1]
    return _FORMATS.get(ext, "text")


def split_csv_line(line: str) -> list[str]:
    """Split one CSV line on commas that are outside double quotes.

    Quotes only toggle the inside-field flag and are not kept.
    """
    fields = []
    current = []
    inside_quotes = False
    for char in line:
        if char == '"':
            inside_quotes = not inside_quotes
        elif char == "," and not inside_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    fields.append("".join(current).strip())
    return fields


def _generic_record(line: str, record_id: str) -> LogRecord:
    return LogRecord(
        id=record_id,
        timestamp=now_iso(),
        level=DEFAULT_LEVEL,
        source=DEFAULT_SOURCE,
        message=line,
    )


# ---------------------------------------------------------------------------
# Plain-text extractors
# ---------------------------------------------------------------------------


def _extract_json_line(m: re.Match, record_id: str) -> LogRecord | None:
    try:
        data = json.loads(m.group("body"))
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    return normalize_record(data, record_id, DEFAULT_SOURCE)


def _extract_java(m: re.Match, record_id: str) -> LogRecord:
    thread, class_name = m.group("thread"), m.group("logger")
    return LogRecord(
        id=record_id,
        timestamp=parse_timestamp(m.group("time")),
        level=normalize_level(m.group("level")),
        source=class_name or thread,
        message=m.group("message"),
        metadata={"thread": thread, "className": class_name},
    )


def _extract_http_access(m: re.Match, record_id: str) -> LogRecord:
    method, path, status, size = m.group("method", "path", "status", "size")
    return LogRecord(
        id=record_id,
        timestamp=now_iso(),
        level=http_status_level(int(status)),
        source="Express HTTP",
        message=f"{method} {path} {status} {size}",
        metadata={
            "method": method,
            "path": path,
            "statusCode": status,
            "responseTime": size,
            "details": m.group("details"),
        },
    )


def _extract_level_source(m: re.Match, record_id: str) -> LogRecord:
    return LogRecord(
        id=record_id,
        timestamp=parse_timestamp(m.group("time")),
        level=normalize_level(m.group("level")),
        source=m.group("source"),
        message=m.group("message"),
    )


def _extract_timestamp_bracket_level(m: re.Match, record_id: str) -> LogRecord:
    return LogRecord(
        id=record_id,
        timestamp=parse_timestamp(m.group("time")),
        level=normalize_level(m.group("level")),
        source=DEFAULT_SOURCE,
        message=m.group("message"),
    )


def _extract_python_logging(m: re.Match, record_id: str) -> LogRecord | None:
    if m.group("level").upper() not in _PYTHON_LEVELS:
        return None
    return LogRecord(
        id=record_id,
        timestamp=now_iso(),
        level=normalize_level(m.group("level")),
        source=m.group("source"),
        message=m.group("message"),
    )


def _extract_syslog(m: re.Match, record_id: str) -> LogRecord:
    priority = int(m.group("priority"))
    facility, severity = divmod(priority, 8)
    metadata = {
        "hostname": m.group("hostname"),
        "priority": priority,
        "facility": facility,
        "severity": severity,
    }
    if m.group("pid"):
        metadata["pid"] = int(m.group("pid"))
    return LogRecord(
        id=record_id,
        timestamp=_syslog_time_to_iso(m.group("time")),
        level=normalize_level(_SEVERITY_LEVELS.get(severity, DEFAULT_LEVEL)),
        source=m.group("tag"),
        message=m.group("message"),
        metadata=metadata,
    )


def _extract_combined_access(m: re.Match, record_id: str) -> LogRecord:
    status = m.group("status")
    metadata = {
        "remoteHost": m.group("host"),
        "request": m.group("request"),
        "statusCode": status,
        "bodyBytes": m.group("size"),
    }
    if m.group("referer") not in (None, "-"):
        metadata["referer"] = m.group("referer")
    if m.group("user_agent") is not None:
        metadata["userAgent"] = m.group("user_agent")
    return LogRecord(
        id=record_id,
        timestamp=parse_timestamp(m.group("time")),
        level=http_status_level(int(status)) if status != "-" else DEFAULT_LEVEL,
        source="HTTP Access",
        message=f'{m.group("request")} {status} {m.group("size")}',
        metadata=metadata,
    )


@dataclass(frozen=True)
class TextPattern:
    name: str
    regex: re.Pattern
    extract: Callable[[re.Match, str], LogRecord | None]


TEXT_PATTERNS: tuple[TextPattern, ...] = (
    TextPattern("json-line", _JSON_LINE_RE, _extract_json_line),
    TextPattern("log4j", _LOG4J_RE, _extract_java),
    TextPattern("slf4j", _SLF4J_RE, _extract_java),
    TextPattern("http-access", _HTTP_ACCESS_RE, _extract_http_access),
    TextPattern("bracket-level", _BRACKET_LEVEL_RE, _extract_level_source),
    TextPattern("timestamp-bracket-level", _TIMESTAMP_BRACKET_LEVEL_RE, _extract_timestamp_bracket_level),
    TextPattern("timestamp-level", _TIMESTAMP_LEVEL_RE, _extract_level_source),
    TextPattern("python-logging", _PYTHON_LOGGING_RE, _extract_python_logging),
    TextPattern("syslog", _SYSLOG_RE, _extract_syslog),
    TextPattern("combined-access", _COMBINED_ACCESS_RE, _extract_combined_access),
)

# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def parse_line(line: str, record_id: str) -> LogRecord:
    """Parse one text line with the first matching pattern, or a generic record."""
    for pattern in TEXT_PATTERNS:
        m = pattern.regex.match(line)
        if not m:
            continue
        try:
            record = pattern.extract(m, record_id)
        except Exception as e:  # isolate individual line failures
            logger.debug("Pattern %s failed on line %r: %s", pattern.name, line, e)
            break
        if record is not None:
            return record
    return _generic_record(line, record_id)


def parse_plain_text(content: str) -> list[LogRecord]:
    records = []
    for line in content.split("\n"):
        line = line.rstrip()
        if not line.strip():
            continue
        records.append(parse_line(line, f"log-{len(records)}"))
    return ensure_unique_ids(records)


def _normalize_safely(raw: dict, record_id: str) -> LogRecord:
    try:
        return normalize_record(raw, record_id, DEFAULT_SOURCE)
    except Exception as e:
        logger.debug("Failed to normalize record %s: %s", record_id, e)
        return _generic_record(json.dumps(raw, default=str), record_id)


def parse_json(content: str) -> list[LogRecord]:
    """Parse a JSON array or object. Invalid JSON falls back to plain text."""
    try:
        data = json.loads(content)
    except (ValueError, RecursionError) as e:
        logger.debug("Content is not valid JSON (%s), parsing as plain text", e)
        return parse_plain_text(content)

    items = data if isinstance(data, list) else [data]
    records = []
    for idx, item in enumerate(items):
        raw = item if isinstance(item, dict) else {"message": item}
        records.append(_normalize_safely(raw, f"log-{idx}"))
    return ensure_unique_ids(records)


def parse_csv(content: str) -> list[LogRecord]:
    """Parse CSV with a header row. Header names are lowercased."""
    lines = [line.rstrip("\r") for line in content.split("\n")]
    if len(lines) < 2:
        return []

    headers = [h.lower() for h in split_csv_line(lines[0])]
    records = []
    for line in lines[1:]:
        if not line.strip():
            continue
        values = split_csv_line(line)
        raw = {
            header: values[idx] if idx < len(values) else ""
            for idx, header in enumerate(headers)
        }
        records.append(_normalize_safely(raw, f"log-{len(records)}"))
    return ensure_unique_ids(records)


def parse_xml(content: str) -> list[LogRecord]:
    """Extract <log> blocks and their one-level child fields."""
    records = []
    for block in _XML_LOG_RE.finditer(content):
        raw = {
            tag.lower(): html.unescape(value)
            for tag, value in _XML_FIELD_RE.findall(block.group(1))
        }
        records.append(_normalize_safely(raw, f"log-{len(records)}"))
    return ensure_unique_ids(records)


_STRATEGIES: dict[str, Callable[[str], list[LogRecord]]] = {
    "json": parse_json,
    "csv": parse_csv,
    "xml": parse_xml,
    "text": parse_plain_text,
}


def parse(content: str, format_hint: str = "") -> list[LogRecord]:
    """Parse file content into records, in input order.

    An empty list means the content held nothing parseable; callers report
    that separately from read errors.
    """
    fmt = detect_format(format_hint)
    records = _STRATEGIES[fmt](content)
    logger.debug("Parsed %d record(s) using %s strategy", len(records), fmt)
    return records


def parse_file(content: str, filename: str) -> list[LogRecord]:
    """Parse content using the extension of *filename* as the format hint."""
    return parse(content, filename)
