"""Output formatters: text, JSON (NDJSON) and colorized (ANSI)."""

import json
from typing import Callable

from logscope.models import LogRecord, record_to_dict

# ANSI color codes
COLORS = {
    "TRACE": "\033[90m",   # grey
    "DEBUG": "\033[36m",   # cyan
    "INFO": "\033[32m",    # green
    "WARNING": "\033[33m", # yellow
    "ERROR": "\033[31m",   # red
}
RESET = "\033[0m"


def format_text(record: LogRecord) -> str:
    return f"{record.timestamp} {record.level:7s} [{record.source}] {record.message}"


def format_json(record: LogRecord) -> str:
    """Return NDJSON, one JSON object per line, compatible with jq."""
    return json.dumps(record_to_dict(record), default=str)


def format_color(record: LogRecord) -> str:
    color = COLORS.get(record.level, "")
    return f"{record.timestamp} {color}{record.level:7s}{RESET} [{record.source}] {record.message}"


def get_formatter(output_format: str = "text", color: bool = False) -> Callable[[LogRecord], str]:
    """Factory that returns the right formatter based on args."""
    if output_format == "json":
        return format_json
    if color:
        return format_color
    return format_text
