"""Input validation for uploaded files, parsed batches and stream settings."""

import re
from urllib.parse import urlsplit

import jsonschema

from logscope.models import LOG_LEVELS, LogRecord, StreamingConfig, record_to_dict
from logscope.transports import SOCKET_SCHEMES

MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
ALLOWED_EXTENSIONS = ("log", "json", "csv", "xml", "txt")
MIN_POLLING_INTERVAL = 1000  # ms
HTTP_METHODS = ("GET", "POST")

# Number of leading records checked against the schema.
SAMPLE_SIZE = 5

LOG_RECORD_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["id", "timestamp", "level", "source", "message"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "timestamp": {"type": "string", "minLength": 1},
        "level": {"enum": list(LOG_LEVELS)},
        "source": {"type": "string"},
        "message": {"type": "string", "minLength": 1},
        "metadata": {"type": "object"},
    },
}

_validator = jsonschema.Draft202012Validator(LOG_RECORD_SCHEMA)


class ValidationError(Exception):
    """Raised when a file, batch or stream setting is not acceptable."""


def validate_file(filename: str, size: int) -> None:
    """Reject files over the size limit or with an unsupported extension."""
    if size > MAX_FILE_SIZE:
        raise ValidationError(
            f"File size exceeds 100MB limit (received {size / 1024 / 1024:.2f}MB)"
        )
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Invalid file format. Allowed: {', '.join(ALLOWED_EXTENSIONS)}")


def validate_records(records: list[LogRecord]) -> None:
    """Check a parsed batch is non-empty and its first records are well formed.

    An empty batch raises with "No logs found in file", which callers report
    differently from read or format errors.
    """
    if not records:
        raise ValidationError("No logs found in file")

    for index, record in enumerate(records[:SAMPLE_SIZE], start=1):
        errors = list(_validator.iter_errors(record_to_dict(record)))
        if errors:
            messages = "; ".join(error.message for error in errors)
            raise ValidationError(f"Log entry {index} is invalid: {messages}")


def validate_streaming_config(config: StreamingConfig) -> None:
    """Check endpoint syntax and connection limits before connecting."""
    if not config.endpoint.strip():
        raise ValidationError("Endpoint is required")

    parts = urlsplit(config.endpoint)
    if config.use_socket:
        if parts.scheme not in SOCKET_SCHEMES or not parts.hostname:
            raise ValidationError(
                f"Socket endpoint must look like tcp://host:port or tls://host:port: {config.endpoint}"
            )
        try:
            port = parts.port
        except ValueError:
            port = None
        if port is None:
            raise ValidationError(f"Socket endpoint needs a port: {config.endpoint}")
    elif parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError(f"Invalid endpoint URL: {config.endpoint}")

    if config.method.upper() not in HTTP_METHODS:
        raise ValidationError(f"Unsupported method {config.method}. Allowed: {', '.join(HTTP_METHODS)}")
    if config.polling_interval < MIN_POLLING_INTERVAL:
        raise ValidationError(
            f"Polling interval must be at least {MIN_POLLING_INTERVAL}ms (got {config.polling_interval})"
        )
    if config.retry_attempts < 0 or config.retry_delay < 0:
        raise ValidationError("Retry attempts and delay must not be negative")


def sanitize_input(text: str) -> str:
    """Strip angle brackets and javascript: prefixes from free-text input."""
    text = re.sub(r"[<>]", "", text)
    text = re.sub(r"javascript:", "", text, flags=re.IGNORECASE)
    return text.strip()
