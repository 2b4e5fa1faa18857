"""Normalized log record and the value types built around it."""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

LOG_LEVELS = ("ERROR", "WARNING", "INFO", "DEBUG", "TRACE")
DEFAULT_LEVEL = "INFO"


@dataclass(frozen=True)
class LogRecord:
    id: str
    timestamp: str  # ISO-8601
    level: str      # one of LOG_LEVELS
    source: str
    message: str
    metadata: dict[str, Any] | None = None


def record_to_dict(record: LogRecord) -> dict[str, Any]:
    """Convert a LogRecord to a plain dict, dropping metadata when absent."""
    data = asdict(record)
    if data["metadata"] is None:
        del data["metadata"]
    return data


@dataclass(frozen=True)
class FilterSpec:
    levels: frozenset[str] = frozenset()
    keyword: str = ""
    source: str = ""
    date_from: str | date | None = None
    date_to: str | date | None = None


@dataclass
class LogStatistics:
    total: int = 0
    error: int = 0
    warning: int = 0
    info: int = 0
    debug: int = 0
    trace: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DateRange:
    min: str
    max: str


@dataclass(frozen=True)
class ParseResult:
    records: list[LogRecord]
    error: str | None = None


class StreamState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class StreamingConfig:
    endpoint: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    polling_interval: int = 5000  # ms
    use_socket: bool = False
    retry_attempts: int = 3
    retry_delay: int = 3000  # ms, multiplied by the attempt number
    parser: Callable[[Any], "list[LogRecord] | LogRecord"] | None = None
    timeout: float = 10.0  # seconds, per HTTP request


@dataclass(frozen=True)
class StreamingStatus:
    state: StreamState = StreamState.IDLE
    is_connected: bool = False
    is_loading: bool = False
    error: str | None = None
    last_update: datetime | None = None
    messages_received: int = 0
