"""Bounded in-memory window of streamed records and the session that feeds it."""

import collections
import logging
import threading
from typing import Callable

from logscope.models import LogRecord, StreamingConfig, StreamingStatus
from logscope.streaming import LogStreamingService

logger = logging.getLogger(__name__)

DEFAULT_MAX_RECORDS = 10000


class RecordWindow:
    """Sliding window of the most recent records, backed by a bounded deque.

    Readers only ever get tuple snapshots, never the live deque.
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS):
        self._records: collections.deque[LogRecord] = collections.deque(maxlen=max_records)
        self._lock = threading.Lock()
        self._total_received = 0

    def apply(self, records: list[LogRecord], is_appending: bool = True) -> tuple[LogRecord, ...]:
        """Append (or replace with) a batch, evicting the oldest beyond the cap."""
        with self._lock:
            if not is_appending:
                self._records.clear()
            self._records.extend(records)
            self._total_received += len(records)
            return tuple(self._records)

    def snapshot(self) -> tuple[LogRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def clear(self):
        with self._lock:
            self._records.clear()

    @property
    def max_records(self) -> int:
        return self._records.maxlen

    @property
    def total_received(self) -> int:
        """Number of records ever applied, including evicted ones."""
        return self._total_received

    def __len__(self) -> int:
        return len(self._records)


class LiveSession:
    """Connects a streaming service to a RecordWindow.

    on_records(snapshot, new_records, is_appending) is called after every batch.
    """

    def __init__(
        self,
        service: LogStreamingService,
        max_records: int = DEFAULT_MAX_RECORDS,
        on_records: Callable[[tuple[LogRecord, ...], list[LogRecord], bool], None] | None = None,
    ):
        self._service = service
        self._window = RecordWindow(max_records)
        self._on_records = on_records
        self._unsubscribers: list[Callable[[], None]] = []
        self._status = StreamingStatus()
        self._last_error: Exception | None = None

    @property
    def records(self) -> tuple[LogRecord, ...]:
        return self._window.snapshot()

    @property
    def service(self) -> LogStreamingService:
        return self._service

    @property
    def window(self) -> RecordWindow:
        return self._window

    @property
    def status(self) -> StreamingStatus:
        return self._status

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    async def connect(self, config: StreamingConfig) -> None:
        """Drop previous subscriptions, reset the window, subscribe and start."""
        self._unsubscribe()
        self._window.clear()
        self._status = StreamingStatus(is_loading=True)
        self._last_error = None

        self._unsubscribers = [
            self._service.on_stream(self._handle_batch),
            self._service.on_status_change(self._handle_status),
            self._service.on_error(self._handle_error),
        ]
        await self._service.start_stream(config)

    def disconnect(self) -> None:
        self._service.stop_stream()
        self._unsubscribe()
        self._status = StreamingStatus()

    def clear(self) -> None:
        self._window.clear()

    def _unsubscribe(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _handle_batch(self, records: list[LogRecord], is_appending: bool) -> None:
        snapshot = self._window.apply(records, is_appending)
        logger.debug(
            "Received %d record(s), %d in memory", len(records), len(snapshot),
        )
        if self._on_records is not None:
            self._on_records(snapshot, records, is_appending)

    def _handle_status(self, status: StreamingStatus) -> None:
        self._status = status

    def _handle_error(self, error: Exception) -> None:
        self._last_error = error
