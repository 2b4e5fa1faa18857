"""Live log ingestion from a remote source, by HTTP polling or a persistent socket.

States: IDLE -> CONNECTING -> CONNECTED -> (DISCONNECTED | ERROR) -> IDLE.

Each start_stream() opens a new connection generation. Every delivery,
status change and error raised by a transport task is checked against the
generation it was started under, so once a connection is stopped or replaced
nothing from it reaches subscribers again.
"""

import asyncio
import json
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from logscope.models import LogRecord, StreamingConfig, StreamingStatus, StreamState
from logscope.normalizer import ensure_unique_ids, normalize_record
from logscope.transports import (
    PayloadError,
    StreamError,
    close_writer,
    http_fetch,
    open_socket,
)

logger = logging.getLogger(__name__)

STREAM_SOURCE = "API"

StreamCallback = Callable[[list[LogRecord], bool], None]
StatusCallback = Callable[[StreamingStatus], None]
ErrorCallback = Callable[[Exception], None]
Fetcher = Callable[[StreamingConfig], Awaitable[Any]]
Connector = Callable[
    [StreamingConfig], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]
]

class StreamConnectionError(StreamError):
    """The connection or first fetch could not be established."""


class ReconnectExhaustedError(StreamError):
    """The socket closed and every reconnect attempt failed."""


def normalize_payload(payload: Any, parser=None) -> list[LogRecord]:
    """Turn one decoded payload into a batch of records.

    A parser override is used verbatim (a single record or a list). Otherwise a
    list becomes one record per element and anything else a single record,
    normalized with the same alias lists as file parsing.
    """
    try:
        if parser is not None:
            result = parser(payload)
            return list(result) if isinstance(result, (list, tuple)) else [result]

        items = payload if isinstance(payload, list) else [payload]
        stamp = int(time.time() * 1000)
        records = []
        for idx, item in enumerate(items):
            raw = item if isinstance(item, dict) else {"message": item}
            records.append(normalize_record(raw, f"log-{stamp}-{idx}", STREAM_SOURCE))
        return ensure_unique_ids(records)
    except Exception as e:
        raise PayloadError(f"Failed to parse logs: {e}") from e


class LogStreamingService:
    """Fetches remote log payloads and pushes normalized batches to subscribers.

    fetcher and connector default to the HTTP and socket transports; tests and
    callers with special transports can inject their own.
    """

    def __init__(self, fetcher: Fetcher | None = None, connector: Connector | None = None):
        self._fetch = fetcher or http_fetch
        self._connect = connector or open_socket
        self._stream_callbacks: set[StreamCallback] = set()
        self._status_callbacks: set[StatusCallback] = set()
        self._error_callbacks: set[ErrorCallback] = set()
        self._status = StreamingStatus()
        self._config: StreamingConfig | None = None
        self._generation = 0
        self._retry_count = 0
        self._tasks: set[asyncio.Task] = set()
        self._writer: asyncio.StreamWriter | None = None

    async def __aenter__(self) -> "LogStreamingService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def status(self) -> StreamingStatus:
        return self._status

    def get_status(self) -> StreamingStatus:
        return self._status

    @property
    def config(self) -> StreamingConfig | None:
        return self._config

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_stream(self, callback: StreamCallback) -> Callable[[], None]:
        """Subscribe to record batches. Returns an unsubscribe function."""
        self._stream_callbacks.add(callback)
        return lambda: self._stream_callbacks.discard(callback)

    def on_status_change(self, callback: StatusCallback) -> Callable[[], None]:
        """Subscribe to status snapshots. Returns an unsubscribe function."""
        self._status_callbacks.add(callback)
        return lambda: self._status_callbacks.discard(callback)

    def on_error(self, callback: ErrorCallback) -> Callable[[], None]:
        """Subscribe to errors. Returns an unsubscribe function."""
        self._error_callbacks.add(callback)
        return lambda: self._error_callbacks.discard(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_stream(self, config: StreamingConfig) -> None:
        """Connect and return once the first fetch or socket open succeeds.

        Any previous connection is torn down first. Raises
        StreamConnectionError if the first fetch or connect fails. If
        stop_stream() is called meanwhile, returns with the service idle.
        """
        self._teardown()
        self._generation += 1
        generation = self._generation
        self._config = config
        self._retry_count = 0
        self._update_status(state=StreamState.CONNECTING, is_loading=True, error=None)
        mode = "socket" if config.use_socket else "polling"
        logger.info("Starting %s stream from %s", mode, config.endpoint)

        try:
            if config.use_socket:
                reader, writer = await self._spawn(self._connect(config))
            else:
                await self._spawn(self._fetch_and_deliver(config, generation))
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            logger.info("Stream from %s stopped while connecting", config.endpoint)
            return
        except Exception as e:
            if not self._is_current(generation):
                return
            err = StreamConnectionError(f"Failed to connect to {config.endpoint}: {e}")
            self._update_status(state=StreamState.ERROR, is_connected=False, is_loading=False)
            self._handle_error(err)
            raise err from e

        if not self._is_current(generation):
            if config.use_socket:
                await close_writer(writer)
            return

        if config.use_socket:
            self._writer = writer
            self._spawn(self._run_socket(config, generation, reader, writer))
        else:
            self._spawn(self._poll_loop(config, generation))

        self._update_status(state=StreamState.CONNECTED, is_connected=True, is_loading=False)

    def stop_stream(self) -> None:
        """Stop the connection and drop all subscribers. Safe to call in any state."""
        was_active = self._config is not None
        self._generation += 1
        self._teardown()
        self._config = None
        self._retry_count = 0
        self._stream_callbacks.clear()
        self._status_callbacks.clear()
        self._error_callbacks.clear()
        self._status = StreamingStatus()
        if was_active:
            logger.info("Stream stopped")

    async def aclose(self) -> None:
        """stop_stream() and wait for the cancelled transport tasks to finish."""
        pending = list(self._tasks)
        self.stop_stream()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _teardown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._writer is not None:
            if not self._writer.is_closing():
                self._writer.close()
            self._writer = None

    async def _fetch_and_deliver(self, config: StreamingConfig, generation: int) -> None:
        payload = await self._fetch(config)
        if not self._is_current(generation):
            return
        records = normalize_payload(payload, config.parser)
        if records:
            self._deliver(records, generation)

    async def _poll_loop(self, config: StreamingConfig, generation: int) -> None:
        """Spawn one fetch per interval; slow fetches may overlap."""
        interval = config.polling_interval / 1000
        while self._is_current(generation):
            await asyncio.sleep(interval)
            if not self._is_current(generation):
                return
            self._spawn(self._poll_once(config, generation))

    async def _poll_once(self, config: StreamingConfig, generation: int) -> None:
        try:
            await self._fetch_and_deliver(config, generation)
        except Exception as e:
            if self._is_current(generation):
                logger.warning("Polling %s failed: %s", config.endpoint, e)
                self._handle_error(e)

    async def _run_socket(
        self,
        config: StreamingConfig,
        generation: int,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        while True:
            try:
                await self._read_messages(config, generation, reader)
            finally:
                await close_writer(writer)
            if not self._is_current(generation):
                return

            logger.warning("Socket to %s closed", config.endpoint)
            self._writer = None
            self._update_status(state=StreamState.DISCONNECTED, is_connected=False)

            connection = await self._reconnect(config, generation)
            if connection is None:
                return
            reader, writer = connection
            self._writer = writer

    async def _read_messages(
        self, config: StreamingConfig, generation: int, reader: asyncio.StreamReader
    ) -> None:
        """Deliver one batch per newline-delimited JSON message until the peer closes."""
        while self._is_current(generation):
            try:
                line = await reader.readline()
            except (ConnectionError, OSError, ValueError) as e:
                if self._is_current(generation):
                    self._handle_error(StreamError(f"Socket error: {e}"))
                return
            if not line:
                return

            text = line.strip()
            if not text:
                continue
            try:
                records = normalize_payload(json.loads(text), config.parser)
            except (ValueError, RecursionError, PayloadError) as e:
                if self._is_current(generation):
                    self._handle_error(PayloadError(f"Invalid socket message: {e}"))
                continue
            if records:
                self._deliver(records, generation)

    async def _reconnect(self, config: StreamingConfig, generation: int):
        """Retry with linear backoff (retry_delay * attempt), up to retry_attempts.

        Returns (reader, writer) on success, or None when stopped or exhausted.
        """
        while self._retry_count < config.retry_attempts:
            self._retry_count += 1
            delay = config.retry_delay * self._retry_count / 1000
            logger.info(
                "Reconnecting to %s in %.1fs (attempt %d/%d)",
                config.endpoint, delay, self._retry_count, config.retry_attempts,
            )
            await asyncio.sleep(delay)
            if not self._is_current(generation):
                return None

            self._update_status(state=StreamState.CONNECTING, is_loading=True)
            try:
                reader, writer = await self._connect(config)
            except (OSError, asyncio.TimeoutError, StreamError, ValueError) as e:
                if not self._is_current(generation):
                    return None
                self._update_status(is_loading=False)
                self._handle_error(
                    StreamConnectionError(f"Reconnect attempt {self._retry_count} failed: {e}")
                )
                continue

            if not self._is_current(generation):
                await close_writer(writer)
                return None
            self._retry_count = 0
            self._update_status(
                state=StreamState.CONNECTED, is_connected=True, is_loading=False, error=None,
            )
            logger.info("Reconnected to %s", config.endpoint)
            return reader, writer

        err = ReconnectExhaustedError(
            f"Gave up reconnecting to {config.endpoint} after {config.retry_attempts} attempt(s)"
        )
        self._update_status(state=StreamState.ERROR, is_connected=False, is_loading=False)
        self._handle_error(err)
        return None

    def _deliver(self, records: list[LogRecord], generation: int, is_appending: bool = True) -> None:
        for callback in list(self._stream_callbacks):
            # a subscriber may stop or restart the stream mid-delivery
            if not self._is_current(generation):
                return
            try:
                callback(list(records), is_appending)
            except Exception as e:
                self._handle_error(e)

        if self._is_current(generation):
            self._update_status(
                last_update=datetime.now(timezone.utc),
                messages_received=self._status.messages_received + 1,
            )

    def _update_status(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        for callback in list(self._status_callbacks):
            try:
                callback(self._status)
            except Exception as e:
                self._notify_error(e)

    def _handle_error(self, error: Exception) -> None:
        logger.warning("Stream error: %s", error)
        self._update_status(error=str(error))
        self._notify_error(error)

    def _notify_error(self, error: Exception) -> None:
        for callback in list(self._error_callbacks):
            try:
                callback(error)
            except Exception:
                logger.exception("Error in error callback")
