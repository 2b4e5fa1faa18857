"""Network transports used by the streaming service.

HTTP polling goes through requests, run on a worker thread so the event loop
is never blocked. Socket mode is a persistent TCP (optionally TLS) connection
carrying newline-delimited JSON messages.
"""

import asyncio
import json
import logging
import ssl
from typing import Any
from urllib.parse import urlsplit

import requests

from logscope.models import StreamingConfig

logger = logging.getLogger(__name__)

SOCKET_SCHEMES = ("tcp", "tls")

# Upper bound for a single NDJSON message on the socket.
SOCKET_READ_LIMIT = 4 * 1024 * 1024


class StreamError(Exception):
    """Base class for streaming failures."""


class FetchError(StreamError):
    """An HTTP request failed or returned a non-2xx status."""


class PayloadError(StreamError):
    """A payload could not be decoded or normalized."""


def _request(config: StreamingConfig) -> Any:
    headers = {"Content-Type": "application/json", **config.headers}
    try:
        response = requests.request(
            config.method.upper(),
            config.endpoint,
            headers=headers,
            timeout=config.timeout,
        )
    except requests.RequestException as e:
        raise FetchError(f"Failed to fetch logs: {e}") from e

    if not response.ok:
        raise FetchError(f"Failed to fetch logs: {response.status_code} {response.reason}")

    try:
        return response.json()
    except (ValueError, RecursionError) as e:
        raise PayloadError(f"Failed to parse logs: response is not JSON ({e})") from e


async def http_fetch(config: StreamingConfig) -> Any:
    """Issue one HTTP request and return the decoded JSON body."""
    return await asyncio.to_thread(_request, config)


def socket_address(endpoint: str) -> tuple[str, int, bool]:
    """Split a tcp:// or tls:// endpoint into (host, port, use_tls)."""
    parts = urlsplit(endpoint)
    if parts.scheme not in SOCKET_SCHEMES:
        raise ValueError(f"Socket endpoint must use one of {SOCKET_SCHEMES}: {endpoint}")
    if not parts.hostname or parts.port is None:
        raise ValueError(f"Socket endpoint needs a host and port: {endpoint}")
    return parts.hostname, parts.port, parts.scheme == "tls"


async def open_socket(
    config: StreamingConfig,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open the persistent connection and send the header handshake if configured."""
    host, port, use_tls = socket_address(config.endpoint)
    kwargs = {}
    if use_tls:
        kwargs["ssl"] = ssl.create_default_context()
        kwargs["server_hostname"] = host

    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, limit=SOCKET_READ_LIMIT, **kwargs),
        timeout=config.timeout,
    )
    logger.info("Socket connected to %s:%d", host, port)

    if config.headers:
        writer.write(json.dumps({"headers": config.headers}).encode() + b"\n")
        await writer.drain()

    return reader, writer


async def close_writer(writer: asyncio.StreamWriter) -> None:
    """Close a stream writer, ignoring errors from an already-broken connection."""
    if writer.is_closing():
        return
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError):
        pass
