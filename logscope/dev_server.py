#!/usr/bin/env python3
"""Dummy log API for trying the streaming client locally.

  GET/POST /logs    -> last 50 generated logs (JSON array)
  GET      /health  -> feed counters
  tcp://host:port   -> one NDJSON log pushed per interval to each client
"""

import argparse
import asyncio
import collections
import json
import logging
import random
import sys
import threading
import time

from flask import Flask, jsonify, request

logger = logging.getLogger(__name__)

LEVELS = ["ERROR", "WARNING", "INFO", "DEBUG", "TRACE"]


class DummyLogFeed:
    """Generates one log per interval of elapsed time, on demand."""

    def __init__(self, max_logs: int = 1000, interval: float = 1.0, clock=time.monotonic):
        self._logs = collections.deque(maxlen=max_logs)
        self._interval = interval
        self._clock = clock
        self._last_tick = clock()
        self._counter = 0
        self._lock = threading.Lock()

    def generate(self) -> dict:
        with self._lock:
            self._counter += 1
            counter = self._counter
        entry = {
            "id": f"dummy-{int(time.time() * 1000)}-{counter}",
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "level": random.choice(LEVELS),
            "source": "dummy-api",
            "message": f"Dummy log message {random.randint(0, 999)}",
            "metadata": {"sample": True},
        }
        with self._lock:
            self._logs.append(entry)
        return entry

    def advance(self) -> int:
        """Generate the logs owed for the time elapsed since the last call."""
        now = self._clock()
        due = int((now - self._last_tick) / self._interval)
        for _ in range(due):
            self.generate()
        self._last_tick += due * self._interval
        return due

    def recent(self, count: int = 50) -> list[dict]:
        with self._lock:
            return list(self._logs)[-count:]

    @property
    def total_generated(self) -> int:
        return self._counter

    @property
    def current_size(self) -> int:
        return len(self._logs)


def create_app(feed: DummyLogFeed | None = None) -> Flask:
    """Flask application factory."""
    app = Flask(__name__)
    feed = feed or DummyLogFeed()
    app.config["feed"] = feed

    @app.route("/health")
    def health():
        return jsonify({
            "status": "healthy",
            "total_generated": feed.total_generated,
            "current_stored": feed.current_size,
        })

    @app.route("/logs", methods=["GET", "POST"])
    def logs():
        feed.advance()
        count = request.args.get("count", default=50, type=int)
        return jsonify(feed.recent(max(1, min(count, 1000))))

    @app.route("/logs/generate", methods=["POST"])
    def generate():
        count = request.args.get("count", default=1, type=int)
        created = [feed.generate() for _ in range(max(0, min(count, 1000)))]
        return jsonify({"status": "generated", "count": len(created)}), 201

    @app.after_request
    def allow_cors(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    return app


class SocketLogServer:
    """Async TCP server pushing one NDJSON log per interval to every client."""

    def __init__(self, feed: DummyLogFeed, host: str = "127.0.0.1", port: int = 4001,
                 interval: float = 1.0):
        self.feed = feed
        self.host = host
        self.port = port
        self.interval = interval
        self.server: asyncio.Server | None = None
        self.active_connections = 0
        self._clients: set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._client_connected, self.host, self.port)
        addrs = ", ".join(str(sock.getsockname()) for sock in self.server.sockets)
        logger.info("Socket feed listening on %s", addrs)

    async def _client_connected(self, reader: asyncio.StreamReader,
                                writer: asyncio.StreamWriter) -> None:
        self.active_connections += 1
        self._clients.add(writer)
        peer = writer.get_extra_info("peername")
        logger.info("Client connected: %s", peer)
        try:
            while not writer.is_closing():
                line = json.dumps(self.feed.generate()) + "\n"
                writer.write(line.encode())
                await writer.drain()
                await asyncio.sleep(self.interval)
        except (ConnectionError, OSError) as e:
            logger.info("Client %s disconnected: %s", peer, e)
        finally:
            self.active_connections -= 1
            self._clients.discard(writer)
            writer.close()

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            for writer in list(self._clients):
                writer.close()
            await self.server.wait_closed()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [DEV-SERVER] %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    parser = argparse.ArgumentParser(description="Dummy log API for local testing")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=4000, help="HTTP port (default: 4000)")
    parser.add_argument("--socket-port", type=int, default=4001,
                        help="NDJSON socket port, 0 disables (default: 4001)")
    args = parser.parse_args()

    feed = DummyLogFeed()
    if args.socket_port:
        socket_server = SocketLogServer(feed, args.host, args.socket_port)

        def run_socket_feed():
            async def serve():
                await socket_server.start()
                await socket_server.server.serve_forever()
            asyncio.run(serve())

        threading.Thread(target=run_socket_feed, daemon=True).start()

    logger.info("Endpoints: GET http://%s:%d/logs, tcp://%s:%d",
                args.host, args.port, args.host, args.socket_port)
    create_app(feed).run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
