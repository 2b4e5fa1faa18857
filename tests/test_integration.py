"""Integration tests: CLI via subprocess, live streaming against real servers."""

import asyncio
import json
import os
import socketserver
import subprocess
import sys
import threading
import unittest

import pytest
from werkzeug.serving import make_server

import main
from logscope.config import Config
from logscope.dev_server import DummyLogFeed, SocketLogServer, create_app
from logscope.models import StreamingConfig, StreamState
from logscope.streaming import LogStreamingService, ReconnectExhaustedError, StreamConnectionError

ROOT = os.path.join(os.path.dirname(__file__), "..")
SAMPLE_LOG = os.path.join(ROOT, "logs", "sample.log")
MAIN_PY = os.path.join(ROOT, "main.py")


def _run(*args: str) -> subprocess.CompletedProcess:
    """Run main.py with given args, return CompletedProcess."""
    return subprocess.run(
        [sys.executable, MAIN_PY, *args],
        capture_output=True,
        text=True,
        timeout=60,
    )


def _lines(result):
    return [line for line in result.stdout.split("\n") if line]


# ---------------------------------------------------------------------------
# parse sub-command
# ---------------------------------------------------------------------------


class TestParseCommand(unittest.TestCase):
    def test_all_entries_displayed(self):
        result = _run("parse", SAMPLE_LOG)
        self.assertEqual(result.returncode, 0, result.stderr)
        self.assertEqual(len(_lines(result)), 10)

    def test_level_filter(self):
        result = _run("parse", SAMPLE_LOG, "--level", "ERROR")
        lines = _lines(result)
        self.assertEqual(len(lines), 2)
        self.assertTrue(all(" ERROR " in line for line in lines))

    def test_multiple_levels_with_aliases(self):
        result = _run("parse", SAMPLE_LOG, "--level", "warn", "--level", "debug")
        self.assertEqual(len(_lines(result)), 3)

    def test_search(self):
        result = _run("parse", SAMPLE_LOG, "--search", "DATABASE")
        lines = _lines(result)
        self.assertEqual(len(lines), 1)
        self.assertIn("[com.foo.Bar]", lines[0])

    def test_source(self):
        result = _run("parse", SAMPLE_LOG, "--source", "Express HTTP")
        self.assertEqual(len(_lines(result)), 2)

    def test_date_range(self):
        result = _run("parse", SAMPLE_LOG, "--date-from", "2024-01-28", "--date-to", "2024-01-28")
        lines = _lines(result)
        self.assertEqual(len(lines), 2)
        self.assertTrue(all(line.startswith("2024-01-28") for line in lines))

    def test_no_matches_is_not_an_error(self):
        result = _run("parse", SAMPLE_LOG, "--search", "zzz_nonexistent_zzz")
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "")

    def test_stats_json(self):
        result = _run("parse", SAMPLE_LOG, "--stats", "--output", "json")
        stats = json.loads(result.stdout)
        self.assertEqual(stats, {
            "total": 10, "error": 2, "warning": 2, "info": 4, "debug": 1, "trace": 1,
        })

    def test_stats_text(self):
        result = _run("parse", SAMPLE_LOG, "--stats")
        self.assertIn("Total entries: 10", result.stdout)
        self.assertIn("  - scheduler", result.stdout)

    def test_json_output(self):
        result = _run("parse", SAMPLE_LOG, "--output", "json", "--lines", "2")
        records = [json.loads(line) for line in _lines(result)]
        self.assertEqual([r["id"] for r in records], ["log-0", "log-1"])
        self.assertEqual(records[0]["metadata"]["thread"], "main")

    def test_zero_lines_prints_nothing(self):
        result = _run("parse", SAMPLE_LOG, "--lines", "0")
        self.assertEqual(result.returncode, 0, result.stderr)
        self.assertEqual(_lines(result), [])

    def test_csv_output(self):
        result = _run("parse", SAMPLE_LOG, "--output", "csv", "--lines", "3")
        lines = _lines(result)
        self.assertEqual(lines[0], "ID,Timestamp,Level,Source,Message")
        self.assertEqual(len(lines), 4)


class TestParseCommandFiles:
    def test_export(self, tmp_path):
        out = tmp_path / "errors.csv"
        result = _run("parse", SAMPLE_LOG, "--level", "ERROR", "--export", str(out))
        assert result.returncode == 0
        assert out.read_text().count("\n") == 3

    def test_structured_file(self, tmp_path):
        path = tmp_path / "events.json"
        path.write_text('[{"msg": "ok", "lvl": "info"}, {"message": "bad", "severity": "critical"}]')
        result = _run("parse", str(path), "--level", "ERROR")
        assert result.returncode == 0
        assert _lines(result)[0].endswith("[System] bad")

    def test_byte_order_mark_json(self, tmp_path):
        path = tmp_path / "a.json"
        path.write_bytes(b'\xef\xbb\xbf[{"msg": "ok", "lvl": "error"}]')
        result = _run("parse", str(path), "--output", "json")
        assert result.returncode == 0, result.stderr
        record = json.loads(_lines(result)[0])
        assert record["level"] == "ERROR"
        assert record["message"] == "ok"

    def test_byte_order_mark_csv_header(self, tmp_path):
        path = tmp_path / "a.csv"
        path.write_bytes(b"\xef\xbb\xbflevel,message\nerror,boom\n")
        result = _run("parse", str(path), "--level", "ERROR")
        assert result.returncode == 0, result.stderr
        assert _lines(result)[0].endswith("boom")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.log"
        path.write_text("\n   \n")
        result = _run("parse", str(path))
        assert result.returncode == 2
        assert "No logs found in file" in result.stderr

    def test_missing_file(self, tmp_path):
        result = _run("parse", str(tmp_path / "absent.log"))
        assert result.returncode == 1
        assert "could not read" in result.stderr

    def test_bad_extension(self, tmp_path):
        path = tmp_path / "image.png"
        path.write_text("ERROR:x:y")
        result = _run("parse", str(path))
        assert result.returncode == 1
        assert "Invalid file format" in result.stderr

    def test_bad_date(self):
        result = _run("parse", SAMPLE_LOG, "--date-from", "28/01/2024")
        assert result.returncode == 1
        assert "invalid date filter" in result.stderr


# ---------------------------------------------------------------------------
# Live streaming against the dev server
# ---------------------------------------------------------------------------


@pytest.fixture
def http_feed():
    """Serve the dummy log API on a free port in a background thread."""
    feed = DummyLogFeed(interval=3600)
    for _ in range(5):
        feed.generate()
    server = make_server("127.0.0.1", 0, create_app(feed))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield feed, f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    thread.join(timeout=3)


class TestHttpPolling:
    @pytest.mark.asyncio
    async def test_polls_dev_server(self, http_feed):
        feed, base = http_feed
        batches = []
        async with LogStreamingService() as service:
            service.on_stream(lambda records, appending: batches.append(records))
            await service.start_stream(StreamingConfig(endpoint=f"{base}/logs", polling_interval=50))
            feed.generate()
            for _ in range(300):
                if len(batches) >= 2:
                    break
                await asyncio.sleep(0.01)

        assert len(batches[0]) == 5
        assert len(batches[1]) == 6
        record = batches[0][0]
        assert record.source == "dummy-api"
        assert record.id.startswith("dummy-")
        assert record.metadata["metadata"] == {"sample": True}

    @pytest.mark.asyncio
    async def test_post_method(self, http_feed):
        _, base = http_feed
        batches = []
        async with LogStreamingService() as service:
            service.on_stream(lambda records, appending: batches.append(records))
            await service.start_stream(
                StreamingConfig(endpoint=f"{base}/logs", method="POST", polling_interval=60_000)
            )
        assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_http_error_status(self, http_feed):
        _, base = http_feed
        async with LogStreamingService() as service:
            with pytest.raises(StreamConnectionError, match="404"):
                await service.start_stream(StreamingConfig(endpoint=f"{base}/missing"))
            assert service.status.state is StreamState.ERROR


class TestSocketFeed:
    @pytest.mark.asyncio
    async def test_stream_until_server_goes_away(self):
        feed_server = SocketLogServer(DummyLogFeed(), port=0, interval=0.01)
        await feed_server.start()
        port = feed_server.server.sockets[0].getsockname()[1]

        batches, errors = [], []
        async with LogStreamingService() as service:
            service.on_stream(lambda records, appending: batches.append(records))
            service.on_error(errors.append)
            await service.start_stream(StreamingConfig(
                endpoint=f"tcp://127.0.0.1:{port}", use_socket=True,
                retry_attempts=1, retry_delay=10,
            ))
            for _ in range(300):
                if len(batches) >= 3:
                    break
                await asyncio.sleep(0.01)
            await feed_server.stop()
            for _ in range(300):
                if service.status.state is StreamState.ERROR:
                    break
                await asyncio.sleep(0.01)

            assert service.status.state is StreamState.ERROR
        assert all(len(batch) == 1 for batch in batches)
        assert any(isinstance(e, ReconnectExhaustedError) for e in errors)


# ---------------------------------------------------------------------------
# stream sub-command
# ---------------------------------------------------------------------------


class _TwoLineHandler(socketserver.StreamRequestHandler):
    def handle(self):
        self.wfile.write(b'{"message": "first", "level": "warn", "source": "edge"}\n')
        self.wfile.write(b'[{"message": "second"}, {"message": "third"}]\n')


@pytest.fixture
def ndjson_server():
    server = socketserver.TCPServer(("127.0.0.1", 0), _TwoLineHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


class TestStreamCommand:
    def test_prints_batches_until_connection_lost(self, ndjson_server, capsys):
        code = main.main([
            "stream", f"tcp://127.0.0.1:{ndjson_server}", "--socket", "--retry-attempts", "0",
        ])
        out, err = capsys.readouterr()
        assert code == 1
        lines = [line for line in out.split("\n") if line]
        assert len(lines) == 3
        assert "WARNING [edge] first" in lines[0]
        assert "lost connection" in err

    def test_invalid_endpoint(self, capsys):
        code = main.main(["stream", "ftp://nowhere"])
        assert code == 1
        assert "Invalid endpoint" in capsys.readouterr().err

    def test_connect_failure(self, capsys):
        with socketserver.TCPServer(("127.0.0.1", 0), _TwoLineHandler) as probe:
            port = probe.server_address[1]
        code = main.main(["stream", f"tcp://127.0.0.1:{port}", "--socket"])
        assert code == 1
        assert "Failed to connect" in capsys.readouterr().err


class TestBuildStreamingConfig:
    def test_cli_overrides_config_section(self):
        args = main.build_parser().parse_args([
            "stream", "--interval", "2000", "--header", "X-Api-Key=abc",
        ])
        cfg = Config(stream={
            "endpoint": "http://localhost:4000/logs",
            "polling_interval": 9000,
            "headers": {"Accept": "application/json"},
        })
        sc = main.build_streaming_config(args, cfg)
        assert sc.endpoint == "http://localhost:4000/logs"
        assert sc.polling_interval == 2000
        assert sc.headers == {"Accept": "application/json", "X-Api-Key": "abc"}

    def test_bad_header(self):
        args = main.build_parser().parse_args(["stream", "http://h/logs", "--header", "novalue"])
        with pytest.raises(ValueError, match="KEY=VALUE"):
            main.build_streaming_config(args, Config())

    def test_missing_endpoint(self):
        args = main.build_parser().parse_args(["stream"])
        with pytest.raises(ValueError, match="endpoint"):
            main.build_streaming_config(args, Config())
