"""logscope: parse, filter and stream application logs."""

import asyncio
import logging
import os
import sys
from argparse import ArgumentParser
from itertools import islice

from logscope.config import load_config, load_yaml_config, streaming_config_from_dict
from logscope.exporter import export_csv, write_export
from logscope.filters import filter_records, get_date_range, get_sources
from logscope.formatter import get_formatter
from logscope.models import FilterSpec, LogRecord
from logscope.normalizer import normalize_level
from logscope.parsers import parse_file
from logscope.session import LiveSession
from logscope.stats import compute_statistics, format_stats_json, format_stats_text
from logscope.streaming import LogStreamingService, ReconnectExhaustedError, StreamError
from logscope.validation import (
    ValidationError,
    validate_file,
    validate_records,
    validate_streaming_config,
)

logger = logging.getLogger("logscope")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NO_LOGS = 2

NO_LOGS_MESSAGE = "No logs found in file"


def build_parser() -> ArgumentParser:
    """Build the CLI argument parser."""
    parser = ArgumentParser(
        prog="logscope",
        description="Parse, filter, and stream application logs.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    parse_cmd = sub.add_parser("parse", help="Parse a log file (log, txt, json, csv, xml)")
    parse_cmd.add_argument("file", help="Log file path")
    parse_cmd.add_argument(
        "--level",
        action="append",
        default=[],
        help="Keep only this level; repeat for several (ERROR, WARN, INFO, DEBUG, TRACE)",
    )
    parse_cmd.add_argument("--search", default="", help="Case-insensitive keyword")
    parse_cmd.add_argument("--source", default="", help="Exact source name")
    parse_cmd.add_argument("--date-from", help="Earliest day, YYYY-MM-DD (UTC)")
    parse_cmd.add_argument("--date-to", help="Latest day, YYYY-MM-DD (UTC)")
    parse_cmd.add_argument(
        "--stats", action="store_true", help="Show statistics instead of log entries",
    )
    parse_cmd.add_argument(
        "--output", choices=["text", "json", "csv"], help="Output format (default: text)",
    )
    parse_cmd.add_argument("--color", action="store_true", help="Colorize output by level")
    parse_cmd.add_argument("--lines", type=int, help="Limit output to N entries")
    parse_cmd.add_argument("--export", help="Also write the filtered logs to PATH (.json or .csv)")
    parse_cmd.add_argument("--config", help="YAML config file")

    stream_cmd = sub.add_parser("stream", help="Follow a remote log endpoint")
    stream_cmd.add_argument("endpoint", nargs="?", help="http(s):// URL, or tcp:// / tls:// with --socket")
    stream_cmd.add_argument("--socket", action="store_true", help="Use a persistent socket")
    stream_cmd.add_argument("--method", choices=["GET", "POST"], type=str.upper)
    stream_cmd.add_argument("--interval", type=int, help="Polling interval in ms")
    stream_cmd.add_argument("--retry-attempts", type=int, help="Socket reconnect attempts")
    stream_cmd.add_argument("--retry-delay", type=int, help="Base reconnect delay in ms")
    stream_cmd.add_argument(
        "--header", action="append", default=[], metavar="K=V", help="Extra request header",
    )
    stream_cmd.add_argument("--output", choices=["text", "json"], help="Output format")
    stream_cmd.add_argument("--color", action="store_true", help="Colorize output by level")
    stream_cmd.add_argument("--config", help="YAML config file")
    return parser


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------

def _filter_spec(args) -> FilterSpec:
    return FilterSpec(
        levels=frozenset(normalize_level(level) for level in args.level),
        keyword=args.search,
        source=args.source,
        date_from=args.date_from,
        date_to=args.date_to,
    )


def _print_records(records: list[LogRecord], output: str, color: bool, limit: int | None) -> None:
    if limit is not None:
        records = list(islice(records, limit))
    if output == "csv":
        print(export_csv(records))
        return
    formatter = get_formatter(output_format=output, color=color)
    for record in records:
        print(formatter(record))


def run_parse(args, config) -> int:
    try:
        validate_file(os.path.basename(args.file), os.path.getsize(args.file))
        with open(args.file, "r", encoding="utf-8-sig", errors="replace") as f:
            content = f.read()
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except OSError as e:
        print(f"Error: could not read {args.file}: {e.strerror or e}", file=sys.stderr)
        return EXIT_FAILURE

    records = parse_file(content, os.path.basename(args.file))
    try:
        validate_records(records)
    except ValidationError as e:
        if not records:
            print(NO_LOGS_MESSAGE, file=sys.stderr)
            return EXIT_NO_LOGS
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    logger.info("Parsed %d log(s) from %s", len(records), args.file)

    try:
        filtered = filter_records(records, _filter_spec(args))
    except ValueError as e:
        print(f"Error: invalid date filter: {e}", file=sys.stderr)
        return EXIT_FAILURE

    output = args.output or config.output_format
    if args.stats:
        stats = compute_statistics(filtered)
        if output == "json":
            print(format_stats_json(stats))
        else:
            print(format_stats_text(stats, filtered))
            date_range = get_date_range(records)
            if date_range is not None:
                logger.debug("File covers %s to %s, sources: %s",
                             date_range.min, date_range.max, ", ".join(get_sources(records)))
    else:
        _print_records(filtered, output, args.color or config.color, args.lines)

    if args.export:
        fmt = write_export(filtered, args.export)
        logger.info("Exported %d log(s) as %s to %s", len(filtered), fmt, args.export)
    return EXIT_OK


# ---------------------------------------------------------------------------
# stream
# ---------------------------------------------------------------------------

def _parse_headers(pairs: list[str]) -> dict[str, str]:
    headers = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Header must look like KEY=VALUE: {pair}")
        headers[key.strip()] = value.strip()
    return headers


def build_streaming_config(args, config):
    """Merge the config file's `stream:` section with command-line overrides."""
    data = dict(config.stream)
    overrides = {
        "endpoint": args.endpoint,
        "method": args.method,
        "polling_interval": args.interval,
        "retry_attempts": args.retry_attempts,
        "retry_delay": args.retry_delay,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    if args.socket:
        data["use_socket"] = True
    if args.header:
        data["headers"] = {**(data.get("headers") or {}), **_parse_headers(args.header)}
    return streaming_config_from_dict(data, config)


async def follow_stream(session: LiveSession, streaming_config) -> None:
    """Connect and block until the stream gives up or the task is cancelled."""
    done = asyncio.Event()

    def on_error(error: Exception) -> None:
        if isinstance(error, ReconnectExhaustedError):
            done.set()

    unsubscribe = session.service.on_error(on_error)
    try:
        await session.connect(streaming_config)
        await done.wait()
    finally:
        unsubscribe()
        session.disconnect()


def run_stream(args, config) -> int:
    try:
        streaming_config = build_streaming_config(args, config)
        validate_streaming_config(streaming_config)
    except (ValueError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE

    formatter = get_formatter(output_format=args.output or config.output_format,
                              color=args.color or config.color)

    def print_batch(snapshot, new_records, is_appending):
        for record in new_records:
            print(formatter(record), flush=True)

    async def main_async() -> None:
        async with LogStreamingService() as service:
            session = LiveSession(service, config.max_records, on_records=print_batch)
            await follow_stream(session, streaming_config)

    try:
        asyncio.run(main_async())
    except StreamError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    # follow_stream only returns on its own once reconnecting has given up
    print(f"Error: lost connection to {streaming_config.endpoint}", file=sys.stderr)
    return EXIT_FAILURE


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(load_yaml_config(args.config))
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [LOGSCOPE] %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    if args.command == "parse":
        return run_parse(args, config)
    return run_stream(args, config)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(0)
    except BrokenPipeError:
        sys.exit(0)
