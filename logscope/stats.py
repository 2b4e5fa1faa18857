"""Statistics: total and per-level record counts."""

import json
from typing import Iterable

from logscope.filters import get_date_range, get_sources
from logscope.models import LOG_LEVELS, LogRecord, LogStatistics


def compute_statistics(records: Iterable[LogRecord]) -> LogStatistics:
    """Count records per level in a single pass."""
    stats = LogStatistics()
    for record in records:
        stats.total += 1
        if record.level in LOG_LEVELS:
            field_name = record.level.lower()
            setattr(stats, field_name, getattr(stats, field_name) + 1)
    return stats


def format_stats_text(stats: LogStatistics, records: list[LogRecord] | None = None) -> str:
    """Human-readable stats summary. Sources and dates are shown when records are given."""
    lines = [f"Total entries: {stats.total}", "", "Level counts:"]
    for level in LOG_LEVELS:
        lines.append(f"  {level:8s} {getattr(stats, level.lower())}")

    if records:
        lines.append("")
        lines.append("Sources:")
        for source in get_sources(records):
            lines.append(f"  - {source}")
        date_range = get_date_range(records)
        if date_range:
            lines.append("")
            lines.append(f"Date range: {date_range.min} .. {date_range.max}")

    return "\n".join(lines)


def format_stats_json(stats: LogStatistics) -> str:
    """JSON stats output."""
    return json.dumps(stats.as_dict(), indent=2)
