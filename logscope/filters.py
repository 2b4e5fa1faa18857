"""Filter predicates over LogRecords: level, date range, keyword, source."""

import json
from datetime import date, datetime, time, timezone
from typing import Callable, Iterable

from logscope.models import DateRange, FilterSpec, LogRecord
from logscope.normalizer import to_datetime


def _as_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def _day_start(value: str | date) -> datetime:
    return datetime.combine(_as_date(value), time.min, tzinfo=timezone.utc)


def _day_end(value: str | date) -> datetime:
    return datetime.combine(_as_date(value), time(23, 59, 59, 999000), tzinfo=timezone.utc)


def search_text(record: LogRecord) -> str:
    """The lowercased text a keyword is matched against."""
    metadata = json.dumps(record.metadata, default=str)
    return f"{record.message} {record.source} {metadata}".lower()


def filter_by_levels(record: LogRecord, levels: frozenset[str]) -> bool:
    """True if the record's level is in the set."""
    return record.level in levels


def filter_by_date_range(
    record: LogRecord,
    date_from: str | date | None,
    date_to: str | date | None,
) -> bool:
    """True if the timestamp lies in [date_from 00:00, date_to 23:59:59.999] UTC.

    A record whose timestamp cannot be read is outside every range.
    """
    ts = to_datetime(record.timestamp)
    if ts is None:
        return False
    if date_from is not None and ts < _day_start(date_from):
        return False
    if date_to is not None and ts > _day_end(date_to):
        return False
    return True


def filter_by_keyword(record: LogRecord, keyword: str) -> bool:
    """True if keyword appears in message, source or metadata (case-insensitive)."""
    return keyword.lower() in search_text(record)


def filter_by_source(record: LogRecord, source: str) -> bool:
    """True if the source matches exactly."""
    return record.source == source


def build_filter_chain(spec: FilterSpec) -> Callable[[LogRecord], bool]:
    """Combine the active criteria of *spec* into one predicate.

    Returns a function that ANDs all active predicates together.
    """
    predicates = []

    if spec.levels:
        levels = frozenset(spec.levels)
        predicates.append(lambda record, lv=levels: filter_by_levels(record, lv))

    if spec.date_from or spec.date_to:
        date_from = spec.date_from or None
        date_to = spec.date_to or None
        predicates.append(
            lambda record, f=date_from, t=date_to: filter_by_date_range(record, f, t)
        )

    if spec.keyword.strip():
        keyword = spec.keyword
        predicates.append(lambda record, k=keyword: filter_by_keyword(record, k))

    if spec.source.strip():
        source = spec.source
        predicates.append(lambda record, s=source: filter_by_source(record, s))

    if not predicates:
        return lambda record: True

    def combined(record: LogRecord) -> bool:
        return all(p(record) for p in predicates)

    return combined


def filter_records(records: Iterable[LogRecord], spec: FilterSpec) -> list[LogRecord]:
    """Return the records passing every active criterion, in original order."""
    matches = build_filter_chain(spec)
    return [record for record in records if matches(record)]


def get_sources(records: Iterable[LogRecord]) -> list[str]:
    """Distinct source values, sorted."""
    return sorted({record.source for record in records})


def get_date_range(records: Iterable[LogRecord]) -> DateRange | None:
    """Earliest and latest calendar dates (UTC), or None when nothing is dated."""
    stamps = [ts for ts in (to_datetime(r.timestamp) for r in records) if ts is not None]
    if not stamps:
        return None
    return DateRange(
        min=min(stamps).date().isoformat(),
        max=max(stamps).date().isoformat(),
    )
