"""Export a record sequence as a JSON array or CSV."""

import json
import os
import tempfile
import time
from typing import Iterable

from logscope.models import LogRecord, record_to_dict

CSV_HEADERS = ("ID", "Timestamp", "Level", "Source", "Message")


def export_json(records: Iterable[LogRecord]) -> str:
    return json.dumps([record_to_dict(r) for r in records], indent=2, default=str)


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def export_csv(records: Iterable[LogRecord]) -> str:
    """One row per record; the message column is always quoted."""
    rows = [",".join(CSV_HEADERS)]
    for r in records:
        rows.append(",".join([r.id, r.timestamp, r.level, r.source, _quote(r.message)]))
    return "\n".join(rows)


def export_filename(fmt: str) -> str:
    """Default download name, e.g. 'logs-1706343322123.json'."""
    return f"logs-{int(time.time() * 1000)}.{fmt}"


def write_export(records: Iterable[LogRecord], path: str) -> str:
    """Write records to *path* (format from its extension) atomically.

    Returns the format written: 'csv' for .csv paths, 'json' otherwise.
    """
    fmt = "csv" if path.lower().endswith(".csv") else "json"
    data = export_csv(records) if fmt == "csv" else export_json(records)

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    return fmt
