"""Tests for logscope/normalizer.py"""

import unittest

from logscope.models import LogRecord
from logscope.normalizer import (
    MESSAGE_KEYS,
    LEVEL_KEYS,
    ensure_unique_ids,
    find_field,
    format_iso,
    normalize_level,
    normalize_record,
    normalize_timestamp,
    to_datetime,
)


class TestNormalizeLevel(unittest.TestCase):
    def test_closed_set_passthrough(self):
        for level in ("ERROR", "WARNING", "INFO", "DEBUG", "TRACE"):
            self.assertEqual(normalize_level(level), level)

    def test_critical_is_error(self):
        self.assertEqual(normalize_level("CRITICAL"), "ERROR")
        self.assertEqual(normalize_level("fatal"), "ERROR")
        self.assertEqual(normalize_level("err"), "ERROR")

    def test_warn_is_warning(self):
        self.assertEqual(normalize_level("warn"), "WARNING")

    def test_lowercase(self):
        self.assertEqual(normalize_level("debug"), "DEBUG")
        self.assertEqual(normalize_level("trace"), "TRACE")

    def test_unknown_is_info(self):
        self.assertEqual(normalize_level("verbose"), "INFO")
        self.assertEqual(normalize_level(""), "INFO")
        self.assertEqual(normalize_level(None), "INFO")


class TestNormalizeTimestamp(unittest.TestCase):
    def test_iso_passes_through_verbatim(self):
        self.assertEqual(normalize_timestamp("2024-01-01T00:00:00Z"), "2024-01-01T00:00:00Z")
        self.assertEqual(
            normalize_timestamp("2024-01-27T08:15:22.500+02:00"), "2024-01-27T08:15:22.500+02:00"
        )

    def test_log4j_comma_millis(self):
        self.assertEqual(normalize_timestamp("2024-01-27 08:15:22,123"), "2024-01-27T08:15:22.123Z")

    def test_slash_date(self):
        self.assertEqual(normalize_timestamp("2024/01/27 08:15:22"), "2024-01-27T08:15:22.000Z")

    def test_apache_time_converted_to_utc(self):
        self.assertEqual(
            normalize_timestamp("10/Oct/2000:13:55:36 -0700"), "2000-10-10T20:55:36.000Z"
        )

    def test_epoch_seconds(self):
        self.assertEqual(normalize_timestamp(1706343322), "2024-01-27T08:15:22.000Z")

    def test_epoch_millis(self):
        self.assertEqual(normalize_timestamp(1706343322123), "2024-01-27T08:15:22.123Z")

    def test_unparseable_falls_back_to_now(self):
        result = normalize_timestamp("sometime last week")
        self.assertIsNotNone(to_datetime(result))
        self.assertTrue(result.endswith("Z"))

    def test_non_string_non_number_falls_back_to_now(self):
        self.assertIsNotNone(to_datetime(normalize_timestamp({"nested": True})))
        self.assertIsNotNone(to_datetime(normalize_timestamp(True)))


class TestToDatetime(unittest.TestCase):
    def test_naive_is_utc(self):
        dt = to_datetime("2024-01-27 08:15:22")
        self.assertEqual(dt.utcoffset().total_seconds(), 0)
        self.assertEqual(format_iso(dt), "2024-01-27T08:15:22.000Z")

    def test_garbage_is_none(self):
        self.assertIsNone(to_datetime("not a date"))
        self.assertIsNone(to_datetime(""))


class TestFindField(unittest.TestCase):
    def test_alias_order(self):
        raw = {"text": "third", "msg": "second"}
        self.assertEqual(find_field(raw, MESSAGE_KEYS), "second")

    def test_case_insensitive(self):
        self.assertEqual(find_field({"Message": "hi"}, MESSAGE_KEYS), "hi")

    def test_exact_key_wins_over_case_variant(self):
        raw = {"Level": "debug", "level": "error"}
        self.assertEqual(find_field(raw, LEVEL_KEYS), "error")

    def test_empty_value_skipped(self):
        raw = {"message": "", "msg": "fallback"}
        self.assertEqual(find_field(raw, MESSAGE_KEYS), "fallback")

    def test_missing_is_none(self):
        self.assertIsNone(find_field({"other": 1}, MESSAGE_KEYS))


class TestNormalizeRecord(unittest.TestCase):
    def test_identity_on_normalized_names(self):
        raw = {
            "timestamp": "2024-01-01T00:00:00Z",
            "level": "ERROR",
            "source": "svc",
            "message": "boom",
        }
        record = normalize_record(raw, "log-0")
        self.assertEqual(record.timestamp, raw["timestamp"])
        self.assertEqual(record.level, raw["level"])
        self.assertEqual(record.source, raw["source"])
        self.assertEqual(record.message, raw["message"])
        self.assertEqual(record.metadata, raw)

    def test_aliases(self):
        raw = {"time": 1706343322, "severity": "warn", "logger": "auth", "msg": "denied"}
        record = normalize_record(raw, "log-3")
        self.assertEqual(record.id, "log-3")
        self.assertEqual(record.timestamp, "2024-01-27T08:15:22.000Z")
        self.assertEqual(record.level, "WARNING")
        self.assertEqual(record.source, "auth")
        self.assertEqual(record.message, "denied")

    def test_defaults(self):
        raw = {"foo": "bar"}
        record = normalize_record(raw, "log-0", default_source="API")
        self.assertEqual(record.level, "INFO")
        self.assertEqual(record.source, "API")
        self.assertEqual(record.message, '{"foo":"bar"}')
        self.assertIsNotNone(to_datetime(record.timestamp))

    def test_raw_id_passes_through(self):
        record = normalize_record({"id": 42, "message": "x"}, "log-0")
        self.assertEqual(record.id, "42")

    def test_nested_message_serialized(self):
        record = normalize_record({"message": {"code": 7}}, "log-0")
        self.assertEqual(record.message, '{"code": 7}')


class TestEnsureUniqueIds(unittest.TestCase):
    def _record(self, record_id):
        return LogRecord(record_id, "2024-01-01T00:00:00Z", "INFO", "s", "m")

    def test_duplicates_suffixed(self):
        records = [self._record("a"), self._record("a"), self._record("a"), self._record("b")]
        ids = [r.id for r in ensure_unique_ids(records)]
        self.assertEqual(ids, ["a", "a-1", "a-2", "b"])

    def test_unique_untouched(self):
        records = [self._record("x"), self._record("y")]
        self.assertEqual(ensure_unique_ids(records), records)


if __name__ == "__main__":
    unittest.main()
