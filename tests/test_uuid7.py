"""
Tests for the id helpers in brokerage_graph.utils.
"""

import time
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

from brokerage_graph.utils import as_utc_datetime, new_id, uuid7


class TestUuid7:
    """uuid7() returns a stdlib UUIDv7."""

    def test_returns_stdlib_uuid(self):
        result = uuid7()
        assert type(result) is UUID

    def test_version_is_7(self):
        assert uuid7().version == 7

    def test_timestamp_within_tolerance(self):
        now_ms = time.time_ns() // 1_000_000
        embedded_ms = uuid7().int >> 80
        assert abs(embedded_ms - now_ms) < 1000

    def test_time_ordered(self):
        first = uuid7()
        time.sleep(0.002)
        second = uuid7()
        assert first < second


class TestNewId:
    def test_prefix_and_uniqueness(self):
        ids = {new_id('offer') for _ in range(100)}

        assert len(ids) == 100
        assert all(i.startswith('offer_') for i in ids)


class TestAsUtcDatetime:
    def test_plain_date_is_midnight_utc(self):
        assert as_utc_datetime(date(2025, 3, 1)) == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_naive_datetime_assumed_utc(self):
        assert as_utc_datetime(datetime(2025, 3, 1, 12)).tzinfo == timezone.utc

    def test_aware_datetime_converted(self):
        pkt = timezone(timedelta(hours=5))
        result = as_utc_datetime(datetime(2025, 3, 1, 5, tzinfo=pkt))
        assert result == datetime(2025, 3, 1, 0, tzinfo=timezone.utc)
