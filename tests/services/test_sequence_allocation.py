"""
Tests for SequenceService (``approval_kernel.services.sequence_service``).

Invariants tested:
- First allocation of a (type, day) returns 1; later ones increment.
- Counters are independent per type and per day.
- Identifiers are ``PREFIX-TYPE-YYMMDD-NNN`` and never truncated.
- Allocation is a single upsert, never a read-then-write.
"""

import inspect
import re
from datetime import date, datetime, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from approval_kernel.services.sequence_service import (
    SequenceService,
    date_key_for,
    format_identifier,
)


class TestFormatting:

    def test_identifier_format(self):
        assert format_identifier("WFMT", "MAF", date(2026, 2, 9), 7) == "WFMT-MAF-260209-007"

    def test_counter_wider_than_min_width_is_kept(self):
        assert format_identifier("WFMT", "PR", date(2026, 2, 9), 12345) == "WFMT-PR-260209-12345"

    def test_datetime_uses_its_date(self):
        moment = datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)
        assert date_key_for(moment) == "2026-12-31"
        assert format_identifier("X", "CATTO", moment, 1, min_width=4) == "X-CATTO-261231-0001"

    @given(
        value=st.integers(min_value=1, max_value=10**9),
        day=st.dates(min_value=date(2000, 1, 1), max_value=date(2099, 12, 31)),
        min_width=st.integers(min_value=1, max_value=8),
    )
    def test_counter_round_trips_through_identifier(self, value, day, min_width):
        identifier = format_identifier("WFMT", "MAF", day, value, min_width)
        prefix, request_type, stamp, counter = identifier.split("-")
        assert (prefix, request_type) == ("WFMT", "MAF")
        assert stamp == day.strftime("%y%m%d")
        assert int(counter) == value
        assert len(counter) == max(min_width, len(str(value)))

    @given(a=st.integers(min_value=1, max_value=10**6), b=st.integers(min_value=1, max_value=10**6))
    def test_distinct_values_give_distinct_identifiers(self, a, b):
        day = date(2026, 2, 9)
        assert (format_identifier("WFMT", "PR", day, a) == format_identifier("WFMT", "PR", day, b)) == (a == b)


class TestAllocation:

    def test_first_value_is_one(self, sequences):
        assert sequences.next_value("MAF", date(2026, 2, 9)) == 1

    def test_values_increment(self, sequences):
        day = date(2026, 2, 9)
        assert [sequences.next_value("MAF", day) for _ in range(3)] == [1, 2, 3]

    def test_independent_per_type_and_day(self, sequences):
        day = date(2026, 2, 9)
        sequences.next_value("MAF", day)
        sequences.next_value("MAF", day)
        assert sequences.next_value("PR", day) == 1
        assert sequences.next_value("MAF", date(2026, 2, 10)) == 1

    def test_next_identifier_uses_configured_prefix(self, session):
        service = SequenceService(session, prefix="ACME", min_width=4)
        assert service.next_identifier("PR", date(2026, 2, 9)) == "ACME-PR-260209-0001"

    def test_empty_type_rejected(self, sequences):
        with pytest.raises(ValueError):
            sequences.next_value("", date(2026, 2, 9))

    def test_allocation_is_single_upsert(self):
        source = inspect.getsource(SequenceService.next_value)
        assert "on_conflict_do_update" in source
        assert not re.search(r"func\.max|MAX\s*\(", source)


class TestAdministration:

    def test_current_value_and_listing(self, sequences):
        day = date(2026, 2, 9)
        sequences.next_value("MAF", day)
        sequences.next_value("MAF", day)
        sequences.next_value("PR", date(2026, 2, 8))

        assert sequences.current_value("MAF", "2026-02-09") == 2
        assert sequences.current_value("CATTO", "2026-02-09") is None
        counters = sequences.list_counters()
        assert [(c.sequence_type, c.date_key) for c in counters] == [
            ("MAF", "2026-02-09"),
            ("PR", "2026-02-08"),
        ]
        assert [c.sequence_type for c in sequences.list_counters("PR")] == ["PR"]

    def test_reset_returns_previous_and_restarts(self, sequences):
        day = date(2026, 2, 9)
        for _ in range(5):
            sequences.next_value("MAF", day)
        assert sequences.reset("MAF", "2026-02-09", 10) == 5
        assert sequences.next_value("MAF", day) == 11

    def test_reset_of_missing_counter_creates_it(self, sequences):
        assert sequences.reset("PR", "2026-03-01", 4) is None
        assert sequences.current_value("PR", "2026-03-01") == 4

    def test_negative_reset_rejected(self, sequences):
        with pytest.raises(ValueError):
            sequences.reset("MAF", "2026-02-09", -1)
