"""Unit tests for per-issue hygiene validators and date helpers."""

from datetime import datetime, timezone

import pytest

from pulse.compute.dates import add_months, end_of_month, format_timestamp, parse_timestamp
from pulse.compute.validators import (
    business_days_between,
    has_missing_description,
    has_missing_estimate,
    has_missing_priority,
    has_no_recent_comment,
    has_wip_age_violation,
)

# Wednesday
NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


class TestDates:
    def test_parse_z_suffix(self):
        assert parse_timestamp("2026-03-11T12:00:00.000Z") == NOW

    def test_parse_date_only_is_utc_midnight(self):
        assert parse_timestamp("2026-04-30") == datetime(2026, 4, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "not a date"])
    def test_parse_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_format_timestamp(self):
        assert format_timestamp(NOW) == "2026-03-11T12:00:00.000Z"

    def test_add_months_clamps_day(self):
        start = datetime(2026, 8, 31, tzinfo=timezone.utc)
        assert add_months(start, 6) == datetime(2027, 2, 28, tzinfo=timezone.utc)

    def test_end_of_month(self):
        end = end_of_month(datetime(2026, 2, 10, tzinfo=timezone.utc))
        assert (end.day, end.hour, end.minute, end.second) == (28, 23, 59, 59)


class TestBusinessDays:
    def test_same_instant(self):
        assert business_days_between(NOW, NOW) == 0

    def test_across_weekend(self):
        friday = datetime(2026, 3, 6, 12, 0, tzinfo=timezone.utc)
        monday = datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc)
        assert business_days_between(friday, monday) == 1

    def test_full_week(self):
        previous_wednesday = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)
        assert business_days_between(previous_wednesday, NOW) == 5


class TestFieldValidators:
    @pytest.mark.parametrize("estimate,missing", [(None, True), (0, True), (1, False), (0.5, False)])
    def test_missing_estimate(self, estimate, missing):
        assert has_missing_estimate({"estimate": estimate}) is missing

    @pytest.mark.parametrize("priority,missing", [(0, True), (None, True), (1, False), (4, False)])
    def test_missing_priority(self, priority, missing):
        assert has_missing_priority({"priority": priority}) is missing

    @pytest.mark.parametrize("description,missing", [(None, True), ("", True), ("   ", True), ("x", False)])
    def test_missing_description(self, description, missing):
        assert has_missing_description({"description": description}) is missing


class TestNoRecentComment:
    def test_recent_comment(self):
        issue = {"last_comment_at": "2026-03-10T09:00:00.000Z"}
        assert has_no_recent_comment(issue, NOW) is False

    def test_exactly_three_business_days_is_fine(self):
        # Fri 6th -> Wed 11th: Mon, Tue, Wed
        issue = {"last_comment_at": "2026-03-06T09:00:00.000Z"}
        assert has_no_recent_comment(issue, NOW) is False

    def test_four_business_days_is_violation(self):
        issue = {"last_comment_at": "2026-03-05T09:00:00.000Z"}
        assert has_no_recent_comment(issue, NOW) is True

    def test_falls_back_to_created_at(self):
        issue = {"last_comment_at": None, "created_at": "2026-02-01T00:00:00.000Z"}
        assert has_no_recent_comment(issue, NOW) is True

    def test_no_dates_is_violation(self):
        assert has_no_recent_comment({}, NOW) is True


class TestWipAge:
    def test_started_over_fourteen_days(self):
        issue = {"state_type": "started", "started_at": "2026-02-20T12:00:00.000Z"}
        assert has_wip_age_violation(issue, NOW) is True

    def test_started_exactly_fourteen_days(self):
        issue = {"state_type": "started", "started_at": "2026-02-25T12:00:00.000Z"}
        assert has_wip_age_violation(issue, NOW) is False

    def test_not_started(self):
        issue = {"state_type": "unstarted", "started_at": "2026-01-01T00:00:00.000Z"}
        assert has_wip_age_violation(issue, NOW) is False

    def test_missing_started_at(self):
        assert has_wip_age_violation({"state_type": "started"}, NOW) is False
