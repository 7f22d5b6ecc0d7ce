"""
Tests for the daily growth series builder.
"""

import math
from datetime import date, timedelta
from zoneinfo import ZoneInfo

import pytest

from backend.admin_analytics.metrics import active_users
from backend.admin_analytics.models import RawRecordSet
from backend.admin_analytics.normalizer import normalize_records
from backend.admin_analytics.timeseries import _daterange, build_growth_series


class TestSeriesShape:
    @pytest.mark.parametrize("window_days", [0, 1, 7, 30, 90, 365])
    def test_series_has_window_plus_one_points(self, dataset, now, window_days):
        series = build_growth_series(dataset, window_days, now)
        assert len(series) == window_days + 1

    @pytest.mark.parametrize("window_days", [0, 7])
    def test_empty_dataset_still_yields_every_day(self, empty_dataset, now, window_days):
        series = build_growth_series(empty_dataset, window_days, now)
        assert len(series) == window_days + 1
        for point in series:
            assert point.total_users == 0
            assert point.active_users == 0
            assert point.applications_per_user == 0.0
            assert point.retention_percent == 0.0

    def test_days_are_consecutive_and_end_today(self, dataset, now):
        series = build_growth_series(dataset, 7, now)
        assert series[-1].date == now.date()
        assert series[0].date == now.date() - timedelta(days=7)
        for previous, current in zip(series, series[1:]):
            assert current.date - previous.date == timedelta(days=1)

    def test_negative_window_is_rejected(self, dataset, now):
        with pytest.raises(ValueError):
            build_growth_series(dataset, -1, now)

    def test_daterange_excludes_end(self):
        assert list(_daterange(date(2024, 1, 1), date(2024, 1, 4))) == [
            date(2024, 1, 1),
            date(2024, 1, 2),
            date(2024, 1, 3),
        ]


class TestSeriesValues:
    def test_new_user_today_among_hundred(self, now):
        users = [{"id": f"old-{index}", "created_at": (now - timedelta(days=60)).isoformat()} for index in range(99)]
        users.append({"id": "fresh", "created_at": now.isoformat()})
        dataset = normalize_records(RawRecordSet(users=users))

        series = build_growth_series(dataset, 7, now)

        assert series[-1].new_users == 1
        assert series[-1].total_users == 100
        for point in series[:-1]:
            assert point.new_users == 0
            assert point.total_users == 99

    def test_cumulative_totals(self, dataset, now):
        series = build_growth_series(dataset, 7, now)
        today = series[-1]
        assert today.total_users == 4
        assert today.total_applications == 7
        assert today.applications_per_user == 1.75
        # u4 joined two days ago
        assert series[-3].new_users == 1
        assert series[0].total_users == 3

    def test_active_users_use_trailing_week(self, dataset, now):
        today = build_growth_series(dataset, 0, now)[0]
        # u1 signed in yesterday, u2 applied five days ago, u4 signed in two days ago
        assert today.active_users == 3
        assert today.retention_percent == 75.0

    def test_session_time_is_bucketed_by_event_day(self, dataset, now):
        series = build_growth_series(dataset, 7, now)
        by_day = {point.date: point for point in series}
        assert by_day[(now - timedelta(days=1)).date()].avg_session_time == 10.0
        assert by_day[(now - timedelta(days=5)).date()].avg_session_time == 5.0
        assert by_day[now.date()].avg_session_time == 0.0

    def test_undated_records_never_enter_a_bucket(self, now):
        raw = RawRecordSet(
            users=[{"id": "u1"}, {"id": "u2", "created_at": now.isoformat()}],
            applications=[{"id": "a1", "user_id": "u2"}],
        )
        today = build_growth_series(normalize_records(raw), 0, now)[0]
        assert today.total_users == 1
        assert today.total_applications == 0

    def test_undated_users_are_not_counted_active(self, now):
        raw = RawRecordSet(
            users=[
                {"id": "u1", "last_sign_in_at": now.isoformat()},
                {"id": "u2", "created_at": now.isoformat(), "last_sign_in_at": now.isoformat()},
            ],
        )
        dataset = normalize_records(raw)

        today = build_growth_series(dataset, 0, now)[0]

        assert len(active_users(dataset, now)) == 2
        assert today.active_users == 1
        assert today.active_users <= today.total_users

    def test_dates_that_overflow_the_display_timezone_are_skipped(self, now):
        raw = RawRecordSet(
            users=[
                {"id": "ancient", "created_at": "0001-01-01T00:00:00Z", "last_sign_in_at": now.isoformat()},
                {"id": "u2", "created_at": now.isoformat()},
            ],
            applications=[{"id": "a1", "user_id": "u2", "created_at": "0001-01-01T00:00:00Z"}],
        )

        series = build_growth_series(normalize_records(raw), 7, now, ZoneInfo("America/New_York"))

        assert len(series) == 8
        assert series[-1].total_users == 1
        assert series[-1].total_applications == 0

    def test_timezone_shifts_day_boundaries(self, now):
        late_evening = now.replace(hour=23, minute=30)
        raw = RawRecordSet(users=[{"id": "u1", "created_at": late_evening.isoformat()}])
        dataset = normalize_records(raw)

        utc_series = build_growth_series(dataset, 1, late_evening)
        tokyo_series = build_growth_series(dataset, 1, late_evening, ZoneInfo("Asia/Tokyo"))

        assert utc_series[-1].date == date(2024, 6, 15)
        assert tokyo_series[-1].date == date(2024, 6, 16)
        assert tokyo_series[-1].new_users == 1

    def test_all_fields_finite(self, dataset, now):
        for point in build_growth_series(dataset, 90, now):
            for value in point.as_dict().values():
                if isinstance(value, float):
                    assert math.isfinite(value)
