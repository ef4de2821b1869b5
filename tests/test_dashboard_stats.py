from datetime import datetime, timedelta, timezone

import pytest

from library_portal.services.dashboard_stats_service import (
    DashboardStatsService,
    summarize_students,
)

from .conftest import make_record, seed_record

NOW = datetime(2024, 9, 30, 12, 0, tzinfo=timezone.utc)


def registered(delta: timedelta, **overrides):
    return make_record(registrationDate=(NOW - delta).isoformat(), **overrides)


class TestSummarizeStudents:
    """Counts, course distribution and the trailing registration window."""

    def test_empty_record_set(self):
        stats = summarize_students([], now=NOW)

        assert stats.total_students == 0
        assert stats.new_registrations == 0
        assert stats.course_distribution == {}

    def test_window_is_open_at_start_and_closed_at_now(self):
        records = [
            registered(timedelta(days=30)),  # exactly at the window start
            registered(timedelta(days=30) - timedelta(seconds=1)),
            registered(timedelta(days=1)),
            registered(timedelta(0)),  # exactly now
            registered(-timedelta(hours=1)),  # future timestamp
            registered(timedelta(days=400)),
        ]

        stats = summarize_students(records, now=NOW, window_days=30)

        assert stats.total_students == 6
        assert stats.new_registrations == 3

    def test_zero_day_window_counts_nothing(self):
        records = [registered(timedelta(0)), registered(timedelta(hours=1))]

        stats = summarize_students(records, now=NOW, window_days=0)

        assert stats.total_students == 2
        assert stats.new_registrations == 0

    def test_zulu_timestamps_are_understood(self):
        record = make_record(registrationDate="2024-09-29T08:00:00.000Z")

        assert summarize_students([record], now=NOW).new_registrations == 1

    def test_unparseable_registration_date_is_not_new(self):
        record = make_record(registrationDate="yesterday")

        stats = summarize_students([record], now=NOW)
        assert stats.total_students == 1
        assert stats.new_registrations == 0

    def test_course_distribution_in_first_seen_order(self):
        records = [
            make_record(course="IT"),
            make_record(course="CSE"),
            make_record(course="IT"),
            make_record(course="BBA"),
        ]

        stats = summarize_students(records, now=NOW)

        assert list(stats.course_distribution.items()) == [("IT", 2), ("CSE", 1), ("BBA", 1)]

    def test_distribution_always_sums_to_total(self):
        records = [make_record(course="IT"), make_record(course=None), make_record(course="")]

        stats = summarize_students(records, now=NOW)

        assert stats.course_distribution == {"IT": 1, "N/A": 2}
        assert sum(stats.course_distribution.values()) == stats.total_students

    def test_serialised_with_camel_case_keys(self):
        stats = summarize_students([make_record(course="IT")], now=NOW)

        assert stats.model_dump(by_alias=True) == {
            "totalStudents": 1,
            "newRegistrations": 0,
            "courseDistribution": {"IT": 1},
        }


class TestDashboardStatsService:
    @pytest.mark.asyncio
    async def test_total_matches_listed_students(self, student_service, record_store):
        seed_record(record_store, make_record("u-1", course="CSE"))
        seed_record(
            record_store,
            make_record("u-2", course="AIML", prn="2021000002", mobile="9000000002"),
        )
        service = DashboardStatsService(student_service)

        stats = await service.compute_stats(now=NOW)

        assert stats.total_students == len(await student_service.list_all()) == 2
        assert sum(stats.course_distribution.values()) == stats.total_students

    @pytest.mark.asyncio
    async def test_recomputed_on_every_call(self, student_service, record_store):
        service = DashboardStatsService(student_service)
        assert (await service.compute_stats(now=NOW)).total_students == 0

        seed_record(record_store, make_record("u-1"))

        assert (await service.compute_stats(now=NOW)).total_students == 1
