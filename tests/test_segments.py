"""Tests for page and date-range planning."""

from datetime import date, timedelta

import pytest

from redash_dl.client import InvalidInput
from redash_dl.segments import (
    DateSegment,
    PageSegment,
    WholeQuery,
    add_months,
    plan_pages,
    plan_periods,
)


class TestPlanPages:
    def test_pages_inject_offset_and_limit(self):
        pages = list(plan_pages(limit=100, max_iterations=3))

        assert pages == [
            PageSegment(index=0, offset_rows=0, limit_rows=100),
            PageSegment(index=1, offset_rows=100, limit_rows=100),
            PageSegment(index=2, offset_rows=200, limit_rows=100),
        ]
        assert pages[2].parameters() == {"offset_rows": "200", "limit_rows": "100"}

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_limit_is_a_single_unmodified_query(self, limit):
        pages = list(plan_pages(limit=limit, max_iterations=50))

        assert pages == [WholeQuery()]
        assert pages[0].parameters() == {}

    def test_zero_iterations(self):
        assert list(plan_pages(limit=10, max_iterations=0)) == []

    def test_planning_is_lazy(self):
        pages = plan_pages(limit=10, max_iterations=10**9)
        assert next(pages).offset_rows == 0
        assert next(pages).offset_rows == 10


class TestPlanPeriods:
    def test_months_of_a_leap_year_quarter(self):
        segments = plan_periods("2024-01-01", "2024-03-31", "month", 1)

        assert [(s.start_date.isoformat(), s.end_date.isoformat()) for s in segments] == [
            ("2024-01-01", "2024-01-31"),
            ("2024-02-01", "2024-02-29"),
            ("2024-03-01", "2024-03-31"),
        ]
        assert segments[1].parameters() == {"start_date": "2024-02-01", "end_date": "2024-02-29"}

    def test_last_segment_is_cut_at_end(self):
        segments = plan_periods("2023-01-01", "2023-01-10", "week")

        assert [(s.start_date.day, s.end_date.day) for s in segments] == [(1, 7), (8, 10)]

    def test_interval_multiple(self):
        segments = plan_periods("2023-01-01", "2023-12-31", "m", 2)

        assert len(segments) == 6
        assert segments[0].end_date == date(2023, 2, 28)
        assert segments[-1].start_date == date(2023, 11, 1)

    def test_quarter_is_three_months(self):
        segments = plan_periods("2023-01-01", "2023-12-31", "Q")

        assert [s.start_date.month for s in segments] == [1, 4, 7, 10]
        assert segments[0].end_date == date(2023, 3, 31)

    def test_year(self):
        segments = plan_periods("2020-02-29", "2022-06-30", "year")

        assert [(s.start_date, s.end_date) for s in segments] == [
            (date(2020, 2, 29), date(2021, 2, 27)),
            (date(2021, 2, 28), date(2022, 2, 27)),
            (date(2022, 2, 28), date(2022, 6, 30)),
        ]

    def test_single_day(self):
        segments = plan_periods("2024-05-05", "2024-05-05", "day")
        assert segments == [DateSegment(index=0, start_date=date(2024, 5, 5), end_date=date(2024, 5, 5))]

    def test_start_after_end_yields_nothing(self):
        assert plan_periods("2024-05-06", "2024-05-05", "day") == []

    @pytest.mark.parametrize(
        "start, end, interval, multiple",
        [
            ("2024-01-31", "2024-07-15", "month", 1),
            ("2023-03-15", "2025-01-01", "quarter", 1),
            ("2021-12-30", "2022-02-02", "day", 3),
            ("2019-06-01", "2024-06-01", "year", 2),
            ("2024-02-27", "2024-04-01", "week", 2),
        ],
    )
    def test_segments_partition_the_range(self, start, end, interval, multiple):
        segments = plan_periods(start, end, interval, multiple)

        assert segments[0].start_date == date.fromisoformat(start)
        assert segments[-1].end_date == date.fromisoformat(end)
        for previous, following in zip(segments, segments[1:]):
            assert following.start_date == previous.end_date + timedelta(days=1)
        for index, segment in enumerate(segments):
            assert segment.index == index
            assert segment.start_date <= segment.end_date <= date.fromisoformat(end)
        assert plan_periods(start, end, interval, multiple) == segments

    def test_unknown_interval(self):
        with pytest.raises(InvalidInput, match="Unknown interval 'fortnight'"):
            plan_periods("2024-01-01", "2024-02-01", "fortnight")

    @pytest.mark.parametrize("bad", ["2024/01/01", "01-02-2024", "2024-13-01", "2024-1-1", ""])
    def test_malformed_dates_name_the_format(self, bad):
        with pytest.raises(InvalidInput, match="yyyy-MM-dd"):
            plan_periods(bad, "2024-02-01", "day")

    def test_multiple_must_be_positive(self):
        with pytest.raises(InvalidInput):
            plan_periods("2024-01-01", "2024-02-01", "day", 0)

    def test_accepts_date_objects(self):
        segments = plan_periods(date(2024, 1, 1), date(2024, 1, 2), "d")
        assert len(segments) == 2


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (date(2024, 1, 31), 1, date(2024, 2, 29)),
        (date(2023, 1, 31), 1, date(2023, 2, 28)),
        (date(2023, 11, 15), 3, date(2024, 2, 15)),
        (date(2024, 2, 29), 12, date(2025, 2, 28)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected
