"""Split one extraction into ordered sub-queries: offset/limit pages or date ranges."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterator, List, Union

from .client import InvalidInput

DATE_FORMAT_HINT = "yyyy-MM-dd"

INTERVAL_ALIASES: Dict[str, str] = {
    "day": "day",
    "d": "day",
    "week": "week",
    "w": "week",
    "month": "month",
    "m": "month",
    "quarter": "quarter",
    "q": "quarter",
    "year": "year",
    "y": "year",
}


@dataclass(frozen=True)
class WholeQuery:
    index: int = 0

    @property
    def label(self) -> str:
        return "full query"

    def parameters(self) -> Dict[str, str]:
        return {}


@dataclass(frozen=True)
class PageSegment:
    index: int
    offset_rows: int
    limit_rows: int

    @property
    def label(self) -> str:
        return f"rows {self.offset_rows}-{self.offset_rows + self.limit_rows - 1}"

    def parameters(self) -> Dict[str, str]:
        return {"offset_rows": str(self.offset_rows), "limit_rows": str(self.limit_rows)}


@dataclass(frozen=True)
class DateSegment:
    index: int
    start_date: date
    end_date: date

    @property
    def label(self) -> str:
        return f"{self.start_date.isoformat()}..{self.end_date.isoformat()}"

    def parameters(self) -> Dict[str, str]:
        return {"start_date": self.start_date.isoformat(), "end_date": self.end_date.isoformat()}


Segment = Union[WholeQuery, PageSegment, DateSegment]


def plan_pages(limit: int, max_iterations: int) -> Iterator[Segment]:
    """Yield offset/limit pages in order.

    With ``limit <= 0`` the query is not paginated and a single WholeQuery is
    yielded. Otherwise pages are produced lazily; deciding when the data runs
    out is left to the caller.
    """
    if limit <= 0:
        yield WholeQuery()
        return
    for index in range(max(0, max_iterations)):
        yield PageSegment(index=index, offset_rows=index * limit, limit_rows=limit)


def parse_day(value: Union[str, date]) -> date:
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        # fromisoformat accepts extra forms on newer interpreters; pin the shape first.
        if len(text) != 10 or text[4] != "-" or text[7] != "-":
            raise ValueError(text)
        return date.fromisoformat(text)
    except ValueError as exc:
        raise InvalidInput(f"Invalid date '{value}'. Use {DATE_FORMAT_HINT}.") from exc


def normalize_interval(interval: str) -> str:
    unit = INTERVAL_ALIASES.get(str(interval).strip().lower())
    if unit is None:
        choices = ", ".join(sorted({v for v in INTERVAL_ALIASES.values()}))
        raise InvalidInput(f"Unknown interval '{interval}'. Use one of: {choices} (or d/w/m/q/y).")
    return unit


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_interval(value: date, unit: str, multiple: int) -> date:
    if unit == "day":
        return value + timedelta(days=multiple)
    if unit == "week":
        return value + timedelta(weeks=multiple)
    if unit == "month":
        return add_months(value, multiple)
    if unit == "quarter":
        return add_months(value, 3 * multiple)
    if unit == "year":
        return add_months(value, 12 * multiple)
    raise InvalidInput(f"Unknown interval '{unit}'.")


def plan_periods(
    start_date: Union[str, date],
    end_date: Union[str, date],
    interval: str,
    multiple: int = 1,
) -> List[DateSegment]:
    """Cover ``[start_date, end_date]`` with consecutive, non-overlapping ranges.

    Each range is ``multiple`` interval units long except the last one, which
    is cut at ``end_date``. Invalid input fails before any range is built.
    """
    start = parse_day(start_date)
    end = parse_day(end_date)
    unit = normalize_interval(interval)
    if int(multiple) < 1:
        raise InvalidInput(f"Interval multiple must be at least 1, got {multiple}.")

    segments: List[DateSegment] = []
    current = start
    while current <= end:
        following = add_interval(current, unit, int(multiple))
        segment_end = min(following - timedelta(days=1), end)
        segments.append(DateSegment(index=len(segments), start_date=current, end_date=segment_end))
        current = following
    return segments
