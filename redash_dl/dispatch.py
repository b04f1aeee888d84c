"""Run segment queries with bounded concurrency and merge them in segment order."""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date
from functools import partial
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from .client import MAX_CONCURRENCY, QueryAborted, QueryRequest, RedashClient, ResultTable
from .progress import COMPLETED, STARTED, NullProgress, ProgressEvent, ProgressReporter, estimate_remaining
from .results import assemble
from .segments import Segment, plan_pages, plan_periods

logger = logging.getLogger(__name__)

SegmentRunner = Callable[[Segment, Callable[[], bool]], ResultTable]
FinalCheck = Callable[[Segment, ResultTable], bool]


def clamp_concurrency(value: int) -> int:
    requested = int(value)
    if requested > MAX_CONCURRENCY:
        logger.warning(
            "Requested concurrency %d exceeds the maximum of %d; using %d.",
            requested,
            MAX_CONCURRENCY,
            MAX_CONCURRENCY,
        )
        return MAX_CONCURRENCY
    return max(1, requested)


class _Cutoff:
    """Lowest segment index after which nothing may contribute to the result.

    Only the dispatching thread lowers it; worker threads read it to decide
    whether to keep polling.
    """

    def __init__(self) -> None:
        self.index: Optional[int] = None

    def lower_to(self, index: int) -> bool:
        if self.index is None or index < self.index:
            self.index = index
            return True
        return False

    def excludes(self, index: int) -> bool:
        return self.index is not None and index > self.index


def _notify(reporter: ProgressReporter, method: str, *args: object) -> None:
    try:
        getattr(reporter, method)(*args)
    except Exception:  # noqa: BLE001
        logger.warning("Progress reporter %s.%s failed", type(reporter).__name__, method, exc_info=True)


def dispatch(
    segments: Iterable[Segment],
    run_segment: SegmentRunner,
    concurrency: int = 1,
    reporter: Optional[ProgressReporter] = None,
    is_final: Optional[FinalCheck] = None,
    total: Optional[int] = None,
) -> List[ResultTable]:
    """Execute ``run_segment`` once per segment and return tables in segment order.

    At most ``concurrency`` segments run at once. When ``is_final`` reports
    that a segment ended the data, later segments are not started and any
    that already ran are dropped. The first failure by segment order aborts
    the run and is re-raised once the lower-indexed segments still in flight
    have settled.
    """
    workers = clamp_concurrency(concurrency)
    reporter = reporter or NullProgress()
    cutoff = _Cutoff()
    accepted: Dict[int, ResultTable] = {}
    failures: Dict[int, BaseException] = {}
    in_flight: Dict[Future, Segment] = {}
    pending = iter(segments)
    exhausted = False
    done = 0
    rows_so_far = 0
    started_at = time.monotonic()

    def event(kind: str, segment: Segment) -> ProgressEvent:
        elapsed = time.monotonic() - started_at
        return ProgressEvent(
            kind=kind,
            segment_index=segment.index,
            total_segments=total,
            rows_so_far=rows_so_far,
            elapsed=elapsed,
            current_label=segment.label,
            eta=estimate_remaining(elapsed, done, total),
        )

    def drop_beyond_cutoff() -> None:
        nonlocal rows_so_far
        for index in [i for i in accepted if cutoff.excludes(i)]:
            dropped = accepted.pop(index)
            rows_so_far -= len(dropped.rows)
            logger.debug("Discarding segment %d beyond cutoff %s", index, cutoff.index)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="segment") as executor:

        def launch() -> None:
            nonlocal exhausted
            while not exhausted and not failures and len(in_flight) < workers:
                segment = next(pending, None)
                if segment is None or cutoff.excludes(segment.index):
                    exhausted = True
                    break
                _notify(reporter, "segment_started", event(STARTED, segment))
                future = executor.submit(run_segment, segment, partial(cutoff.excludes, segment.index))
                in_flight[future] = segment

        launch()
        while in_flight:
            finished, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for future in sorted(finished, key=lambda f: in_flight[f].index):
                segment = in_flight.pop(future)
                try:
                    table = future.result()
                except QueryAborted:
                    logger.debug("Segment %d (%s) stopped early", segment.index, segment.label)
                    continue
                except Exception as exc:  # noqa: BLE001
                    if cutoff.excludes(segment.index):
                        logger.debug("Ignoring failure of segment %d beyond cutoff: %s", segment.index, exc)
                        continue
                    logger.warning("Segment %d (%s) failed: %s", segment.index, segment.label, exc)
                    failures[segment.index] = exc
                    if cutoff.lower_to(segment.index):
                        drop_beyond_cutoff()
                    continue
                if cutoff.excludes(segment.index):
                    logger.debug("Discarding segment %d beyond cutoff %s", segment.index, cutoff.index)
                    continue
                accepted[segment.index] = table
                rows_so_far += len(table.rows)
                done += 1
                if is_final is not None and is_final(segment, table):
                    if cutoff.lower_to(segment.index):
                        drop_beyond_cutoff()
                _notify(reporter, "segment_completed", event(COMPLETED, segment))
            launch()

    live_failures = {index: exc for index, exc in failures.items() if not cutoff.excludes(index)}
    if live_failures:
        raise live_failures[min(live_failures)]
    return [accepted[index] for index in sorted(accepted)]


def _segment_runner(client: RedashClient, base: QueryRequest) -> SegmentRunner:
    def run(segment: Segment, cancelled: Callable[[], bool]) -> ResultTable:
        return client.execute(base.with_parameters(segment.parameters()), cancelled=cancelled)

    return run


def _run_segments(
    client: RedashClient,
    base: QueryRequest,
    segments: Iterable[Segment],
    concurrency: int,
    reporter: Optional[ProgressReporter],
    is_final: Optional[FinalCheck] = None,
    total: Optional[int] = None,
) -> ResultTable:
    reporter = reporter or NullProgress()
    started_at = time.monotonic()
    try:
        tables = dispatch(
            segments,
            _segment_runner(client, base),
            concurrency=concurrency,
            reporter=reporter,
            is_final=is_final,
            total=total,
        )
        merged = assemble(tables)
        _notify(reporter, "finished", time.monotonic() - started_at, len(merged.rows))
        return merged
    finally:
        _notify(reporter, "close")


def direct_query(
    client: RedashClient,
    query_id: int,
    params: Optional[Mapping[str, str]] = None,
    max_age: int = 0,
) -> ResultTable:
    return client.query(query_id, params=params, max_age=max_age)


def paginated_query(
    client: RedashClient,
    query_id: int,
    params: Optional[Mapping[str, str]] = None,
    max_age: int = 0,
    limit: int = 10000,
    max_iterations: int = 100,
    concurrency: int = 1,
    reporter: Optional[ProgressReporter] = None,
) -> ResultTable:
    """Fetch a query page by page using ``offset_rows``/``limit_rows`` parameters.

    Paging stops at the first page that returns fewer than ``limit`` rows.
    With ``limit <= 0`` the query runs once, unpaginated.
    """
    base = QueryRequest(query_id=query_id, parameters=dict(params or {}), max_age=max_age)
    if limit <= 0:
        return _run_segments(client, base, plan_pages(limit, max_iterations), 1, reporter, total=1)

    def page_is_last(segment: Segment, table: ResultTable) -> bool:
        return len(table.rows) < limit

    return _run_segments(
        client,
        base,
        plan_pages(limit, max_iterations),
        concurrency,
        reporter,
        is_final=page_is_last,
        total=max(0, max_iterations),
    )


def period_query(
    client: RedashClient,
    query_id: int,
    start_date: Union[str, date],
    end_date: Union[str, date],
    interval: str,
    interval_multiple: int = 1,
    params: Optional[Mapping[str, str]] = None,
    max_age: int = 0,
    concurrency: int = 1,
    reporter: Optional[ProgressReporter] = None,
) -> ResultTable:
    """Fetch a query once per date range, passing ``start_date``/``end_date``."""
    segments = plan_periods(start_date, end_date, interval, interval_multiple)
    base = QueryRequest(query_id=query_id, parameters=dict(params or {}), max_age=max_age)
    return _run_segments(client, base, segments, concurrency, reporter, total=len(segments))
