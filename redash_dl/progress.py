"""Progress observers for multi-segment runs."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Optional

from tqdm import tqdm

logger = logging.getLogger(__name__)

STARTED = "started"
COMPLETED = "completed"


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    segment_index: int
    total_segments: Optional[int]
    rows_so_far: int
    elapsed: float
    current_label: str
    eta: Optional[float] = None


def estimate_remaining(elapsed: float, done: int, total: Optional[int]) -> Optional[float]:
    if not total or done <= 0:
        return None
    fraction = min(1.0, done / total)
    return max(0.0, elapsed / fraction - elapsed)


def format_seconds(value: Optional[float]) -> str:
    if value is None:
        return "?"
    seconds = int(round(value))
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"


class ProgressReporter:
    """Receives dispatcher lifecycle events. The base class ignores them."""

    def segment_started(self, event: ProgressEvent) -> None:
        pass

    def segment_completed(self, event: ProgressEvent) -> None:
        pass

    def finished(self, elapsed: float, total_rows: int) -> None:
        pass

    def close(self) -> None:
        pass


class NullProgress(ProgressReporter):
    pass


class LogProgress(ProgressReporter):
    def segment_completed(self, event: ProgressEvent) -> None:
        total = event.total_segments if event.total_segments is not None else "?"
        logger.info(
            "Segment %d/%s done (%s): rows=%d elapsed=%s eta=%s",
            event.segment_index + 1,
            total,
            event.current_label,
            event.rows_so_far,
            format_seconds(event.elapsed),
            format_seconds(event.eta),
        )

    def finished(self, elapsed: float, total_rows: int) -> None:
        logger.info("Completed in %s, %d rows", format_seconds(elapsed), total_rows)


class TqdmProgress(ProgressReporter):
    def __init__(self, desc: str = "Segments", total: Optional[int] = None) -> None:
        self._bar = tqdm(desc=desc, total=total, unit="segment", file=sys.stderr, leave=True)

    def segment_started(self, event: ProgressEvent) -> None:
        if event.total_segments is not None and self._bar.total != event.total_segments:
            self._bar.total = event.total_segments
        self._bar.set_postfix_str(f"running {event.current_label}", refresh=True)

    def segment_completed(self, event: ProgressEvent) -> None:
        self._bar.update(1)
        self._bar.set_postfix(rows=event.rows_so_far, eta=format_seconds(event.eta), refresh=True)

    def finished(self, elapsed: float, total_rows: int) -> None:
        self._bar.set_postfix(rows=total_rows, elapsed=format_seconds(elapsed), refresh=True)

    def close(self) -> None:
        self._bar.close()
