"""
Rolling Aggregator

Trailing-window averages over metric samples.

Window semantics:
    [as_of_date - window_days + 1, as_of_date], inclusive, day granularity.
    Days without a sample are excluded (not counted as zero).
    A window with no samples has no average: the result is None (NO_DATA),
    which callers must treat differently from a genuine low value.

Every call is a single range read against the metric store. Nothing is
cached, so results always reflect the store as of the call.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Sequence, Tuple, Union
from uuid import UUID

from services.metric_store import MetricStore, MetricType

# Windows exposed on the dashboard
STANDARD_WINDOWS: Tuple[int, ...] = (7, 28, 30, 90)

ACUTE_WINDOW_DAYS = 7
CHRONIC_WINDOW_DAYS = 28


@dataclass(frozen=True)
class RollingWindow:
    athlete_id: UUID
    as_of_date: date
    window_days: int
    metric_type: MetricType
    average: Optional[float]   # None = no samples in window
    sample_count: int

    @property
    def has_data(self) -> bool:
        return self.average is not None


def window_bounds(as_of_date: date, window_days: int) -> Tuple[date, date]:
    """Inclusive (start, end) for a trailing window ending on as_of_date."""
    if window_days < 1:
        raise ValueError(f"window_days must be >= 1, got {window_days}")
    return as_of_date - timedelta(days=window_days - 1), as_of_date


class RollingAggregator:

    def __init__(self, store: MetricStore):
        self.store = store

    def window(
        self,
        athlete_id: UUID,
        metric_type: Union[MetricType, str],
        as_of_date: date,
        window_days: int,
    ) -> RollingWindow:
        start, end = window_bounds(as_of_date, window_days)
        samples = self.store.read(athlete_id, metric_type, start, end)
        values = [s.value for s in samples]
        average = sum(values) / len(values) if values else None
        return RollingWindow(
            athlete_id=athlete_id,
            as_of_date=as_of_date,
            window_days=window_days,
            metric_type=MetricType(metric_type),
            average=average,
            sample_count=len(values),
        )

    def average(
        self,
        athlete_id: UUID,
        metric_type: Union[MetricType, str],
        as_of_date: date,
        window_days: int,
    ) -> Optional[float]:
        """Mean of the samples in the window, or None when there are none."""
        return self.window(athlete_id, metric_type, as_of_date, window_days).average

    def rolling_averages(
        self,
        athlete_id: UUID,
        metric_type: Union[MetricType, str],
        as_of_date: date,
        windows: Sequence[int] = STANDARD_WINDOWS,
    ) -> List[RollingWindow]:
        return [
            self.window(athlete_id, metric_type, as_of_date, days)
            for days in windows
        ]
