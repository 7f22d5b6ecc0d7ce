from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from zoneinfo import ZoneInfo

from .metrics import build_local_metrics, build_platform_insights, build_platform_metrics
from .models import AnalyticsMode, AnalyticsSnapshot, TimeRange
from .normalizer import NormalizedDataset
from .segments import build_segments, summarize_segment
from .timeseries import UTC, build_growth_series

LOCAL_SEGMENT_NAME = "Current User"


class AnalyticsService:
    """
    Assembles an :class:`AnalyticsSnapshot` from a normalized dataset.

    ``build`` is the only place that looks at the analytics mode; both paths
    return snapshots with the same collections so consumers never branch.
    """

    def __init__(self, tz: ZoneInfo = UTC) -> None:
        self.tz = tz

    def build(
        self,
        dataset: NormalizedDataset,
        mode: AnalyticsMode,
        time_range: TimeRange,
        now: datetime,
    ) -> AnalyticsSnapshot:
        if mode is AnalyticsMode.PLATFORM:
            metrics = build_platform_metrics(dataset, now)
            segments = build_segments(dataset, now)
        else:
            metrics = build_local_metrics(dataset, now)
            segments = (summarize_segment(LOCAL_SEGMENT_NAME, dataset.users, dataset),)

        return AnalyticsSnapshot(
            mode=mode,
            time_range=time_range,
            generated_at=now,
            metrics=metrics,
            growth=build_growth_series(dataset, time_range.days, now, self.tz),
            segments=segments,
            insights=build_platform_insights(dataset, now),
            user_count=dataset.total_users,
            total_applications=dataset.total_applications,
            total_goals=len(dataset.goals),
        )

    def with_time_range(
        self,
        snapshot: AnalyticsSnapshot,
        dataset: NormalizedDataset,
        time_range: TimeRange,
    ) -> AnalyticsSnapshot:
        """
        Re-bucket the growth series of an existing snapshot.

        The series is rebuilt against the snapshot's own ``generated_at`` so it
        stays consistent with the metrics computed in the same cycle.
        """

        if time_range is snapshot.time_range:
            return snapshot
        growth = build_growth_series(dataset, time_range.days, snapshot.generated_at, self.tz)
        return replace(snapshot, time_range=time_range, growth=growth)
