from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Mapping, Tuple, Union

from .models import (
    AnalyticsMode,
    AnalyticsSnapshot,
    DerivedMetric,
    GrowthPoint,
    PlatformInsights,
    RefreshStatus,
    Segment,
    TimeRange,
)

EXPORT_FILENAME_PREFIX = "admin-analytics-export"

ANALYTICS_SOURCE_LABELS = {
    AnalyticsMode.PLATFORM: "Cross-user database",
    AnalyticsMode.LOCAL: "Local user data",
}


@dataclass(frozen=True)
class ExportDocument:
    """An export file read back into model objects."""

    export_date: datetime
    time_range: TimeRange
    mode: AnalyticsMode
    analytics_source: str
    metrics: Tuple[DerivedMetric, ...]
    growth: Tuple[GrowthPoint, ...]
    segments: Tuple[Segment, ...]
    insights: PlatformInsights
    user_count: int
    total_applications: int
    total_goals: int
    refresh_metadata: Dict[str, Any]


def build_export_document(
    snapshot: AnalyticsSnapshot,
    status: RefreshStatus,
    exported_at: datetime,
) -> Dict[str, Any]:
    payload = snapshot.as_dict()
    return {
        "exportDate": exported_at.isoformat(),
        "timeRange": payload["timeRange"],
        "mode": payload["mode"],
        "analyticsSource": ANALYTICS_SOURCE_LABELS[snapshot.mode],
        "generatedAt": payload["generatedAt"],
        "metrics": payload["metrics"],
        "growth": payload["growth"],
        "segments": payload["segments"],
        "insights": payload["insights"],
        "userCount": payload["userCount"],
        "totalApplications": payload["totalApplications"],
        "totalGoals": payload["totalGoals"],
        "refreshMetadata": status.as_dict(),
    }


def dumps_export(document: Mapping[str, Any]) -> str:
    return json.dumps(document, indent=2)


def export_filename(day: Union[date, datetime]) -> str:
    if isinstance(day, datetime):
        day = day.date()
    return f"{EXPORT_FILENAME_PREFIX}-{day.isoformat()}.json"


def load_export(source: Union[str, bytes, Mapping[str, Any]]) -> ExportDocument:
    """
    Parse an export document produced by :func:`dumps_export`.

    Accepts the JSON text or an already decoded mapping. Missing or malformed
    sections raise ``ValueError``.
    """

    payload = json.loads(source) if isinstance(source, (str, bytes)) else source
    try:
        return ExportDocument(
            export_date=datetime.fromisoformat(payload["exportDate"]),
            time_range=TimeRange(payload["timeRange"]),
            mode=AnalyticsMode(payload["mode"]),
            analytics_source=payload.get("analyticsSource", ""),
            metrics=tuple(DerivedMetric.from_dict(item) for item in payload["metrics"]),
            growth=tuple(GrowthPoint.from_dict(item) for item in payload["growth"]),
            segments=tuple(Segment.from_dict(item) for item in payload["segments"]),
            insights=PlatformInsights.from_dict(payload["insights"]),
            user_count=payload["userCount"],
            total_applications=payload["totalApplications"],
            total_goals=payload.get("totalGoals", 0),
            refresh_metadata=dict(payload.get("refreshMetadata") or {}),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Malformed analytics export: {exc!r}") from exc
