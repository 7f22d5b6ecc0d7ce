from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple


class ApplicationStatus(str, Enum):
    APPLIED = "Applied"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    REJECTED = "Rejected"
    ACCEPTED = "Accepted"


SUCCESSFUL_STATUSES = frozenset(
    {ApplicationStatus.INTERVIEW, ApplicationStatus.OFFER, ApplicationStatus.ACCEPTED}
)


class TimeRange(str, Enum):
    """
    Range picker values offered by the analytics view.

    ``all`` is capped to a one-year window so the growth series stays bounded.
    """

    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    ALL = "all"

    @property
    def days(self) -> int:
        return {"7d": 7, "30d": 30, "90d": 90, "all": 365}[self.value]


class AnalyticsMode(str, Enum):
    LOCAL = "local"
    PLATFORM = "platform"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class RefreshState(str, Enum):
    IDLE = "idle"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class RawRecordSet:
    """
    One fetched snapshot of all source records, untouched.

    Rows are kept as the data source returned them (mappings with possibly
    missing or malformed fields); only the normalizer looks inside them.
    """

    users: Sequence[Any] = ()
    applications: Sequence[Any] = ()
    goals: Sequence[Any] = ()
    events: Sequence[Any] = ()


@dataclass(frozen=True)
class UserRecord:
    id: str
    created_at: Optional[datetime]
    last_sign_in_at: Optional[datetime] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class ApplicationRecord:
    """
    A single job application.

    ``user_id`` is a soft reference: applications pointing at unknown users are
    kept and counted in platform totals.
    """

    id: str
    user_id: Optional[str]
    status: Optional[ApplicationStatus]
    created_at: Optional[datetime]
    company: Optional[str] = None
    position: Optional[str] = None


@dataclass(frozen=True)
class GoalRecord:
    id: str
    user_id: Optional[str]
    total_goal: int = 0
    weekly_goal: int = 0
    monthly_goal: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class EventRecord:
    user_id: Optional[str]
    type: str
    timestamp: Optional[datetime]
    session_duration_ms: float = 0.0


@dataclass(frozen=True)
class DerivedMetric:
    id: str
    name: str
    value: float
    change_percent: float
    trend: Trend
    period: str
    contributing_user_count: int
    description: str
    target: Optional[float] = None
    unit: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "value": self.value,
            "changePercent": self.change_percent,
            "trend": self.trend.value,
            "period": self.period,
            "target": self.target,
            "unit": self.unit,
            "contributingUserCount": self.contributing_user_count,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "DerivedMetric":
        return cls(
            id=payload["id"],
            name=payload["name"],
            value=payload["value"],
            change_percent=payload["changePercent"],
            trend=Trend(payload["trend"]),
            period=payload["period"],
            contributing_user_count=payload["contributingUserCount"],
            description=payload["description"],
            target=payload.get("target"),
            unit=payload.get("unit"),
        )


@dataclass(frozen=True)
class GrowthPoint:
    date: date
    total_users: int
    active_users: int
    new_users: int
    total_applications: int
    applications_per_user: float
    avg_session_time: float
    retention_percent: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "totalUsers": self.total_users,
            "activeUsers": self.active_users,
            "newUsers": self.new_users,
            "totalApplications": self.total_applications,
            "applicationsPerUser": self.applications_per_user,
            "avgSessionTime": self.avg_session_time,
            "retentionPercent": self.retention_percent,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GrowthPoint":
        return cls(
            date=date.fromisoformat(payload["date"]),
            total_users=payload["totalUsers"],
            active_users=payload["activeUsers"],
            new_users=payload["newUsers"],
            total_applications=payload["totalApplications"],
            applications_per_user=payload["applicationsPerUser"],
            avg_session_time=payload["avgSessionTime"],
            retention_percent=payload["retentionPercent"],
        )


@dataclass(frozen=True)
class Segment:
    """
    A named cohort of users.

    Segments may overlap, so ``percent_of_total`` values across a snapshot are
    not expected to add up to 100.
    """

    name: str
    member_count: int
    percent_of_total: float
    growth_percent: float
    avg_applications_per_member: float
    avg_session_time: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "memberCount": self.member_count,
            "percentOfTotal": self.percent_of_total,
            "growthPercent": self.growth_percent,
            "avgApplicationsPerMember": self.avg_applications_per_member,
            "avgSessionTime": self.avg_session_time,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Segment":
        return cls(
            name=payload["name"],
            member_count=payload["memberCount"],
            percent_of_total=payload["percentOfTotal"],
            growth_percent=payload["growthPercent"],
            avg_applications_per_member=payload["avgApplicationsPerMember"],
            avg_session_time=payload["avgSessionTime"],
        )


@dataclass(frozen=True)
class PlatformInsights:
    churn_rate_percent: float
    lifetime_value_estimate: float
    monthly_growth_rate_percent: float
    feature_adoption_percent: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "churnRatePercent": self.churn_rate_percent,
            "lifetimeValueEstimate": self.lifetime_value_estimate,
            "monthlyGrowthRatePercent": self.monthly_growth_rate_percent,
            "featureAdoptionPercent": self.feature_adoption_percent,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PlatformInsights":
        return cls(
            churn_rate_percent=payload["churnRatePercent"],
            lifetime_value_estimate=payload["lifetimeValueEstimate"],
            monthly_growth_rate_percent=payload["monthlyGrowthRatePercent"],
            feature_adoption_percent=payload["featureAdoptionPercent"],
        )


@dataclass(frozen=True)
class RefreshStatus:
    """
    Read-only view of the coordinator's refresh state.

    ``is_refreshing`` and ``refresh_status`` are independent: an ``error``
    status stays visible after the refresh flag drops back to ``False``.
    """

    is_refreshing: bool = False
    last_refresh_timestamp: Optional[datetime] = None
    refresh_status: RefreshState = RefreshState.IDLE
    auto_refresh_enabled: bool = False
    auto_refresh_interval_seconds: float = 0
    refresh_errors: Tuple[str, ...] = ()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isRefreshing": self.is_refreshing,
            "lastRefreshTimestamp": (
                None if self.last_refresh_timestamp is None else self.last_refresh_timestamp.isoformat()
            ),
            "refreshStatus": self.refresh_status.value,
            "autoRefreshEnabled": self.auto_refresh_enabled,
            "autoRefreshIntervalSeconds": self.auto_refresh_interval_seconds,
            "refreshErrors": list(self.refresh_errors),
        }


@dataclass(frozen=True)
class AnalyticsSnapshot:
    """
    Everything derived from one refresh cycle.

    The coordinator swaps whole snapshots, so every collection here comes from
    the same record set.
    """

    mode: AnalyticsMode
    time_range: TimeRange
    generated_at: datetime
    metrics: Tuple[DerivedMetric, ...] = ()
    growth: Tuple[GrowthPoint, ...] = ()
    segments: Tuple[Segment, ...] = ()
    insights: PlatformInsights = field(
        default_factory=lambda: PlatformInsights(
            churn_rate_percent=0.0,
            lifetime_value_estimate=0.0,
            monthly_growth_rate_percent=0.0,
            feature_adoption_percent=0.0,
        )
    )
    user_count: int = 0
    total_applications: int = 0
    total_goals: int = 0

    def metric(self, metric_id: str) -> Optional[DerivedMetric]:
        for metric in self.metrics:
            if metric.id == metric_id:
                return metric
        return None

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the snapshot into a JSON-serialisable structure.

        FastAPI handlers and the export serializer both reuse this so the UI
        never depends on the dataclasses themselves.
        """

        return {
            "mode": self.mode.value,
            "timeRange": self.time_range.value,
            "generatedAt": self.generated_at.isoformat(),
            "metrics": _serialize_all(self.metrics),
            "growth": _serialize_all(self.growth),
            "segments": _serialize_all(self.segments),
            "insights": self.insights.as_dict(),
            "userCount": self.user_count,
            "totalApplications": self.total_applications,
            "totalGoals": self.total_goals,
        }


def _serialize_all(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [item.as_dict() for item in items]
