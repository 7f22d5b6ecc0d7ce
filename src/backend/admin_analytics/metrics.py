"""
Metric calculators.

Every function here is pure: it reads a :class:`NormalizedDataset` and a fixed
``now`` and returns plain numbers or :class:`DerivedMetric` cards. Denominators
are guarded so an empty platform yields zeros, never NaN or an exception.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from statistics import mean
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .models import (
    SUCCESSFUL_STATUSES,
    ApplicationRecord,
    DerivedMetric,
    EventRecord,
    PlatformInsights,
    Trend,
    UserRecord,
)
from .normalizer import NormalizedDataset

ACTIVE_WINDOW_DAYS = 7
MONTH_WINDOW_DAYS = 30
POWER_USER_THRESHOLD = 5
ACTIVE_USER_BENCHMARK_PERCENT = 70.0
# avg session minutes, sessions per user, applications per user
ENGAGEMENT_WEIGHTS = (0.3, 0.3, 0.4)
# Rough value of one tracked application; the LTV card is an estimate only.
APPLICATION_VALUE = 25
SESSION_EVENT_TYPES = frozenset({"session_start", "session"})

MetricCalculator = Callable[[NormalizedDataset, datetime], DerivedMetric]


def safe_divide(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    result = numerator / denominator
    return result if math.isfinite(result) else 0.0


def growth_rate(current: float, prior: float) -> float:
    return current / max(1, prior) * 100


def count_change(current: float, prior: float) -> float:
    return (current - prior) / max(1, prior) * 100


def _calc_delta(current: float, previous: float) -> float:
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def _round(value: float, digits: int = 1) -> float:
    return round(value, digits) if math.isfinite(value) else 0.0


def trend_for(change: float) -> Trend:
    if change > 0:
        return Trend.UP
    if change < 0:
        return Trend.DOWN
    return Trend.STABLE


def _within(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    return moment is not None and start <= moment <= end


def is_active(
    user: UserRecord,
    applications: Iterable[ApplicationRecord],
    at: datetime,
    window_days: int = ACTIVE_WINDOW_DAYS,
) -> bool:
    start = at - timedelta(days=window_days)
    if _within(user.last_sign_in_at, start, at):
        return True
    return any(_within(application.created_at, start, at) for application in applications)


def active_users(dataset: NormalizedDataset, now: datetime) -> Tuple[UserRecord, ...]:
    return tuple(user for user in dataset.users if is_active(user, dataset.applications_for(user.id), now))


def users_created_between(users: Iterable[UserRecord], start: datetime, end: datetime) -> int:
    return sum(1 for user in users if user.created_at is not None and start < user.created_at <= end)


def applications_created_between(
    applications: Iterable[ApplicationRecord], start: datetime, end: datetime
) -> int:
    return sum(
        1
        for application in applications
        if application.created_at is not None and start < application.created_at <= end
    )


def is_session_event(event: EventRecord) -> bool:
    return event.type in SESSION_EVENT_TYPES or event.session_duration_ms > 0


def average_session_minutes(events: Iterable[EventRecord]) -> float:
    durations = [event.session_duration_ms for event in events if event.session_duration_ms > 0]
    return mean(durations) / 60000 if durations else 0.0


def applications_per_user(dataset: NormalizedDataset) -> float:
    return safe_divide(dataset.total_applications, dataset.total_users)


def engagement_score(dataset: NormalizedDataset) -> int:
    avg_minutes = average_session_minutes(dataset.events)
    sessions = sum(1 for event in dataset.events if is_session_event(event))
    sessions_per_user = safe_divide(sessions, dataset.total_users)
    session_weight, frequency_weight, application_weight = ENGAGEMENT_WEIGHTS
    score = (
        avg_minutes * session_weight
        + sessions_per_user * frequency_weight
        + applications_per_user(dataset) * application_weight
    )
    return int(round(score)) if math.isfinite(score) else 0


def success_rate(applications: Sequence[ApplicationRecord]) -> float:
    successful = sum(1 for application in applications if application.status in SUCCESSFUL_STATUSES)
    return safe_divide(successful, len(applications)) * 100


def churn_rate(dataset: NormalizedDataset, now: datetime) -> float:
    """
    Share of users that look gone: no sign-in and no application in 30 days.

    Users that never signed in fall back to their creation date; users with
    neither date cannot be judged and are not counted as churned.
    """

    cutoff = now - timedelta(days=MONTH_WINDOW_DAYS)
    churned = 0
    for user in dataset.users:
        last_seen = user.last_sign_in_at or user.created_at
        if last_seen is None or last_seen >= cutoff:
            continue
        recent = any(
            application.created_at is not None and application.created_at >= cutoff
            for application in dataset.applications_for(user.id)
        )
        if not recent:
            churned += 1
    return safe_divide(churned, dataset.total_users) * 100


def lifetime_value_estimate(dataset: NormalizedDataset) -> float:
    return float(round(applications_per_user(dataset) * APPLICATION_VALUE))


def feature_adoption(dataset: NormalizedDataset) -> float:
    adopters = sum(1 for user in dataset.users if dataset.applications_for(user.id))
    return safe_divide(adopters, dataset.total_users) * 100


def monthly_growth_rate(dataset: NormalizedDataset, now: datetime) -> float:
    new_users = users_created_between(dataset.users, now - timedelta(days=MONTH_WINDOW_DAYS), now)
    existing = dataset.total_users - new_users
    if dataset.total_users == 0:
        return 0.0
    return growth_rate(new_users, existing)


def retention_cohort(dataset: NormalizedDataset, now: datetime) -> Tuple[UserRecord, ...]:
    cutoff = now - timedelta(days=ACTIVE_WINDOW_DAYS)
    return tuple(user for user in dataset.users if user.created_at is not None and user.created_at <= cutoff)


def retention_rate(dataset: NormalizedDataset, now: datetime) -> float:
    cohort = retention_cohort(dataset, now)
    retained = sum(1 for user in cohort if is_active(user, dataset.applications_for(user.id), now))
    return safe_divide(retained, len(cohort)) * 100


def build_platform_insights(dataset: NormalizedDataset, now: datetime) -> PlatformInsights:
    return PlatformInsights(
        churn_rate_percent=_round(churn_rate(dataset, now)),
        lifetime_value_estimate=lifetime_value_estimate(dataset),
        monthly_growth_rate_percent=_round(monthly_growth_rate(dataset, now)),
        feature_adoption_percent=_round(feature_adoption(dataset)),
    )


# -- platform metric cards ---------------------------------------------------


def total_platform_users(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    total = dataset.total_users
    new_this_week = users_created_between(dataset.users, now - timedelta(days=ACTIVE_WINDOW_DAYS), now)
    return DerivedMetric(
        id="total_platform_users",
        name="Total Platform Users",
        value=total,
        change_percent=_round(growth_rate(new_this_week, total - new_this_week)) if total else 0.0,
        trend=Trend.UP if new_this_week > 0 else Trend.STABLE,
        period="vs last week",
        target=100,
        unit="users",
        contributing_user_count=total,
        description="All registered users across the platform",
    )


def active_user_base(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    total = dataset.total_users
    active = len(active_users(dataset, now))
    active_percent = safe_divide(active, total) * 100
    change = _round(active_percent - ACTIVE_USER_BENCHMARK_PERCENT) if total else 0.0
    return DerivedMetric(
        id="active_user_base",
        name="Active User Base",
        value=active,
        change_percent=change,
        trend=trend_for(change),
        period="weekly active",
        target=math.floor(total * 0.8),
        unit="active users",
        contributing_user_count=active,
        description="Users with recent activity (sign-ins or applications)",
    )


def platform_applications(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    total = dataset.total_applications
    recent = applications_created_between(dataset.applications, now - timedelta(days=ACTIVE_WINDOW_DAYS), now)
    applicants = {application.user_id for application in dataset.applications if application.user_id}
    return DerivedMetric(
        id="platform_applications",
        name="Platform Applications",
        value=total,
        change_percent=_round(growth_rate(recent, total - recent)) if total else 0.0,
        trend=Trend.UP if recent > 0 else Trend.STABLE,
        period="total across users",
        unit="applications",
        contributing_user_count=len(applicants),
        description="Total applications created by all users",
    )


def user_engagement_score(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    score = engagement_score(dataset)
    previous = engagement_score(dataset.as_of(now - timedelta(days=ACTIVE_WINDOW_DAYS)))
    change = _round(_calc_delta(score, previous))
    return DerivedMetric(
        id="user_engagement_score",
        name="User Engagement Score",
        value=score,
        change_percent=change,
        trend=trend_for(change),
        period="composite score",
        target=100,
        unit="points",
        contributing_user_count=dataset.total_users,
        description="Weighted score based on session time, frequency, and app creation",
    )


def platform_success_rate(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    rate = success_rate(dataset.applications)
    previous = success_rate(dataset.as_of(now - timedelta(days=MONTH_WINDOW_DAYS)).applications)
    change = _round(_calc_delta(rate, previous))
    successful_users = {
        application.user_id
        for application in dataset.applications
        if application.user_id and application.status in SUCCESSFUL_STATUSES
    }
    return DerivedMetric(
        id="platform_success_rate",
        name="Platform Success Rate",
        value=_round(rate),
        change_percent=change,
        trend=trend_for(change),
        period="interviews + offers",
        target=25,
        unit="%",
        contributing_user_count=len(successful_users),
        description="Percentage of applications resulting in interviews or offers",
    )


def user_retention_rate(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    rate = retention_rate(dataset, now)
    earlier = now - timedelta(days=ACTIVE_WINDOW_DAYS)
    previous = retention_rate(dataset.as_of(earlier), earlier)
    change = _round(_calc_delta(rate, previous))
    return DerivedMetric(
        id="user_retention_rate",
        name="User Retention Rate",
        value=_round(rate),
        change_percent=change,
        trend=trend_for(change),
        period="7-day retention",
        target=80,
        unit="%",
        contributing_user_count=len(retention_cohort(dataset, now)),
        description="Percentage of users returning after 7 days",
    )


def average_apps_per_user(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    current = applications_per_user(dataset)
    previous = applications_per_user(dataset.as_of(now - timedelta(days=MONTH_WINDOW_DAYS)))
    change = _round(_calc_delta(current, previous))
    return DerivedMetric(
        id="average_apps_per_user",
        name="Avg Apps per User",
        value=_round(current),
        change_percent=change,
        trend=trend_for(change),
        period="platform average",
        target=10,
        unit="apps/user",
        contributing_user_count=dataset.total_users,
        description="Average number of applications per user",
    )


def new_user_growth(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    week = timedelta(days=ACTIVE_WINDOW_DAYS)
    this_week = users_created_between(dataset.users, now - week, now)
    last_week = users_created_between(dataset.users, now - 2 * week, now - week)
    return DerivedMetric(
        id="new_user_growth",
        name="New User Growth",
        value=this_week,
        change_percent=_round(growth_rate(this_week, last_week)) if this_week or last_week else 0.0,
        trend=trend_for(this_week - last_week),
        period="this week",
        target=10,
        unit="new users",
        contributing_user_count=this_week,
        description="New user registrations this week",
    )


PLATFORM_METRICS: Tuple[MetricCalculator, ...] = (
    total_platform_users,
    active_user_base,
    platform_applications,
    user_engagement_score,
    platform_success_rate,
    user_retention_rate,
    average_apps_per_user,
    new_user_growth,
)


def build_platform_metrics(dataset: NormalizedDataset, now: datetime) -> Tuple[DerivedMetric, ...]:
    return tuple(calculator(dataset, now) for calculator in PLATFORM_METRICS)


# -- local (single user) metric cards ---------------------------------------


def local_user(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    return DerivedMetric(
        id="local_user",
        name="Current User",
        value=dataset.total_users,
        change_percent=0.0,
        trend=Trend.STABLE,
        period="local mode",
        unit="user",
        contributing_user_count=dataset.total_users,
        description="Running in local mode - single user data",
    )


def local_applications(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    total = dataset.total_applications
    recent = applications_created_between(dataset.applications, now - timedelta(days=ACTIVE_WINDOW_DAYS), now)
    return DerivedMetric(
        id="local_applications",
        name="Your Applications",
        value=total,
        change_percent=_round(growth_rate(recent, total - recent)) if total else 0.0,
        trend=Trend.UP if recent > 0 else Trend.STABLE,
        period="total created",
        unit="applications",
        contributing_user_count=dataset.total_users,
        description="Applications you have created",
    )


def local_success_rate(dataset: NormalizedDataset, now: datetime) -> DerivedMetric:
    rate = success_rate(dataset.applications)
    previous = success_rate(dataset.as_of(now - timedelta(days=MONTH_WINDOW_DAYS)).applications)
    change = _round(_calc_delta(rate, previous))
    return DerivedMetric(
        id="local_success_rate",
        name="Your Success Rate",
        value=_round(rate),
        change_percent=change,
        trend=trend_for(change),
        period="interviews + offers",
        target=25,
        unit="%",
        contributing_user_count=dataset.total_users,
        description="Share of your applications that reached interview, offer or acceptance",
    )


LOCAL_METRICS: Tuple[MetricCalculator, ...] = (local_user, local_applications, local_success_rate)


def build_local_metrics(dataset: NormalizedDataset, now: datetime) -> Tuple[DerivedMetric, ...]:
    return tuple(calculator(dataset, now) for calculator in LOCAL_METRICS)
