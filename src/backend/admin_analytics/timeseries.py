from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections import defaultdict
from datetime import date, datetime, timedelta
from statistics import mean
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .metrics import ACTIVE_WINDOW_DAYS, safe_divide
from .models import GrowthPoint
from .normalizer import NormalizedDataset, localize

UTC = ZoneInfo("UTC")


def _daterange(start: date, end: date, step_days: int = 1) -> Iterable[date]:
    cursor = start
    while cursor < end:
        yield cursor
        cursor += timedelta(days=step_days)


def _day(moment: Optional[datetime], tz: ZoneInfo) -> Optional[date]:
    if moment is None:
        return None
    try:
        return localize(moment, tz).date()
    except (OverflowError, ValueError):
        return None


def _any_between(days: Sequence[date], start: date, end: date) -> bool:
    index = bisect_left(days, start)
    return index < len(days) and days[index] <= end


def build_growth_series(
    dataset: NormalizedDataset,
    window_days: int,
    now: datetime,
    tz: ZoneInfo = UTC,
) -> Tuple[GrowthPoint, ...]:
    """
    Build one :class:`GrowthPoint` per calendar day from ``today - window_days``
    through today, inclusive, so the series always has ``window_days + 1``
    entries.

    Cumulative fields count records dated on or before the day; ``new_users``
    counts users created on the day itself. A user is active on a day when
    their last sign-in or any application falls within the trailing 7 days
    (both ends inclusive). Records without a usable date never enter a bucket,
    and a user without a usable ``created_at`` is left out of every column,
    active included, so ``active_users`` never exceeds ``total_users``. The
    headline active-user metric counts those users; the series does not.
    """

    if window_days < 0:
        raise ValueError("window_days must be zero or positive")

    today = localize(now, tz).date()

    created_by_user: Dict[str, date] = {}
    for user in dataset.users:
        created = _day(user.created_at, tz)
        if created is not None:
            created_by_user[user.id] = created
    user_days = sorted(created_by_user.values())

    sign_in_by_user = {user.id: _day(user.last_sign_in_at, tz) for user in dataset.users}
    application_days_by_user = {
        user_id: sorted(day for day in (_day(app.created_at, tz) for app in applications) if day is not None)
        for user_id, applications in dataset.applications_by_user.items()
    }
    application_days = sorted(
        day for day in (_day(app.created_at, tz) for app in dataset.applications) if day is not None
    )

    session_minutes: Dict[date, List[float]] = defaultdict(list)
    for event in dataset.events:
        event_day = _day(event.timestamp, tz)
        if event_day is not None and event.session_duration_ms > 0:
            session_minutes[event_day].append(event.session_duration_ms / 60000)

    points: List[GrowthPoint] = []
    for day in _daterange(today - timedelta(days=window_days), today + timedelta(days=1)):
        window_start = day - timedelta(days=ACTIVE_WINDOW_DAYS)
        total_users = bisect_right(user_days, day)
        new_users = total_users - bisect_left(user_days, day)
        total_applications = bisect_right(application_days, day)

        active = 0
        for user_id, created in created_by_user.items():
            if created > day:
                continue
            sign_in = sign_in_by_user.get(user_id)
            if sign_in is not None and window_start <= sign_in <= day:
                active += 1
            elif _any_between(application_days_by_user.get(user_id, ()), window_start, day):
                active += 1

        minutes = session_minutes.get(day)
        points.append(
            GrowthPoint(
                date=day,
                total_users=total_users,
                active_users=active,
                new_users=new_users,
                total_applications=total_applications,
                applications_per_user=round(safe_divide(total_applications, total_users), 2),
                avg_session_time=round(mean(minutes), 1) if minutes else 0.0,
                retention_percent=round(safe_divide(active, total_users) * 100, 1),
            )
        )
    return tuple(points)
