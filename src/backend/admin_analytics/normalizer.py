"""
Record normalizer.

Turns the untyped rows of a :class:`RawRecordSet` into strictly typed records
plus the per-user indexes every calculator relies on. Nothing in here raises on
bad input: unparseable values fall back to ``None``/defaults and unusable rows
are dropped.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import (
    ApplicationRecord,
    ApplicationStatus,
    EventRecord,
    GoalRecord,
    RawRecordSet,
    UserRecord,
)

logger = logging.getLogger(__name__)

_EPOCH_MILLIS_THRESHOLD = 1e11
_STATUS_LOOKUP = {status.value.lower(): status for status in ApplicationStatus}


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def localize(dt: datetime, tz: ZoneInfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Best-effort conversion of a raw date field into an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (``Z`` suffix included) and epoch
    numbers (milliseconds above 1e11, seconds otherwise). Returns ``None`` for
    anything else.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        seconds = value / 1000 if abs(value) > _EPOCH_MILLIS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # Offsets that push the instant past year 1 or year 9999.
        return None


def parse_number(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def parse_status(value: Any) -> Optional[ApplicationStatus]:
    if isinstance(value, ApplicationStatus):
        return value
    if not isinstance(value, str):
        return None
    return _STATUS_LOOKUP.get(value.strip().lower())


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _field(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return None


@dataclass(frozen=True)
class NormalizedDataset:
    """
    Typed, validated view of one record set.

    ``applications_by_user`` and ``events_by_user`` are built once so that
    per-user lookups are dictionary hits instead of scans over every record.
    """

    users: Tuple[UserRecord, ...] = ()
    applications: Tuple[ApplicationRecord, ...] = ()
    goals: Tuple[GoalRecord, ...] = ()
    events: Tuple[EventRecord, ...] = ()
    applications_by_user: Mapping[str, Tuple[ApplicationRecord, ...]] = field(default_factory=dict)
    events_by_user: Mapping[str, Tuple[EventRecord, ...]] = field(default_factory=dict)

    @property
    def user_ids(self) -> FrozenSet[str]:
        return frozenset(user.id for user in self.users)

    @property
    def total_users(self) -> int:
        return len(self.users)

    @property
    def total_applications(self) -> int:
        return len(self.applications)

    def applications_for(self, user_id: str) -> Tuple[ApplicationRecord, ...]:
        return self.applications_by_user.get(user_id, ())

    def events_for(self, user_id: str) -> Tuple[EventRecord, ...]:
        return self.events_by_user.get(user_id, ())

    def as_of(self, cutoff: datetime) -> "NormalizedDataset":
        """
        Rebuild the dataset as it would have looked at ``cutoff``.

        Only records dated on or before the cutoff survive; undated records are
        dropped because their position in time is unknown. Sign-ins after the
        cutoff are forgotten rather than moved.
        """

        users = tuple(
            UserRecord(
                id=user.id,
                created_at=user.created_at,
                last_sign_in_at=(
                    user.last_sign_in_at
                    if user.last_sign_in_at is not None and user.last_sign_in_at <= cutoff
                    else None
                ),
                email=user.email,
            )
            for user in self.users
            if user.created_at is not None and user.created_at <= cutoff
        )
        applications = tuple(
            application
            for application in self.applications
            if application.created_at is not None and application.created_at <= cutoff
        )
        goals = tuple(goal for goal in self.goals if goal.created_at is not None and goal.created_at <= cutoff)
        events = tuple(event for event in self.events if event.timestamp is not None and event.timestamp <= cutoff)
        return NormalizedDataset(
            users=users,
            applications=applications,
            goals=goals,
            events=events,
            applications_by_user=index_by_user(applications),
            events_by_user=index_by_user(events),
        )


def normalize_user(row: Any) -> Optional[UserRecord]:
    if not isinstance(row, Mapping):
        return None
    user_id = _text(_field(row, "id", "user_id", "userId"))
    if user_id is None:
        return None
    return UserRecord(
        id=user_id,
        created_at=parse_timestamp(_field(row, "created_at", "createdAt")),
        last_sign_in_at=parse_timestamp(_field(row, "last_sign_in_at", "lastSignInAt")),
        email=_text(_field(row, "email")),
    )


def normalize_application(row: Any, position: int) -> Optional[ApplicationRecord]:
    if not isinstance(row, Mapping):
        return None
    return ApplicationRecord(
        id=_text(_field(row, "id")) or f"application-{position}",
        user_id=_text(_field(row, "user_id", "userId")),
        status=parse_status(_field(row, "status")),
        created_at=parse_timestamp(_field(row, "created_at", "createdAt", "date_applied", "dateApplied")),
        company=_text(_field(row, "company")),
        position=_text(_field(row, "position")),
    )


def normalize_goal(row: Any, position: int) -> Optional[GoalRecord]:
    if not isinstance(row, Mapping):
        return None
    return GoalRecord(
        id=_text(_field(row, "id")) or f"goal-{position}",
        user_id=_text(_field(row, "user_id", "userId")),
        total_goal=int(parse_number(_field(row, "total_goal", "totalGoal"))),
        weekly_goal=int(parse_number(_field(row, "weekly_goal", "weeklyGoal"))),
        monthly_goal=int(parse_number(_field(row, "monthly_goal", "monthlyGoal"))),
        created_at=parse_timestamp(_field(row, "created_at", "createdAt")),
    )


def normalize_event(row: Any) -> Optional[EventRecord]:
    if not isinstance(row, Mapping):
        return None
    duration = parse_number(_field(row, "session_duration_ms", "sessionDurationMs", "session_duration"))
    return EventRecord(
        user_id=_text(_field(row, "user_id", "userId")),
        type=_text(_field(row, "type", "event_name", "eventName")) or "unknown",
        timestamp=parse_timestamp(_field(row, "timestamp", "created_at", "createdAt")),
        session_duration_ms=max(0.0, duration),
    )


def normalize_records(raw: RawRecordSet) -> NormalizedDataset:
    users: List[UserRecord] = []
    seen_ids = set()
    for row in raw.users or ():
        user = normalize_user(row)
        if user is None:
            logger.debug("Dropping unusable user row: %r", row)
            continue
        if user.id in seen_ids:
            logger.debug("Dropping duplicate user id %s", user.id)
            continue
        seen_ids.add(user.id)
        users.append(user)

    applications = _collect(raw.applications, normalize_application, "application")
    goals = _collect(raw.goals, normalize_goal, "goal")

    events: List[EventRecord] = []
    for row in raw.events or ():
        event = normalize_event(row)
        if event is None:
            logger.debug("Dropping unusable event row: %r", row)
            continue
        events.append(event)

    return NormalizedDataset(
        users=tuple(users),
        applications=tuple(applications),
        goals=tuple(goals),
        events=tuple(events),
        applications_by_user=index_by_user(applications),
        events_by_user=index_by_user(events),
    )


def _collect(rows: Optional[Sequence[Any]], normalize, label: str) -> List[Any]:
    collected = []
    for position, row in enumerate(rows or ()):
        record = normalize(row, position)
        if record is None:
            logger.debug("Dropping unusable %s row: %r", label, row)
            continue
        collected.append(record)
    return collected


def index_by_user(records: Sequence[Any]) -> Dict[str, Tuple[Any, ...]]:
    grouped: Dict[str, List[Any]] = defaultdict(list)
    for record in records:
        if record.user_id is not None:
            grouped[record.user_id].append(record)
    return {user_id: tuple(items) for user_id, items in grouped.items()}
