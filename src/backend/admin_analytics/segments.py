from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Sequence, Tuple

from .metrics import (
    MONTH_WINDOW_DAYS,
    POWER_USER_THRESHOLD,
    average_session_minutes,
    count_change,
    is_active,
    safe_divide,
)
from .models import Segment, UserRecord
from .normalizer import NormalizedDataset

# (user, dataset, now) -> member?
SegmentPredicate = Callable[[UserRecord, NormalizedDataset, datetime], bool]


def is_active_member(user: UserRecord, dataset: NormalizedDataset, now: datetime) -> bool:
    return is_active(user, dataset.applications_for(user.id), now)


def is_new_member(user: UserRecord, dataset: NormalizedDataset, now: datetime) -> bool:
    return user.created_at is not None and user.created_at >= now - timedelta(days=MONTH_WINDOW_DAYS)


def is_power_member(user: UserRecord, dataset: NormalizedDataset, now: datetime) -> bool:
    return len(dataset.applications_for(user.id)) >= POWER_USER_THRESHOLD


def is_returning_member(user: UserRecord, dataset: NormalizedDataset, now: datetime) -> bool:
    return not is_new_member(user, dataset, now) and len(dataset.applications_for(user.id)) >= 1


@dataclass(frozen=True)
class SegmentDefinition:
    name: str
    predicate: SegmentPredicate


SEGMENT_DEFINITIONS: Tuple[SegmentDefinition, ...] = (
    SegmentDefinition("Active Users", is_active_member),
    SegmentDefinition("New Users", is_new_member),
    SegmentDefinition("Power Users", is_power_member),
    SegmentDefinition("Returning Users", is_returning_member),
)


def segment_members(
    definition: SegmentDefinition, dataset: NormalizedDataset, now: datetime
) -> Tuple[UserRecord, ...]:
    return tuple(user for user in dataset.users if definition.predicate(user, dataset, now))


def summarize_segment(
    name: str,
    members: Sequence[UserRecord],
    dataset: NormalizedDataset,
    growth_percent: float = 0.0,
) -> Segment:
    applications = sum(len(dataset.applications_for(user.id)) for user in members)
    events = [event for user in members for event in dataset.events_for(user.id)]
    return Segment(
        name=name,
        member_count=len(members),
        percent_of_total=round(safe_divide(len(members), dataset.total_users) * 100, 1),
        growth_percent=round(growth_percent, 1),
        avg_applications_per_member=round(safe_divide(applications, len(members)), 1),
        avg_session_time=round(average_session_minutes(events), 1),
    )


def build_segments(dataset: NormalizedDataset, now: datetime) -> Tuple[Segment, ...]:
    """
    Evaluate every segment predicate independently for every user.

    A user can belong to several segments at once. Growth compares today's
    membership with the membership the same predicate yields against the
    dataset as it stood 30 days earlier.
    """

    earlier = now - timedelta(days=MONTH_WINDOW_DAYS)
    previous_dataset = dataset.as_of(earlier)

    segments: List[Segment] = []
    for definition in SEGMENT_DEFINITIONS:
        members = segment_members(definition, dataset, now)
        previous_members = segment_members(definition, previous_dataset, earlier)
        segments.append(
            summarize_segment(
                definition.name,
                members,
                dataset,
                growth_percent=count_change(len(members), len(previous_members)),
            )
        )
    return tuple(segments)
