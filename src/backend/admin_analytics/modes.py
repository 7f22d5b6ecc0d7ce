from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional

from .models import AnalyticsMode, UserRecord
from .normalizer import NormalizedDataset, index_by_user

logger = logging.getLogger(__name__)

LOCAL_USER_ID = "local-user"


@dataclass(frozen=True)
class AuthState:
    """
    Session facts supplied by the authentication layer.

    ``is_connected`` lets the shell report that the platform backend is
    unreachable even though the user is still signed in.
    """

    is_authenticated: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    is_connected: bool = True


class ModeSelector:
    """
    Two-state switch between local and platform analytics.

    The selector only proposes a target mode; the switch is committed by the
    caller after the records for that mode were fetched, so a failed platform
    fetch leaves the current mode untouched.
    """

    def __init__(self, initial: AnalyticsMode = AnalyticsMode.LOCAL) -> None:
        self._mode = initial

    @property
    def mode(self) -> AnalyticsMode:
        return self._mode

    @staticmethod
    def target_for(auth: AuthState) -> AnalyticsMode:
        if auth.is_authenticated and auth.is_connected:
            return AnalyticsMode.PLATFORM
        return AnalyticsMode.LOCAL

    def commit(self, mode: AnalyticsMode) -> bool:
        if mode is self._mode:
            return False
        logger.info("Analytics mode changed: %s -> %s", self._mode.value, mode.value)
        self._mode = mode
        return True


def synthesize_local_dataset(
    records: NormalizedDataset,
    now: datetime,
    auth: Optional[AuthState] = None,
) -> NormalizedDataset:
    """
    Fold the local user's own records into a one-user dataset.

    Every application, goal and event is attributed to the current user so the
    platform calculators can run unchanged. The user is considered created at
    their earliest dated record and signed in right now.
    """

    user_id = (auth.user_id if auth is not None else None) or LOCAL_USER_ID
    dated: List[datetime] = [
        moment
        for moment in (
            *(application.created_at for application in records.applications),
            *(goal.created_at for goal in records.goals),
            *(event.timestamp for event in records.events),
        )
        if moment is not None and moment <= now
    ]
    user = UserRecord(
        id=user_id,
        created_at=min(dated) if dated else now,
        last_sign_in_at=now,
        email=auth.email if auth is not None else None,
    )
    applications = tuple(replace(application, user_id=user_id) for application in records.applications)
    goals = tuple(replace(goal, user_id=user_id) for goal in records.goals)
    events = tuple(replace(event, user_id=user_id) for event in records.events)
    return NormalizedDataset(
        users=(user,),
        applications=applications,
        goals=goals,
        events=events,
        applications_by_user=index_by_user(applications),
        events_by_user=index_by_user(events),
    )
