"""
Global refresh coordinator.

One coordinator instance owns the refresh status and the cached analytics
snapshot for the whole process. UI surfaces only ever call its methods:

- ``request_refresh`` is single-flight: while a cycle is running, every other
  caller awaits that same cycle and receives the same outcome.
- failures never clear the cache; the last good snapshot stays readable.
- auto-refresh is a cancellable timer task owned by the coordinator, so ticks
  coalesce with manual refreshes instead of queuing behind them.

All state changes happen on the event loop without awaiting in between, which
is what makes the check-and-set in ``request_refresh`` safe without a lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional, Union

from .configuration import RefreshConfig
from .models import (
    AnalyticsMode,
    AnalyticsSnapshot,
    RawRecordSet,
    RefreshState,
    RefreshStatus,
    TimeRange,
)
from .modes import AuthState, ModeSelector, synthesize_local_dataset
from .normalizer import NormalizedDataset, normalize_records
from .repository import AnalyticsDataSource, DataSourceError, InMemoryDataSource
from .service import AnalyticsService

logger = logging.getLogger(__name__)

StatusListener = Callable[[RefreshStatus], None]
AuthProvider = Callable[[], AuthState]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RefreshOutcome:
    """Result shared by every caller that joined the same refresh cycle."""

    succeeded: bool
    status: RefreshStatus
    snapshot: Optional[AnalyticsSnapshot]
    error: Optional[str] = None


class RefreshCoordinator:
    def __init__(
        self,
        data_source: Optional[AnalyticsDataSource],
        *,
        auth_provider: AuthProvider = AuthState,
        local_source: Optional[AnalyticsDataSource] = None,
        config: Optional[RefreshConfig] = None,
        service: Optional[AnalyticsService] = None,
        time_range: TimeRange = TimeRange.MONTH,
        clock: Clock = _utcnow,
    ) -> None:
        cfg = config or RefreshConfig()
        self._data_source = data_source
        self._local_source = local_source or InMemoryDataSource()
        self._auth_provider = auth_provider
        self._service = service or AnalyticsService()
        self._clock = clock
        self._selector = ModeSelector()
        self._time_range = time_range

        self._is_refreshing = False
        self._last_refresh: Optional[datetime] = None
        self._state = RefreshState.IDLE
        self._errors: Deque[str] = deque(maxlen=cfg.max_refresh_errors)
        self._auto_enabled = False
        self._auto_interval: float = cfg.auto_refresh_interval_seconds

        self._snapshot: Optional[AnalyticsSnapshot] = None
        self._dataset: Optional[NormalizedDataset] = None
        self._inflight: Optional[asyncio.Task] = None
        self._auto_task: Optional[asyncio.Task] = None
        self._listeners: List[StatusListener] = []

    # -- read accessors -----------------------------------------------------

    @property
    def mode(self) -> AnalyticsMode:
        return self._selector.mode

    @property
    def time_range(self) -> TimeRange:
        return self._time_range

    def get_status(self) -> RefreshStatus:
        return RefreshStatus(
            is_refreshing=self._is_refreshing,
            last_refresh_timestamp=self._last_refresh,
            refresh_status=self._state,
            auto_refresh_enabled=self._auto_enabled,
            auto_refresh_interval_seconds=self._auto_interval,
            refresh_errors=tuple(self._errors),
        )

    def get_snapshot(self, time_range: Union[TimeRange, str, None] = None) -> Optional[AnalyticsSnapshot]:
        """
        Return the cached snapshot, optionally re-bucketed for ``time_range``.

        A re-bucketed view is built for this caller only; the shared window
        changes through ``set_time_range`` alone.
        """

        snapshot = self._snapshot
        if time_range is None or snapshot is None or self._dataset is None:
            return snapshot
        return self._service.with_time_range(snapshot, self._dataset, TimeRange(time_range))

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register ``listener`` for post-refresh status updates; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- refresh --------------------------------------------------------------

    async def request_refresh(self) -> RefreshOutcome:
        if self._inflight is None:
            self._is_refreshing = True
            self._inflight = asyncio.get_running_loop().create_task(self._run_cycle())
        else:
            logger.debug("Refresh already in flight; joining it")
        # Shielded so a caller that gives up does not cancel the shared cycle.
        return await asyncio.shield(self._inflight)

    async def _run_cycle(self) -> RefreshOutcome:
        error: Optional[str] = None
        target = self._selector.mode
        try:
            auth = self._auth_provider()
            target = self._selector.target_for(auth)
            logger.info("Analytics refresh started (mode=%s)", target.value)
            raw = await self._fetch(target)
            now = self._clock()
            dataset = normalize_records(raw)
            if target is AnalyticsMode.LOCAL:
                dataset = synthesize_local_dataset(dataset, now, auth)
            snapshot = self._service.build(dataset, target, self._time_range, now)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            self._errors.append(error)
            self._state = RefreshState.ERROR
            logger.warning("Analytics refresh failed (mode=%s): %s", target.value, error, exc_info=True)
        else:
            self._selector.commit(target)
            self._dataset, self._snapshot = dataset, snapshot
            self._last_refresh = now
            self._state = RefreshState.SUCCESS
            logger.info(
                "Analytics refresh finished (mode=%s, users=%s, applications=%s)",
                target.value,
                snapshot.user_count,
                snapshot.total_applications,
            )
        finally:
            self._is_refreshing = False
            self._inflight = None

        status = self.get_status()
        self._notify(status)
        return RefreshOutcome(succeeded=error is None, status=status, snapshot=self._snapshot, error=error)

    async def _fetch(self, target: AnalyticsMode) -> RawRecordSet:
        if target is AnalyticsMode.PLATFORM:
            if self._data_source is None:
                raise DataSourceError("No platform data source configured")
            source = self._data_source
        else:
            source = self._local_source

        users, applications, goals, events = await asyncio.gather(
            asyncio.to_thread(source.fetch_all_users),
            asyncio.to_thread(source.fetch_all_applications),
            asyncio.to_thread(source.fetch_all_goals),
            asyncio.to_thread(source.fetch_all_events),
        )
        return RawRecordSet(users=users, applications=applications, goals=goals, events=events)

    def reset_refresh_errors(self) -> None:
        self._errors.clear()

    def set_time_range(self, time_range: Union[TimeRange, str]) -> Optional[AnalyticsSnapshot]:
        """
        Switch the growth window.

        The cached dataset is re-bucketed in place of a new fetch; cycles that
        start later use the new window too.
        """

        self._time_range = TimeRange(time_range)
        if self._snapshot is not None and self._dataset is not None:
            self._snapshot = self._service.with_time_range(self._snapshot, self._dataset, self._time_range)
        return self._snapshot

    # -- auto refresh -------------------------------------------------------

    def set_auto_refresh(self, enabled: bool, interval_seconds: Optional[float] = None) -> RefreshStatus:
        """
        Start or stop the recurring refresh timer.

        Any running timer is cancelled first, so repeated calls restart the
        timer instead of stacking a second one. Must be called from inside the
        event loop when ``enabled`` is true.
        """

        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError("interval_seconds must be positive")
            self._auto_interval = interval_seconds

        self._cancel_auto_task()
        self._auto_enabled = enabled
        if enabled:
            self._auto_task = asyncio.get_running_loop().create_task(self._auto_refresh_loop(self._auto_interval))
            logger.info("Auto-refresh enabled every %ss", self._auto_interval)
        else:
            logger.info("Auto-refresh disabled")
        return self.get_status()

    async def _auto_refresh_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            outcome = await self.request_refresh()
            if not outcome.succeeded:
                logger.debug("Auto-refresh tick failed; next tick in %ss", interval)

    def _cancel_auto_task(self) -> None:
        if self._auto_task is not None and not self._auto_task.done():
            self._auto_task.cancel()
        self._auto_task = None

    async def aclose(self) -> None:
        """Stop the timer and let a running cycle finish."""
        task = self._auto_task
        self._cancel_auto_task()
        self._auto_enabled = False
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._inflight is not None:
            await asyncio.shield(self._inflight)

    def _notify(self, status: RefreshStatus) -> None:
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Refresh status listener failed")
