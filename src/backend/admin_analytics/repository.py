from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .configuration import DataSourceConfig, load_analytics_config
from .models import RawRecordSet


class DataSourceError(Exception):
    """Raised when the record store cannot deliver one of the record lists."""


class AnalyticsDataSource:
    """
    Interface of the remote record store.

    Each fetch returns raw rows (mappings) without validation; the normalizer
    deals with missing or malformed fields. Any fetch may fail on its own, and
    a failure of one is a failure of the whole refresh cycle.
    """

    def fetch_all_users(self) -> Sequence[Mapping[str, Any]]:
        raise NotImplementedError

    def fetch_all_applications(self) -> Sequence[Mapping[str, Any]]:
        raise NotImplementedError

    def fetch_all_goals(self) -> Sequence[Mapping[str, Any]]:
        raise NotImplementedError

    def fetch_all_events(self) -> Sequence[Mapping[str, Any]]:
        raise NotImplementedError


class InMemoryDataSource(AnalyticsDataSource):
    """
    Serves records held in memory.

    Used for the local user's own records and for fixtures.
    """

    def __init__(
        self,
        users: Optional[Sequence[Mapping[str, Any]]] = None,
        applications: Optional[Sequence[Mapping[str, Any]]] = None,
        goals: Optional[Sequence[Mapping[str, Any]]] = None,
        events: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> None:
        self.users = list(users or [])
        self.applications = list(applications or [])
        self.goals = list(goals or [])
        self.events = list(events or [])

    @classmethod
    def from_record_set(cls, records: RawRecordSet) -> "InMemoryDataSource":
        return cls(
            users=records.users,
            applications=records.applications,
            goals=records.goals,
            events=records.events,
        )

    def fetch_all_users(self) -> Sequence[Mapping[str, Any]]:
        return list(self.users)

    def fetch_all_applications(self) -> Sequence[Mapping[str, Any]]:
        return list(self.applications)

    def fetch_all_goals(self) -> Sequence[Mapping[str, Any]]:
        return list(self.goals)

    def fetch_all_events(self) -> Sequence[Mapping[str, Any]]:
        return list(self.events)


@dataclass(frozen=True)
class TableNames:
    users: str = "users"
    applications: str = "applications"
    goals: str = "goals"
    events: str = "analytics_events"


class SQLAnalyticsRepository(AnalyticsDataSource):
    """
    Load analytics records with plain SQL.

    Expected tables:
      - users(id, email, created_at, last_sign_in_at)
      - applications(id, user_id, company, position, status, created_at)
      - goals(id, user_id, total_goal, weekly_goal, monthly_goal, created_at)
      - analytics_events(user_id, event_name, timestamp, session_duration_ms)

    Rows come back as dictionaries; dates stay in whatever form the driver
    produces (SQLite returns strings) and are parsed by the normalizer.
    """

    def __init__(self, engine: Engine, tables: Optional[TableNames] = None):
        self.engine = engine
        self.tables = tables or TableNames()

    def fetch_all_users(self) -> Sequence[Mapping[str, Any]]:
        return self._fetch(
            f"SELECT id, email, created_at, last_sign_in_at FROM {self.tables.users}",
            "users",
        )

    def fetch_all_applications(self) -> Sequence[Mapping[str, Any]]:
        return self._fetch(
            f"""
            SELECT id, user_id, company, position, status, created_at
            FROM {self.tables.applications}
            ORDER BY created_at ASC
            """,
            "applications",
        )

    def fetch_all_goals(self) -> Sequence[Mapping[str, Any]]:
        return self._fetch(
            f"""
            SELECT id, user_id, total_goal, weekly_goal, monthly_goal, created_at
            FROM {self.tables.goals}
            """,
            "goals",
        )

    def fetch_all_events(self) -> Sequence[Mapping[str, Any]]:
        return self._fetch(
            f"""
            SELECT user_id, event_name AS type, timestamp, session_duration_ms
            FROM {self.tables.events}
            ORDER BY timestamp ASC
            """,
            "events",
        )

    def _fetch(self, statement: str, label: str) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as connection:
                rows = connection.execute(text(statement)).fetchall()
        except SQLAlchemyError as exc:
            raise DataSourceError(f"Failed to fetch {label}: {exc}") from exc
        return [dict(row._mapping) for row in rows]


def build_repository_from_env(config: Optional[DataSourceConfig] = None) -> Optional[AnalyticsDataSource]:
    cfg = config or load_analytics_config().data_source
    if not cfg.database_url:
        return None
    engine = create_engine(cfg.database_url, pool_pre_ping=True)
    tables = TableNames(
        users=cfg.users_table,
        applications=cfg.applications_table,
        goals=cfg.goals_table,
        events=cfg.events_table,
    )
    return SQLAnalyticsRepository(engine, tables)
