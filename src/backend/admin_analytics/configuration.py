# config parameters for the admin analytics engine

from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# ========== 1. Refresh coordination ==========

class RefreshConfig(BaseModel):
    auto_refresh_enabled: bool = False
    """Start the recurring refresh timer when the app starts"""

    auto_refresh_interval_seconds: int = Field(300, gt=0)
    """Seconds between two auto-refresh ticks"""

    max_refresh_errors: int = Field(10, gt=0)
    """Recent refresh errors kept for display; older ones are dropped"""


# ========== 2. Display ==========

class DisplayConfig(BaseModel):
    timezone: str = "UTC"
    """Timezone used to bucket records into calendar days"""

    default_time_range: Literal["7d", "30d", "90d", "all"] = "30d"
    """Growth window selected until a consumer picks another one"""


# ========== 3. Record store ==========

class DataSourceConfig(BaseModel):
    database_url: Optional[str] = None
    """SQLAlchemy URL of the platform database; unset means local mode only"""

    users_table: str = "users"
    applications_table: str = "applications"
    goals_table: str = "goals"
    events_table: str = "analytics_events"


# ========== 4. Summary ==========

class AnalyticsConfig(BaseModel):
    """Configuration for the admin analytics engine."""

    refresh: RefreshConfig = RefreshConfig()
    display: DisplayConfig = DisplayConfig()
    data_source: DataSourceConfig = DataSourceConfig()

    log_level: Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"] = "INFO"
    """Root log level applied by the HTTP app"""


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_analytics_config(env_file: Optional[str] = None) -> AnalyticsConfig:
    """Build the config from defaults, ``.env`` and ``ADMIN_ANALYTICS_*`` variables."""
    load_dotenv(env_file)
    cfg = AnalyticsConfig()

    cfg.refresh = RefreshConfig(
        auto_refresh_enabled=_env_bool("ADMIN_ANALYTICS_AUTO_REFRESH", cfg.refresh.auto_refresh_enabled),
        auto_refresh_interval_seconds=_env_int(
            "ADMIN_ANALYTICS_AUTO_REFRESH_INTERVAL", cfg.refresh.auto_refresh_interval_seconds
        ),
        max_refresh_errors=_env_int("ADMIN_ANALYTICS_MAX_REFRESH_ERRORS", cfg.refresh.max_refresh_errors),
    )

    time_range = os.getenv("ADMIN_ANALYTICS_TIME_RANGE", cfg.display.default_time_range)
    if time_range not in {"7d", "30d", "90d", "all"}:
        time_range = cfg.display.default_time_range
    cfg.display = DisplayConfig(
        timezone=os.getenv("ADMIN_ANALYTICS_TIMEZONE", cfg.display.timezone),
        default_time_range=time_range,
    )

    cfg.data_source = DataSourceConfig(
        database_url=os.getenv("ADMIN_ANALYTICS_DATABASE_URL", cfg.data_source.database_url),
        users_table=os.getenv("ADMIN_ANALYTICS_USERS_TABLE", cfg.data_source.users_table),
        applications_table=os.getenv("ADMIN_ANALYTICS_APPLICATIONS_TABLE", cfg.data_source.applications_table),
        goals_table=os.getenv("ADMIN_ANALYTICS_GOALS_TABLE", cfg.data_source.goals_table),
        events_table=os.getenv("ADMIN_ANALYTICS_EVENTS_TABLE", cfg.data_source.events_table),
    )

    log_level = os.getenv("ADMIN_ANALYTICS_LOG_LEVEL", cfg.log_level).strip().upper()
    if log_level in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
        cfg.log_level = log_level
    return cfg
