"""
Backend admin analytics engine.

Turns raw platform records (users, job applications, goals, usage events)
into the derived metrics, growth series, user segments and insights shown on
the admin dashboard, and coordinates refreshing them through one
process-wide :class:`RefreshCoordinator`.
"""

from .configuration import AnalyticsConfig, load_analytics_config  # noqa: F401
from .coordinator import RefreshCoordinator, RefreshOutcome  # noqa: F401
from .export import (  # noqa: F401
    ExportDocument,
    build_export_document,
    dumps_export,
    export_filename,
    load_export,
)
from .models import (  # noqa: F401
    AnalyticsMode,
    AnalyticsSnapshot,
    ApplicationRecord,
    ApplicationStatus,
    DerivedMetric,
    EventRecord,
    GoalRecord,
    GrowthPoint,
    PlatformInsights,
    RawRecordSet,
    RefreshState,
    RefreshStatus,
    Segment,
    TimeRange,
    Trend,
    UserRecord,
)
from .modes import AuthState, ModeSelector  # noqa: F401
from .normalizer import NormalizedDataset, normalize_records  # noqa: F401
from .repository import (  # noqa: F401
    AnalyticsDataSource,
    DataSourceError,
    InMemoryDataSource,
    SQLAnalyticsRepository,
    build_repository_from_env,
)
from .service import AnalyticsService  # noqa: F401
