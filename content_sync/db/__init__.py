"""Database module."""

from .connection import (
    DatabaseConnection,
    create_engine,
    create_session_factory,
)
from .models import (
    Base,
    Content,
    ContentCategory,
    ContentStatistics,
    QuotaUsageRecord,
    Source,
    SourceSyncState,
    TimestampMixin,
    generate_uuid,
    utcnow,
)

__all__ = [
    "Base",
    "Content",
    "ContentCategory",
    "ContentStatistics",
    "DatabaseConnection",
    "QuotaUsageRecord",
    "Source",
    "SourceSyncState",
    "TimestampMixin",
    "create_engine",
    "create_session_factory",
    "generate_uuid",
    "utcnow",
]
