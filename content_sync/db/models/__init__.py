"""SQLAlchemy database models for content sync."""

from .base import Base, TimestampMixin, generate_uuid, utcnow
from .content import Content, ContentCategory, ContentStatistics
from .quota_usage import QuotaUsageRecord
from .source import Source, SourceSyncState

__all__ = [
    "Base",
    "Content",
    "ContentCategory",
    "ContentStatistics",
    "QuotaUsageRecord",
    "Source",
    "SourceSyncState",
    "TimestampMixin",
    "generate_uuid",
    "utcnow",
]
