"""Provider clients and content mappers."""

from .base import (
    CallAttempt,
    ContentMapper,
    MappedCategory,
    MappedContent,
    MappedItem,
    MappedStatistics,
    PageRequest,
    ProviderClient,
    ProviderItem,
    ProviderPage,
    SourceInfo,
    Thumbnails,
    report_attempt,
    track_attempts,
)
from .youtube import YouTubeClient, parse_duration
from .youtube_mapper import YouTubeContentMapper

__all__ = [
    "CallAttempt",
    "ContentMapper",
    "MappedCategory",
    "MappedContent",
    "MappedItem",
    "MappedStatistics",
    "PageRequest",
    "ProviderClient",
    "ProviderItem",
    "ProviderPage",
    "SourceInfo",
    "Thumbnails",
    "YouTubeClient",
    "YouTubeContentMapper",
    "parse_duration",
    "report_attempt",
    "track_attempts",
]
