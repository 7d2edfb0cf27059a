"""Provider-facing contracts.

A provider is plugged in with two pieces: a ``ProviderClient`` that talks to
the remote API and returns typed records, and a ``ContentMapper`` that turns
those records into the generic content model. The orchestrator and the quota
code only ever see these interfaces.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from ..quota.policy import Operation, Provider


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to the naive UTC form stored in the database."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Thumbnails(BaseModel):
    """Thumbnail URLs by size."""

    default: str | None = None
    medium: str | None = None
    high: str | None = None
    standard: str | None = None
    maxres: str | None = None


class ItemStatistics(BaseModel):
    """Raw engagement counters reported by the provider."""

    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)


class ProviderItem(BaseModel):
    """One content item as returned by a provider."""

    id: str = Field(min_length=1)
    title: str
    description: str | None = None
    published_at: datetime
    channel_id: str | None = None
    channel_title: str | None = None
    thumbnails: Thumbnails = Field(default_factory=Thumbnails)
    statistics: ItemStatistics = Field(default_factory=ItemStatistics)
    duration_seconds: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    category_id: str | None = None
    live_broadcast_content: str | None = None
    default_language: str | None = None
    url: str


class ProviderPage(BaseModel):
    """One page of items plus the continuation token, if any."""

    items: list[ProviderItem] = Field(default_factory=list)
    next_page_token: str | None = None
    total_results: int = Field(default=0, ge=0)


class SourceInfo(BaseModel):
    """Source-level aggregates (followers, items, views)."""

    follower_count: int = Field(default=0, ge=0)
    item_count: int = Field(default=0, ge=0)
    total_views: int = Field(default=0, ge=0)


@dataclass(frozen=True)
class PageRequest:
    """Parameters for fetching one page of a source's items."""

    max_results: int
    page_token: str | None = None
    published_after: datetime | None = None


@dataclass(frozen=True)
class CallAttempt:
    """One HTTP request a client sent, successful or not."""

    operation: Operation
    endpoint: str
    status_code: int | None = None
    error: str | None = None


_attempts: ContextVar[list[CallAttempt] | None] = ContextVar("provider_attempts", default=None)


@contextmanager
def track_attempts() -> Iterator[list[CallAttempt]]:
    """Collect the attempts clients report inside the block.

    Retries are separate requests and are billed separately by providers, so
    clients report every request they send rather than one per logical call.
    Collection is per task; concurrent runs never see each other's attempts.
    """
    bucket: list[CallAttempt] = []
    token = _attempts.set(bucket)
    try:
        yield bucket
    finally:
        _attempts.reset(token)


def report_attempt(
    operation: Operation,
    endpoint: str,
    status_code: int | None = None,
    error: str | None = None,
) -> None:
    """Record a sent request with the enclosing ``track_attempts`` block, if any."""
    bucket = _attempts.get()
    if bucket is not None:
        bucket.append(CallAttempt(operation, endpoint, status_code, error))


@runtime_checkable
class ProviderClient(Protocol):
    """Transport to a provider API."""

    provider: Provider

    async def get_source_items(self, external_id: str, request: PageRequest) -> ProviderPage:
        """Fetch one page of a source's items."""
        ...

    async def get_source_info(self, external_id: str) -> SourceInfo | None:
        """Fetch source-level aggregates; None when the source does not exist.

        Clients should call ``report_attempt`` once per HTTP request. A call
        that reports nothing is charged the operation's configured cost.
        """
        ...


@dataclass(frozen=True)
class MappedContent:
    """Generic content fields derived from a provider item."""

    content_type: str
    platform: str
    platform_id: str
    title: str
    description: str | None
    thumbnail_url: str | None
    url: str
    duration: int
    published_at: datetime
    language: str | None
    is_live: bool
    quality: str


@dataclass(frozen=True)
class MappedCategory:
    """Category assignment for a content item."""

    category: str
    is_primary: bool = True
    source: str = "platform"


@dataclass(frozen=True)
class MappedStatistics:
    """Statistics snapshot for a content item."""

    views: int
    likes: int
    comments: int
    shares: int
    engagement_rate: float


@dataclass(frozen=True)
class MappedItem:
    """Everything the pipeline persists for one provider item."""

    content: MappedContent
    category: MappedCategory | None
    statistics: MappedStatistics


class ContentMapper(Protocol):
    """Pure provider item → generic content transform."""

    def map_item(self, item: ProviderItem) -> MappedItem:
        ...
