"""Pytest configuration and fixtures for content sync tests."""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio

from content_sync.config import QuotaSettings
from content_sync.db import DatabaseConnection
from content_sync.providers import (
    PageRequest,
    ProviderItem,
    ProviderPage,
    SourceInfo,
    YouTubeContentMapper,
)
from content_sync.quota import Provider, QuotaLedger, build_quota_policies
from content_sync.sync import (
    ContentPipeline,
    SyncOrchestrator,
    SyncProgressStore,
    SyncScheduler,
)

START = datetime(2024, 6, 1, 12, 0, 0)


# ============================================================================
# Test Doubles
# ============================================================================


class MutableClock:
    """Clock returning a fixed naive UTC time that tests can move forward."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_item(index: int, published_at: datetime, **overrides) -> ProviderItem:
    """Create a provider item with realistic defaults."""
    data = {
        "id": f"vid{index:04d}",
        "title": f"Video {index}",
        "description": f"Description {index}",
        "published_at": published_at,
        "channel_id": "UC_channel",
        "thumbnails": {"default": f"https://i.ytimg.com/{index}/default.jpg",
                       "high": f"https://i.ytimg.com/{index}/hq.jpg"},
        "statistics": {"view_count": 1000, "like_count": 50, "comment_count": 10},
        "duration_seconds": 300,
        "category_id": "22",
        "url": f"https://www.youtube.com/watch?v=vid{index:04d}",
    }
    data.update(overrides)
    return ProviderItem(**data)


def make_catalog(count: int, newest: datetime = START - timedelta(days=1)) -> list[ProviderItem]:
    """A newest-first catalog of ``count`` items, one hour apart."""
    return [make_item(i, newest - timedelta(hours=i)) for i in range(count)]


class FakeProviderClient:
    """Deterministic in-memory provider.

    Pages through a newest-first catalog using the item offset as the
    continuation token.
    """

    provider = Provider.YOUTUBE

    def __init__(self, catalog: list[ProviderItem] | None = None):
        self.catalog = list(catalog or [])
        self.requests: list[tuple[str, PageRequest]] = []
        self.info: SourceInfo | None = SourceInfo(follower_count=1200, item_count=62, total_views=500000)
        self.fail_with: Exception | None = None
        self.fail_for: dict[str, Exception] = {}
        self.info_error: Exception | None = None
        self.info_calls = 0

    def publish(self, item: ProviderItem) -> None:
        self.catalog.insert(0, item)

    async def get_source_items(self, external_id: str, request: PageRequest) -> ProviderPage:
        self.requests.append((external_id, request))
        if self.fail_with is not None:
            raise self.fail_with
        if external_id in self.fail_for:
            raise self.fail_for[external_id]

        if request.published_after is not None:
            fresh = [i for i in self.catalog if i.published_at > request.published_after]
            return ProviderPage(items=fresh[: request.max_results], total_results=len(self.catalog))

        start = int(request.page_token or 0)
        end = start + request.max_results
        return ProviderPage(
            items=self.catalog[start:end],
            next_page_token=str(end) if end < len(self.catalog) else None,
            total_results=len(self.catalog),
        )

    async def get_source_info(self, external_id: str) -> SourceInfo | None:
        self.info_calls += 1
        if self.info_error is not None:
            raise self.info_error
        return self.info


# ============================================================================
# Database and Engine Fixtures
# ============================================================================


@pytest.fixture
def clock() -> MutableClock:
    """Mutable clock starting at a fixed instant."""
    return MutableClock()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[DatabaseConnection, None]:
    """In-memory SQLite database with all tables created."""
    connection = DatabaseConnection("sqlite+aiosqlite:///:memory:")
    await connection.create_tables()
    yield connection
    await connection.close()


@pytest.fixture
def policies():
    """Default quota policies (YouTube 10000/day, Twitter 300/day)."""
    return build_quota_policies(QuotaSettings())


@pytest.fixture
def ledger(db, policies, clock) -> QuotaLedger:
    """Quota ledger without background threshold checks."""
    return QuotaLedger(db, policies, clock=clock, threshold_checks=False)


@pytest.fixture
def store(db, clock) -> SyncProgressStore:
    return SyncProgressStore(db, clock=clock)


@pytest.fixture
def provider_client() -> FakeProviderClient:
    """Fake provider with a 62-item catalog."""
    return FakeProviderClient(make_catalog(62))


@pytest.fixture
def pipeline(db, ledger, provider_client, clock) -> ContentPipeline:
    return ContentPipeline(db, ledger, provider_client, YouTubeContentMapper(), page_cost=2, clock=clock)


@pytest.fixture
def orchestrator(db, store, pipeline, clock) -> SyncOrchestrator:
    return SyncOrchestrator(
        db,
        store,
        {Provider.YOUTUBE: pipeline},
        page_size=50,
        lock_stale_after=timedelta(minutes=15),
        clock=clock,
    )


@pytest.fixture
def scheduler(orchestrator, ledger, store) -> SyncScheduler:
    return SyncScheduler(orchestrator, ledger, store, batch_size=100, retention_days=30)


@pytest_asyncio.fixture
async def source(store):
    """A registered YouTube source."""
    return await store.add_source(uuid4(), Provider.YOUTUBE, "UC_channel", username="creator")
