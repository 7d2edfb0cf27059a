"""Content ingestion pipeline: fetch one page, map it, persist it atomically."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select

from ..db.connection import DatabaseConnection
from ..db.models import Content, ContentCategory, ContentStatistics, Source, utcnow
from ..errors import InvariantViolation, PersistenceError, QuotaExceededError
from ..logging import get_logger
from ..providers.base import (
    CallAttempt,
    ContentMapper,
    MappedItem,
    PageRequest,
    ProviderClient,
    ProviderPage,
    SourceInfo,
    track_attempts,
)
from ..quota.ledger import QuotaLedger
from ..quota.policy import Operation

logger = get_logger(__name__)


@dataclass
class IngestResult:
    """A fetched page and how many of its items were persisted."""

    page: ProviderPage
    persisted: int


class ContentPipeline:
    """Fetch -> transform -> persist for one provider."""

    def __init__(
        self,
        db: DatabaseConnection,
        ledger: QuotaLedger,
        client: ProviderClient,
        mapper: ContentMapper,
        page_cost: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the pipeline.

        Args:
            db: Database connection for content writes.
            ledger: Quota ledger consulted before and charged after each call.
            client: Provider client used for fetching.
            mapper: Pure mapper from provider items to content rows.
            page_cost: Units a page fetch must fit in before it is sent, and
                the charge for clients that report no requests; defaults to
                the policy cost of ``channelVideos``.
            clock: Returns the current time as naive UTC.
        """
        self._db = db
        self._ledger = ledger
        self._client = client
        self._mapper = mapper
        self._clock = clock
        self.provider = client.provider
        self.page_cost = page_cost or ledger.cost_of(self.provider, Operation.CHANNEL_VIDEOS)
        if self.page_cost <= 0:
            raise InvariantViolation(f"Page cost must be positive, got {self.page_cost}")

    async def fetch_page(self, external_id: str, request: PageRequest) -> ProviderPage:
        """Fetch one page, guarded by and charged to the quota ledger."""
        await self._guard(self.page_cost, "a page fetch")

        details = {
            "external_id": external_id,
            "max_results": request.max_results,
            "page_token": request.page_token,
            "published_after": request.published_after.isoformat() if request.published_after else None,
        }
        with track_attempts() as attempts:
            try:
                page = await self._client.get_source_items(external_id, request)
            except Exception as e:
                await self._charge(attempts, Operation.CHANNEL_VIDEOS, self.page_cost, details, error=e)
                raise

        await self._charge(
            attempts,
            Operation.CHANNEL_VIDEOS,
            self.page_cost,
            {**details, "items": len(page.items)},
        )
        return page

    async def fetch_source_info(self, external_id: str) -> SourceInfo | None:
        """Fetch source aggregates, guarded by and charged to the quota ledger."""
        cost = self._ledger.cost_of(self.provider, Operation.CHANNEL_INFO)
        await self._guard(cost, "a source info refresh")

        details = {"external_id": external_id}
        with track_attempts() as attempts:
            try:
                info = await self._client.get_source_info(external_id)
            except Exception as e:
                await self._charge(attempts, Operation.CHANNEL_INFO, cost, details, error=e)
                raise

        await self._charge(attempts, Operation.CHANNEL_INFO, cost, details)
        return info

    async def _guard(self, units: int, purpose: str) -> None:
        check = await self._ledger.can_spend(self.provider, units)
        if not check.can_use:
            raise QuotaExceededError(
                f"Not enough {self.provider.value} quota for {purpose}",
                provider=self.provider.value,
                required_units=units,
                remaining_quota=check.remaining_quota,
            )

    async def _charge(
        self,
        attempts: list[CallAttempt],
        operation: Operation,
        units: int,
        details: dict[str, Any],
        error: Exception | None = None,
    ) -> None:
        """Append ledger records for a provider call.

        One record per reported HTTP attempt, each at its own operation's
        cost. A client that reported nothing is charged ``units`` once under
        ``operation``.
        """
        if not attempts:
            await self._ledger.record_usage(
                self.provider,
                operation,
                units,
                request_details=details,
                response_status="error" if error is not None else "success",
                error_message=(str(error) or type(error).__name__) if error is not None else None,
            )
            return

        for attempt in attempts:
            await self._ledger.record_usage(
                self.provider,
                attempt.operation,
                request_details={**details, "endpoint": attempt.endpoint, "status_code": attempt.status_code},
                response_status="error" if attempt.error else "success",
                error_message=attempt.error,
            )

    def transform(self, page: ProviderPage) -> list[MappedItem]:
        return [self._mapper.map_item(item) for item in page.items]

    async def persist(self, source: Source, mapped: list[MappedItem]) -> int:
        """Write mapped items in one transaction.

        Content rows are upserted on ``(platform, platform_id)``, so
        re-ingesting an item updates it in place. Any failure rolls back the
        whole batch.

        Returns:
            Number of items persisted.
        """
        if not mapped:
            return 0

        captured_at = self._clock()
        try:
            async with self._db.session() as session:
                for item in mapped:
                    await self._upsert_item(session, source, item, captured_at)
        except Exception as e:
            logger.error(
                "Failed to persist content batch",
                source_id=str(source.source_id),
                batch_size=len(mapped),
                error=str(e),
            )
            raise PersistenceError(f"Failed to persist {len(mapped)} items: {e}") from e

        return len(mapped)

    async def _upsert_item(self, session, source: Source, item: MappedItem, captured_at: datetime) -> None:
        fields = item.content
        result = await session.execute(
            select(Content).where(
                Content.platform == fields.platform,
                Content.platform_id == fields.platform_id,
            )
        )
        content = result.scalar_one_or_none()
        if content is None:
            content = Content(
                creator_id=source.creator_id,
                source_id=source.source_id,
                platform=fields.platform,
                platform_id=fields.platform_id,
            )
            session.add(content)

        content.content_type = fields.content_type
        content.title = fields.title
        content.description = fields.description
        content.thumbnail_url = fields.thumbnail_url
        content.url = fields.url
        content.duration = fields.duration
        content.published_at = fields.published_at
        content.language = fields.language
        content.is_live = fields.is_live
        content.quality = fields.quality
        content.updated_at = captured_at
        await session.flush()

        if item.category is not None:
            existing = await session.get(ContentCategory, (content.content_id, item.category.category))
            if existing is None:
                session.add(
                    ContentCategory(
                        content_id=content.content_id,
                        category=item.category.category,
                        is_primary=item.category.is_primary,
                        source=item.category.source,
                    )
                )

        stats = await session.get(ContentStatistics, content.content_id)
        if stats is None:
            stats = ContentStatistics(content_id=content.content_id)
            session.add(stats)
        stats.views = item.statistics.views
        stats.likes = item.statistics.likes
        stats.comments = item.statistics.comments
        stats.shares = item.statistics.shares
        stats.engagement_rate = item.statistics.engagement_rate
        stats.captured_at = captured_at
        await session.flush()

    async def ingest(self, source: Source, request: PageRequest) -> IngestResult:
        """Fetch, map and persist one page for a source."""
        page = await self.fetch_page(source.external_id, request)
        mapped = self.transform(page)
        persisted = await self.persist(source, mapped)
        logger.info(
            "Page ingested",
            source_id=str(source.source_id),
            fetched=len(page.items),
            persisted=persisted,
            has_more=page.next_page_token is not None,
        )
        return IngestResult(page=page, persisted=persisted)
