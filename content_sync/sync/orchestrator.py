"""Sync orchestrator: one resumable page of work for one source."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from ..db.connection import DatabaseConnection
from ..db.models import Source, utcnow
from ..errors import ConfigurationError, InvariantViolation, QuotaExceededError
from ..logging import LogContext, get_logger, set_run_id
from ..providers.base import ProviderPage, SourceInfo
from ..quota.policy import Provider
from .pipeline import ContentPipeline
from .results import Outcome, RunStatus, SyncRunResult
from .state import (
    SyncPhase,
    apply_failure,
    apply_page,
    begin_run,
    plan_request,
    restore,
    snapshot,
)
from .store import SyncProgressStore

logger = get_logger(__name__)


class SyncOrchestrator:
    """Runs one sync step for a source under its run lock.

    Each call fetches at most one page. Progress is written after the page is
    fully persisted, so a crash at any point resumes from the last committed
    cursor on the next call.
    """

    def __init__(
        self,
        db: DatabaseConnection,
        store: SyncProgressStore,
        pipelines: Mapping[Provider, ContentPipeline],
        page_size: int = 50,
        lock_stale_after: timedelta = timedelta(minutes=15),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._store = store
        self._pipelines = dict(pipelines)
        self._page_size = page_size
        self._lock_stale_after = lock_stale_after
        self._clock = clock

    @property
    def providers(self) -> list[Provider]:
        """Providers with a configured pipeline."""
        return list(self._pipelines)

    def pipeline_for(self, provider: Provider | str) -> ContentPipeline:
        try:
            return self._pipelines[Provider(provider)]
        except (KeyError, ValueError):
            raise ConfigurationError(f"No sync pipeline configured for provider {provider}") from None

    async def sync_one_source(self, source_id: UUID) -> SyncRunResult:
        """Advance a source by one page.

        Raises:
            SourceNotFoundError: The source does not exist.
            QuotaExceededError: Not enough quota; the source's state is left
                exactly as it was before the call.
            ContentSyncError: Any other failure, after it has been recorded
                on the source as FAILED.
        """
        source = await self._store.get_source(source_id)
        pipeline = self.pipeline_for(source.provider)

        run_id = uuid4().hex
        if not await self._store.acquire(source_id, run_id, self._clock(), self._lock_stale_after):
            return SyncRunResult(
                source_id=source_id,
                status=RunStatus.SKIPPED,
                message="A sync run for this source is already in progress",
            )

        set_run_id(run_id)
        try:
            with LogContext(source_id=str(source_id), provider=source.provider):
                return await self._run(source, pipeline)
        finally:
            await self._store.release(source_id, run_id)
            set_run_id(None)

    async def _run(self, source: Source, pipeline: ContentPipeline) -> SyncRunResult:
        state = await self._store.get_or_create(source.source_id)
        before = snapshot(state)

        # Written before any I/O so an interrupted run is visible as in progress
        begin_run(state, self._clock())
        await self._store.save(state)

        request = plan_request(state, self._page_size)
        logger.info(
            "Sync run started",
            phase=state.phase,
            page_token=request.page_token,
            published_after=request.published_after.isoformat() if request.published_after else None,
        )

        page: ProviderPage | None = None
        try:
            page = await pipeline.fetch_page(source.external_id, request)
            processed = await pipeline.persist(source, pipeline.transform(page))
        except QuotaExceededError as e:
            restore(state, before)
            await self._store.save(state)
            logger.warning(
                "Sync run aborted, quota exhausted",
                required_units=e.required_units,
                remaining_quota=e.remaining_quota,
            )
            raise
        except InvariantViolation:
            raise
        except Exception as e:
            unprocessed = len(page.items) if page is not None else 0
            apply_failure(state, str(e) or type(e).__name__, unprocessed)
            await self._store.save(state)
            logger.error(
                "Sync run failed",
                error=state.last_error,
                error_type=type(e).__name__,
                unprocessed=unprocessed,
            )
            raise

        apply_page(state, page, processed, self._clock())
        await self._store.save(state)

        stats_refresh = await self.refresh_source_info(source, pipeline)

        logger.info(
            "Sync run completed",
            phase=state.phase,
            items_processed=processed,
            synced_count=state.synced_count,
            stats_refresh=stats_refresh.status.value,
        )
        return SyncRunResult(
            source_id=source.source_id,
            status=RunStatus.SYNCED,
            items_processed=processed,
            phase=state.phase,
            has_more=state.phase == SyncPhase.INITIAL_IN_PROGRESS.value,
            stats_refresh=stats_refresh,
        )

    async def refresh_source_info(self, source: Source, pipeline: ContentPipeline) -> Outcome[SourceInfo]:
        """Refresh follower/item/view aggregates for a source.

        Best effort: every failure, bookkeeping included, is logged and
        returned, never raised. The page the run already committed stands.
        """
        try:
            info = await pipeline.fetch_source_info(source.external_id)
        except QuotaExceededError as e:
            logger.info("Skipping source info refresh, quota low", remaining_quota=e.remaining_quota)
            return Outcome.failed("Insufficient quota for source info refresh")
        except Exception as e:
            logger.warning("Source info refresh failed", error=str(e), error_type=type(e).__name__)
            return Outcome.failed(e)

        if info is None:
            return Outcome.empty()

        try:
            async with self._db.session() as session:
                row = await session.get(Source, source.source_id)
                if row is None:
                    return Outcome.empty()
                row.follower_count = info.follower_count
                row.item_count = info.item_count
                row.total_views = info.total_views
                row.stats_updated_at = self._clock()
        except Exception as e:
            logger.warning("Failed to store source info", error=str(e))
            return Outcome.failed(e)

        return Outcome.ok(info)
