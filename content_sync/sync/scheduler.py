"""Periodic scheduling of source syncs and quota history pruning."""

from __future__ import annotations

import asyncio
from uuid import UUID

from ..errors import (
    ConfigurationError,
    InvariantViolation,
    QuotaExceededError,
    SourceNotFoundError,
)
from ..logging import LogContext, get_logger
from ..quota.ledger import DEFAULT_RETENTION_DAYS, QuotaLedger
from ..quota.policy import Provider, WarningLevel
from .orchestrator import SyncOrchestrator
from .results import Outcome, RunStatus, SyncRunResult, TickSummary
from .store import SyncProgressStore

logger = get_logger(__name__)


class SyncScheduler:
    """Selects eligible sources each tick and runs them one at a time."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        ledger: QuotaLedger,
        store: SyncProgressStore,
        batch_size: int = 100,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ):
        """Initialize the scheduler.

        Args:
            orchestrator: Runs one sync step per source.
            ledger: Quota ledger for the provider-wide pre-check.
            store: Source of eligible sources.
            batch_size: Maximum number of sources per tick.
            retention_days: Quota history retention for the pruning job.
        """
        self._orchestrator = orchestrator
        self._ledger = ledger
        self._store = store
        self.batch_size = batch_size
        self.retention_days = retention_days
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        """Whether a tick is in progress."""
        return self._tick_lock.locked()

    async def tick(self, provider: Provider) -> TickSummary:
        """Run one scheduling pass for a provider.

        A tick that starts while another is running returns immediately
        with a skipped summary.
        """
        if self._tick_lock.locked():
            logger.warning("Sync tick already running, skipping", provider=provider.value)
            return TickSummary(provider=provider.value, skipped_reason="tick_in_progress")

        with LogContext(tick_provider=provider.value):
            async with self._tick_lock:
                summary = await self._run_tick(provider)

        logger.info(
            "Sync tick completed",
            provider=summary.provider,
            total=summary.total,
            synced=summary.synced,
            failed=summary.failed,
            skipped=summary.skipped,
            items_processed=summary.items_processed,
            quota_exhausted=summary.quota_exhausted,
            skipped_reason=summary.skipped_reason,
            failures=summary.failures or None,
        )
        return summary

    async def tick_all(self) -> list[TickSummary]:
        """Tick every provider that has a configured pipeline."""
        return [await self.tick(provider) for provider in self._orchestrator.providers]

    async def _run_tick(self, provider: Provider) -> TickSummary:
        summary = TickSummary(provider=provider.value)

        try:
            quota = await self._ledger.quota_summary(provider)
        except Exception as e:
            logger.error("Quota pre-check failed, skipping tick", provider=provider.value, error=str(e))
            summary.skipped_reason = "quota_unavailable"
            return summary

        if quota.warning_level == WarningLevel.CRITICAL:
            logger.warning(
                "Quota critical, skipping tick",
                provider=provider.value,
                usage_percentage=round(quota.usage_percentage, 1),
                remaining_quota=quota.remaining_quota,
            )
            summary.skipped_reason = "quota_critical"
            return summary

        sources = await self._store.list_eligible(provider, self.batch_size)
        summary.total = len(sources)

        for source in sources:
            try:
                result = await self._orchestrator.sync_one_source(source.source_id)
            except QuotaExceededError as e:
                logger.warning(
                    "Quota exhausted, stopping tick",
                    provider=provider.value,
                    source_id=str(source.source_id),
                    remaining_quota=e.remaining_quota,
                )
                summary.quota_exhausted = True
                break
            except InvariantViolation:
                raise
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(
                    "Source sync failed",
                    provider=provider.value,
                    source_id=str(source.source_id),
                    error=error,
                    error_type=type(e).__name__,
                )
                summary.failed += 1
                summary.failures[str(source.source_id)] = error
                continue

            if result.status == RunStatus.SKIPPED:
                summary.skipped += 1
            else:
                summary.synced += 1
                summary.items_processed += result.items_processed

        return summary

    async def force_sync(self, source_id: UUID) -> SyncRunResult:
        """Run one sync step for a single source outside the tick.

        Not limited by the batch size, but still subject to the quota guard
        and the source's run lock.
        """
        logger.info("Force sync requested", source_id=str(source_id))
        try:
            return await self._orchestrator.sync_one_source(source_id)
        except QuotaExceededError as e:
            return SyncRunResult(source_id=source_id, status=RunStatus.QUOTA_EXHAUSTED, message=str(e))
        except (SourceNotFoundError, ConfigurationError, InvariantViolation):
            raise
        except Exception as e:
            return SyncRunResult(
                source_id=source_id,
                status=RunStatus.FAILED,
                message=str(e) or type(e).__name__,
            )

    async def prune_quota_history(self) -> Outcome[int]:
        """Delete quota records past the retention window."""
        try:
            deleted = await self._ledger.prune(self.retention_days)
        except Exception as e:
            logger.error("Quota history pruning failed", error=str(e))
            return Outcome.failed(e)
        return Outcome.ok(deleted)
