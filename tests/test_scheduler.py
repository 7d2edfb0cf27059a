"""Tests for the sync scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from content_sync.errors import (
    InvariantViolation,
    QuotaExceededError,
    SourceNotFoundError,
    TransientProviderError,
)
from content_sync.quota import Operation, Provider
from content_sync.sync import OutcomeStatus, RunStatus, SyncPhase, SyncRunResult, SyncScheduler


async def add_sources(store, count: int):
    creator = uuid4()
    return [await store.add_source(creator, Provider.YOUTUBE, f"UC_{i}") for i in range(count)]


class TestTick:
    """Batch processing with per-source isolation."""

    @pytest.mark.asyncio
    async def test_one_failing_source_does_not_affect_others(self, scheduler, store, provider_client):
        sources = await add_sources(store, 3)
        provider_client.fail_for["UC_1"] = TransientProviderError("YouTube API returned 503 on playlistItems")

        summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.total == 3
        assert summary.synced == 2
        assert summary.failed == 1
        assert summary.items_processed == 100
        assert summary.quota_exhausted is False
        assert "503" in summary.failures[str(sources[1].source_id)]

        states = [await store.get_state(s.source_id) for s in sources]
        assert [s.phase for s in states] == [
            SyncPhase.INITIAL_IN_PROGRESS.value,
            SyncPhase.FAILED.value,
            SyncPhase.INITIAL_IN_PROGRESS.value,
        ]

    @pytest.mark.asyncio
    async def test_failed_source_is_logged_with_its_error(self, scheduler, store, provider_client):
        sources = await add_sources(store, 2)
        provider_client.fail_for["UC_0"] = TransientProviderError("YouTube API returned 503 on playlistItems")

        with patch("content_sync.sync.scheduler.logger") as logger:
            await scheduler.tick(Provider.YOUTUBE)

        logger.error.assert_called_once_with(
            "Source sync failed",
            provider="youtube",
            source_id=str(sources[0].source_id),
            error="YouTube API returned 503 on playlistItems",
            error_type="TransientProviderError",
        )
        completed = logger.info.call_args
        assert completed.args == ("Sync tick completed",)
        assert completed.kwargs["failures"] == {
            str(sources[0].source_id): "YouTube API returned 503 on playlistItems",
        }

    @pytest.mark.asyncio
    async def test_refresh_bookkeeping_error_does_not_stop_tick(self, scheduler, store, ledger, provider_client):
        await add_sources(store, 2)
        original = ledger.record_usage

        async def reject_info(provider, operation, *args, **kwargs):
            if operation == Operation.CHANNEL_INFO:
                raise InvariantViolation("Quota cost of channelInfo must be positive, got 0")
            await original(provider, operation, *args, **kwargs)

        with patch.object(ledger, "record_usage", side_effect=reject_info):
            summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.synced == 2
        assert summary.failed == 0
        assert [external_id for external_id, _ in provider_client.requests] == ["UC_0", "UC_1"]
        assert provider_client.info_calls == 2

    @pytest.mark.asyncio
    async def test_critical_quota_skips_tick(self, scheduler, store, ledger, provider_client):
        await add_sources(store, 2)
        await ledger.record_usage(Provider.YOUTUBE, Operation.SEARCH, 9500)

        summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.skipped_reason == "quota_critical"
        assert summary.total == 0
        assert provider_client.requests == []

    @pytest.mark.asyncio
    async def test_quota_exhaustion_stops_remaining_sources(self, scheduler, store, provider_client):
        sources = await add_sources(store, 3)
        provider_client.fail_for["UC_1"] = QuotaExceededError("YouTube API quota exceeded", provider="youtube")

        summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.quota_exhausted is True
        assert summary.synced == 1
        assert summary.failed == 0
        assert [external_id for external_id, _ in provider_client.requests] == ["UC_0", "UC_1"]
        # The aborted source is untouched, not failed
        state = await store.get_state(sources[1].source_id)
        assert state.phase == SyncPhase.NEVER_SYNCED.value

    @pytest.mark.asyncio
    async def test_batch_size_bounds_the_tick(self, orchestrator, ledger, store, provider_client):
        await add_sources(store, 5)
        scheduler = SyncScheduler(orchestrator, ledger, store, batch_size=2)

        summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.total == 2
        assert len(provider_client.requests) == 2

    @pytest.mark.asyncio
    async def test_locked_source_counts_as_skipped(self, scheduler, store, clock):
        sources = await add_sources(store, 2)
        await store.acquire(sources[0].source_id, "other-run", clock())

        summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.skipped == 1
        assert summary.synced == 1

    @pytest.mark.asyncio
    async def test_quota_unreadable_skips_tick(self, scheduler, ledger):
        with patch.object(ledger, "quota_summary", AsyncMock(side_effect=RuntimeError("db down"))):
            summary = await scheduler.tick(Provider.YOUTUBE)

        assert summary.skipped_reason == "quota_unavailable"


class TestTickOverlap:
    """A tick never overlaps a running tick."""

    @pytest.mark.asyncio
    async def test_concurrent_tick_is_skipped(self, ledger, store):
        await add_sources(store, 1)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_sync(source_id):
            started.set()
            await release.wait()
            return SyncRunResult(source_id=source_id, status=RunStatus.SYNCED, items_processed=1)

        orchestrator = MagicMock()
        orchestrator.providers = [Provider.YOUTUBE]
        orchestrator.sync_one_source = AsyncMock(side_effect=slow_sync)
        scheduler = SyncScheduler(orchestrator, ledger, store)

        first = asyncio.create_task(scheduler.tick(Provider.YOUTUBE))
        await started.wait()
        assert scheduler.is_running

        second = await scheduler.tick(Provider.YOUTUBE)
        release.set()
        first_summary = await first

        assert second.skipped_reason == "tick_in_progress"
        assert first_summary.synced == 1
        assert orchestrator.sync_one_source.await_count == 1
        assert not scheduler.is_running


class TestForceSync:
    @pytest.mark.asyncio
    async def test_force_sync_runs_one_step(self, scheduler, source):
        result = await scheduler.force_sync(source.source_id)

        assert result.status == RunStatus.SYNCED
        assert result.items_processed == 50

    @pytest.mark.asyncio
    async def test_force_sync_is_subject_to_quota(self, scheduler, source, ledger, provider_client):
        await ledger.record_usage(Provider.YOUTUBE, Operation.SEARCH, 9999)

        result = await scheduler.force_sync(source.source_id)

        assert result.status == RunStatus.QUOTA_EXHAUSTED
        assert provider_client.requests == []

    @pytest.mark.asyncio
    async def test_force_sync_reports_failure(self, scheduler, source, provider_client):
        provider_client.fail_with = TransientProviderError("YouTube API timeout on playlistItems")

        result = await scheduler.force_sync(source.source_id)

        assert result.status == RunStatus.FAILED
        assert result.message == "YouTube API timeout on playlistItems"

    @pytest.mark.asyncio
    async def test_force_sync_unknown_source_raises(self, scheduler):
        with pytest.raises(SourceNotFoundError):
            await scheduler.force_sync(uuid4())


class TestPruneJob:
    @pytest.mark.asyncio
    async def test_prune_returns_deleted_count(self, scheduler, ledger, clock):
        await ledger.record_usage(Provider.YOUTUBE, Operation.SEARCH, 100)
        clock.advance(days=31)

        outcome = await scheduler.prune_quota_history()

        assert outcome.status == OutcomeStatus.OK
        assert outcome.value == 1

    @pytest.mark.asyncio
    async def test_prune_failure_is_an_outcome(self, scheduler, ledger):
        with patch.object(ledger, "prune", AsyncMock(side_effect=RuntimeError("db down"))):
            outcome = await scheduler.prune_quota_history()

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "db down"
