"""Tests for the sync orchestrator."""

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from content_sync.db import Content, Source
from content_sync.errors import (
    InvariantViolation,
    PersistenceError,
    ProviderValidationError,
    QuotaExceededError,
    SourceNotFoundError,
    TransientProviderError,
)
from content_sync.quota import Operation, Provider
from content_sync.sync import OutcomeStatus, RunStatus, SyncPhase
from content_sync.sync.state import snapshot

from conftest import START, make_item


async def content_count(db) -> int:
    async with db.session() as session:
        return await session.scalar(select(func.count()).select_from(Content))


class TestInitialSync:
    """A 62-item channel takes two runs to finish its initial sync."""

    @pytest.mark.asyncio
    async def test_two_runs_complete_initial_sync(self, orchestrator, store, source, db, clock):
        first = await orchestrator.sync_one_source(source.source_id)

        assert first.status == RunStatus.SYNCED
        assert first.items_processed == 50
        assert first.has_more is True
        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.INITIAL_IN_PROGRESS.value
        assert state.resume_cursor == "50"

        clock.advance(minutes=1)
        second = await orchestrator.sync_one_source(source.source_id)

        assert second.items_processed == 12
        assert second.has_more is False
        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.INCREMENTAL.value
        assert state.initial_sync_completed is True
        assert state.resume_cursor is None
        assert state.synced_count == 62
        assert await content_count(db) == 62

    @pytest.mark.asyncio
    async def test_resumes_from_cursor_after_crash(self, orchestrator, store, source, provider_client, db, clock):
        """A run that died holding the lock resumes at the second page, not the first."""
        await orchestrator.sync_one_source(source.source_id)
        await store.acquire(source.source_id, "crashed-run", clock())

        clock.advance(minutes=16)
        result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SYNCED
        tokens = [request.page_token for _, request in provider_client.requests]
        assert tokens == [None, "50"]
        assert await content_count(db) == 62

    @pytest.mark.asyncio
    async def test_refreshes_source_statistics(self, orchestrator, source, db, ledger):
        result = await orchestrator.sync_one_source(source.source_id)

        assert result.stats_refresh.status == OutcomeStatus.OK
        async with db.session() as session:
            row = await session.get(Source, source.source_id)
        assert row.follower_count == 1200
        assert row.item_count == 62
        usage = await ledger.daily_usage(Provider.YOUTUBE)
        assert usage.operation_breakdown[Operation.CHANNEL_INFO.value].units == 1
        assert usage.total_units == 3


class TestIncrementalSync:
    @pytest.mark.asyncio
    async def test_incremental_run_without_new_items_is_idempotent(self, orchestrator, store, source, clock):
        await orchestrator.sync_one_source(source.source_id)
        await orchestrator.sync_one_source(source.source_id)
        before = snapshot(await store.get_state(source.source_id))

        clock.advance(hours=1)
        result = await orchestrator.sync_one_source(source.source_id)

        after = await store.get_state(source.source_id)
        assert result.items_processed == 0
        assert after.synced_count == before.synced_count
        assert after.phase == before.phase
        assert after.last_error == before.last_error
        assert after.last_synced_at == clock.now

    @pytest.mark.asyncio
    async def test_incremental_run_picks_up_new_items(self, orchestrator, store, source, provider_client, clock, db):
        await orchestrator.sync_one_source(source.source_id)
        await orchestrator.sync_one_source(source.source_id)

        clock.advance(hours=1)
        provider_client.publish(make_item(999, clock.now - timedelta(minutes=5)))
        clock.advance(minutes=10)
        result = await orchestrator.sync_one_source(source.source_id)

        assert result.items_processed == 1
        _, request = provider_client.requests[-1]
        assert request.published_after is not None
        assert (await store.get_state(source.source_id)).synced_count == 63
        assert await content_count(db) == 63

    @pytest.mark.asyncio
    async def test_item_published_during_initial_sync_is_picked_up(
        self, orchestrator, store, source, provider_client, clock, db
    ):
        await orchestrator.sync_one_source(source.source_id)
        clock.advance(minutes=10)
        provider_client.publish(make_item(900, clock.now))
        await orchestrator.sync_one_source(source.source_id)
        assert (await store.get_state(source.source_id)).initial_sync_completed is True

        clock.advance(hours=1)
        result = await orchestrator.sync_one_source(source.source_id)

        assert result.items_processed == 1
        _, request = provider_client.requests[-1]
        assert request.published_after == START
        assert await content_count(db) == 63


class TestQuotaAbort:
    """Quota exhaustion leaves the source exactly as it was."""

    @pytest.mark.asyncio
    async def test_local_quota_exhaustion_restores_state(self, orchestrator, store, source, ledger, provider_client):
        await orchestrator.sync_one_source(source.source_id)
        before = snapshot(await store.get_state(source.source_id))
        await ledger.record_usage(Provider.YOUTUBE, Operation.SEARCH, 9999)

        with pytest.raises(QuotaExceededError):
            await orchestrator.sync_one_source(source.source_id)

        after = await store.get_state(source.source_id)
        assert snapshot(after) == before
        assert after.lock_owner is None
        assert len(provider_client.requests) == 1

    @pytest.mark.asyncio
    async def test_provider_quota_error_on_first_run_keeps_never_synced(self, orchestrator, store, source, provider_client):
        provider_client.fail_with = QuotaExceededError("YouTube API quota exceeded", provider="youtube")

        with pytest.raises(QuotaExceededError):
            await orchestrator.sync_one_source(source.source_id)

        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.NEVER_SYNCED.value
        assert state.sync_started_at is None
        assert state.last_error is None


class TestFailures:
    """Other failures mark the source FAILED and re-raise."""

    @pytest.mark.asyncio
    async def test_provider_failure_marks_source_failed(self, orchestrator, store, source, provider_client):
        await orchestrator.sync_one_source(source.source_id)
        provider_client.fail_with = TransientProviderError("YouTube API timeout on playlistItems")

        with pytest.raises(TransientProviderError):
            await orchestrator.sync_one_source(source.source_id)

        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.FAILED.value
        assert state.last_error == "YouTube API timeout on playlistItems"
        assert state.resume_cursor == "50"
        assert state.synced_count == 50
        assert state.lock_owner is None

    @pytest.mark.asyncio
    async def test_failed_source_recovers_on_next_run(self, orchestrator, store, source, provider_client):
        provider_client.fail_with = ProviderValidationError("Invalid video payload")
        with pytest.raises(ProviderValidationError):
            await orchestrator.sync_one_source(source.source_id)

        provider_client.fail_with = None
        result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SYNCED
        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.INITIAL_IN_PROGRESS.value
        assert state.last_error is None

    @pytest.mark.asyncio
    async def test_persistence_failure_counts_unprocessed_items(self, orchestrator, store, source, pipeline, db):
        with patch.object(pipeline, "persist", side_effect=PersistenceError("Failed to persist 50 items")):
            with pytest.raises(PersistenceError):
                await orchestrator.sync_one_source(source.source_id)

        state = await store.get_state(source.source_id)
        assert state.phase == SyncPhase.FAILED.value
        assert state.failed_count == 50
        assert state.synced_count == 0
        assert state.resume_cursor is None
        assert await content_count(db) == 0

    @pytest.mark.asyncio
    async def test_source_info_failure_does_not_fail_run(self, orchestrator, source, provider_client):
        provider_client.info_error = TransientProviderError("YouTube API returned 503 on channels")

        result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SYNCED
        assert result.stats_refresh.status == OutcomeStatus.FAILED
        assert "503" in result.stats_refresh.error

    @pytest.mark.asyncio
    async def test_bookkeeping_error_during_refresh_does_not_fail_run(self, orchestrator, store, source, ledger):
        original = ledger.record_usage

        async def reject_info(provider, operation, *args, **kwargs):
            if operation == Operation.CHANNEL_INFO:
                raise InvariantViolation("Quota cost of channelInfo must be positive, got 0")
            await original(provider, operation, *args, **kwargs)

        with patch.object(ledger, "record_usage", side_effect=reject_info):
            result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SYNCED
        assert result.stats_refresh.status == OutcomeStatus.FAILED
        assert "channelInfo" in result.stats_refresh.error
        state = await store.get_state(source.source_id)
        assert state.resume_cursor == "50"
        assert state.lock_owner is None

    @pytest.mark.asyncio
    async def test_refresh_is_skipped_when_page_used_the_last_units(self, orchestrator, source, ledger, provider_client):
        await ledger.record_usage(Provider.YOUTUBE, Operation.SEARCH, 9998)

        result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SYNCED
        assert result.stats_refresh.status == OutcomeStatus.FAILED
        assert result.stats_refresh.error == "Insufficient quota for source info refresh"
        assert provider_client.info_calls == 0

    @pytest.mark.asyncio
    async def test_missing_source_info_is_empty_not_failed(self, orchestrator, source, provider_client):
        provider_client.info = None

        result = await orchestrator.sync_one_source(source.source_id)

        assert result.stats_refresh.status == OutcomeStatus.EMPTY


class TestRunLock:
    @pytest.mark.asyncio
    async def test_locked_source_is_skipped(self, orchestrator, store, source, provider_client, clock):
        assert await store.acquire(source.source_id, "other-run", clock())

        result = await orchestrator.sync_one_source(source.source_id)

        assert result.status == RunStatus.SKIPPED
        assert provider_client.requests == []
        state = await store.get_state(source.source_id)
        assert state.lock_owner == "other-run"

    @pytest.mark.asyncio
    async def test_unknown_source_raises(self, orchestrator):
        with pytest.raises(SourceNotFoundError):
            await orchestrator.sync_one_source(uuid4())
