"""Persistence of per-source sync progress and the per-source run lock."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError

from ..db.connection import DatabaseConnection
from ..db.models import Source, SourceSyncState, utcnow
from ..errors import SourceNotFoundError
from ..logging import get_logger
from ..quota.policy import Provider
from .state import SyncPhase, SyncProgress, new_state, progress_of

logger = get_logger(__name__)

# Columns owned by the state machine; lock columns are written only by
# acquire/release.
PROGRESS_FIELDS = (
    "phase",
    "resume_cursor",
    "synced_count",
    "failed_count",
    "total_count",
    "initial_sync_completed",
    "last_synced_at",
    "sync_started_at",
    "incremental_since",
    "last_error",
)


class SyncProgressStore:
    """Reads and writes ``SourceSyncState`` rows."""

    def __init__(
        self,
        db: DatabaseConnection,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._clock = clock

    async def add_source(
        self,
        creator_id: UUID,
        provider: Provider,
        external_id: str,
        username: str | None = None,
    ) -> Source:
        """Register a source for a creator."""
        async with self._db.session() as session:
            source = Source(
                creator_id=creator_id,
                provider=provider.value,
                external_id=external_id,
                username=username,
                is_active=True,
            )
            session.add(source)
            await session.flush()

        logger.info(
            "Source registered",
            source_id=str(source.source_id),
            provider=provider.value,
            external_id=external_id,
        )
        return source

    async def get_source(self, source_id: UUID) -> Source:
        """Load a source or raise ``SourceNotFoundError``."""
        async with self._db.session() as session:
            source = await session.get(Source, source_id)
        if source is None:
            raise SourceNotFoundError(f"Source {source_id} not found")
        return source

    async def get_or_create(self, source_id: UUID) -> SourceSyncState:
        """Load the state row, creating a NEVER_SYNCED one on first use."""
        async with self._db.session() as session:
            state = await session.get(SourceSyncState, source_id)
            if state is not None:
                return state
            if await session.get(Source, source_id) is None:
                raise SourceNotFoundError(f"Source {source_id} not found")

        try:
            async with self._db.session() as session:
                state = new_state(source_id)
                session.add(state)
        except IntegrityError:
            # Created concurrently by another run
            async with self._db.session() as session:
                state = await session.get(SourceSyncState, source_id)
            if state is None:
                raise
        return state

    async def acquire(
        self,
        source_id: UUID,
        owner: str,
        now: datetime | None = None,
        stale_after: timedelta = timedelta(minutes=15),
    ) -> bool:
        """Take the run lock if it is free or stale.

        The check and the write are a single conditional UPDATE, so two
        callers can never both see the lock as theirs.
        """
        await self.get_or_create(source_id)
        now = now or self._clock()
        stale_before = now - stale_after

        async with self._db.session() as session:
            result = await session.execute(
                update(SourceSyncState)
                .where(
                    SourceSyncState.source_id == source_id,
                    (SourceSyncState.lock_owner.is_(None)) | (SourceSyncState.locked_at < stale_before),
                )
                .values(lock_owner=owner, locked_at=now)
            )
            acquired = result.rowcount == 1

        if not acquired:
            logger.info("Source run lock held elsewhere", source_id=str(source_id), owner=owner)
        return acquired

    async def release(self, source_id: UUID, owner: str) -> None:
        """Release the run lock if ``owner`` still holds it."""
        async with self._db.session() as session:
            await session.execute(
                update(SourceSyncState)
                .where(
                    SourceSyncState.source_id == source_id,
                    SourceSyncState.lock_owner == owner,
                )
                .values(lock_owner=None, locked_at=None)
            )

    async def save(self, state: SourceSyncState) -> None:
        """Write the progress columns of ``state``."""
        values = {name: getattr(state, name) for name in PROGRESS_FIELDS}
        values["updated_at"] = self._clock()
        async with self._db.session() as session:
            await session.execute(
                update(SourceSyncState)
                .where(SourceSyncState.source_id == state.source_id)
                .values(**values)
            )

    async def get_state(self, source_id: UUID) -> SourceSyncState | None:
        async with self._db.session() as session:
            return await session.get(SourceSyncState, source_id)

    async def get_progress(self, source_id: UUID) -> SyncProgress:
        """Progress view of a source; unknown sources raise ``SourceNotFoundError``."""
        await self.get_source(source_id)
        state = await self.get_state(source_id)
        if state is None:
            state = new_state(source_id)
        return progress_of(state, self._clock())

    async def list_eligible(self, provider: Provider, limit: int) -> list[Source]:
        """Active sources of a provider in scheduling order.

        Sources that never synced or last failed come first, then the least
        recently synced.
        """
        needs_attention = case(
            (SourceSyncState.source_id.is_(None), 0),
            (SourceSyncState.phase.in_([SyncPhase.NEVER_SYNCED.value, SyncPhase.FAILED.value]), 0),
            else_=1,
        )
        query = (
            select(Source)
            .outerjoin(SourceSyncState, SourceSyncState.source_id == Source.source_id)
            .where(Source.provider == provider.value, Source.is_active.is_(True))
            .order_by(
                needs_attention,
                SourceSyncState.last_synced_at.is_(None).desc(),
                SourceSyncState.last_synced_at.asc(),
                Source.created_at.asc(),
                Source.external_id.asc(),
            )
            .limit(limit)
        )
        async with self._db.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
