"""Sync progress state machine.

::

    NEVER_SYNCED -> INITIAL_IN_PROGRESS -> ... -> INCREMENTAL -> INCREMENTAL ...
         any state -> FAILED -> (next tick) INITIAL_IN_PROGRESS | INCREMENTAL

The functions here mutate a ``SourceSyncState`` row in place and perform no
I/O; the orchestrator decides when the row is written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from ..db.models import SourceSyncState
from ..errors import InvariantViolation
from ..providers.base import PageRequest, ProviderPage, to_naive_utc


class SyncPhase(str, Enum):
    """Lifecycle phase of a source."""

    NEVER_SYNCED = "never_synced"
    INITIAL_IN_PROGRESS = "initial_in_progress"
    INCREMENTAL = "incremental"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncSnapshot:
    """Copy of the fields a run may change, taken before the run starts."""

    phase: str
    resume_cursor: str | None
    synced_count: int
    failed_count: int
    total_count: int | None
    initial_sync_completed: bool
    last_synced_at: datetime | None
    sync_started_at: datetime | None
    incremental_since: datetime | None
    last_error: str | None


@dataclass
class SyncProgress:
    """Read-only progress view of a source."""

    phase: SyncPhase
    percent_complete: float | None
    estimated_seconds_remaining: int | None
    synced_count: int
    failed_count: int
    total_count: int | None
    initial_sync_completed: bool
    last_synced_at: datetime | None
    last_error: str | None


def new_state(source_id) -> SourceSyncState:
    """A fresh NEVER_SYNCED row for a source."""
    return SourceSyncState(
        source_id=source_id,
        phase=SyncPhase.NEVER_SYNCED.value,
        resume_cursor=None,
        synced_count=0,
        failed_count=0,
        initial_sync_completed=False,
    )


def snapshot(state: SourceSyncState) -> SyncSnapshot:
    return SyncSnapshot(
        phase=state.phase,
        resume_cursor=state.resume_cursor,
        synced_count=state.synced_count,
        failed_count=state.failed_count,
        total_count=state.total_count,
        initial_sync_completed=state.initial_sync_completed,
        last_synced_at=state.last_synced_at,
        sync_started_at=state.sync_started_at,
        incremental_since=state.incremental_since,
        last_error=state.last_error,
    )


def restore(state: SourceSyncState, snap: SyncSnapshot) -> None:
    """Put the row back exactly as it was before the run."""
    state.phase = snap.phase
    state.resume_cursor = snap.resume_cursor
    state.synced_count = snap.synced_count
    state.failed_count = snap.failed_count
    state.total_count = snap.total_count
    state.initial_sync_completed = snap.initial_sync_completed
    state.last_synced_at = snap.last_synced_at
    state.sync_started_at = snap.sync_started_at
    state.incremental_since = snap.incremental_since
    state.last_error = snap.last_error


def is_initial_mode(state: SourceSyncState) -> bool:
    return not state.initial_sync_completed


def begin_run(state: SourceSyncState, now: datetime) -> None:
    """Mark the run as started so a crash mid-run is visible on the next tick."""
    if is_initial_mode(state):
        state.phase = SyncPhase.INITIAL_IN_PROGRESS.value
        if state.sync_started_at is None:
            state.sync_started_at = now
    else:
        state.phase = SyncPhase.INCREMENTAL.value


def plan_request(state: SourceSyncState, page_size: int) -> PageRequest:
    """Page request for the source's current mode."""
    if is_initial_mode(state):
        return PageRequest(max_results=page_size, page_token=state.resume_cursor)
    return PageRequest(max_results=page_size, published_after=state.incremental_since or state.last_synced_at)


def apply_page(
    state: SourceSyncState,
    page: ProviderPage,
    processed: int,
    now: datetime,
) -> None:
    """Commit a fully persisted page to the row.

    Completing the initial sync sets the incremental watermark to when the
    initial sync began, so items published while the backlog was being paged
    are picked up by the first incremental run. Afterwards the watermark
    follows the newest item seen.
    """
    if processed < 0:
        raise InvariantViolation(f"Processed count must be non-negative, got {processed}")

    state.synced_count += processed
    state.last_synced_at = now
    state.last_error = None

    if is_initial_mode(state):
        if page.total_results:
            state.total_count = page.total_results
        if page.next_page_token:
            state.phase = SyncPhase.INITIAL_IN_PROGRESS.value
            state.resume_cursor = page.next_page_token
        else:
            state.initial_sync_completed = True
            state.resume_cursor = None
            state.phase = SyncPhase.INCREMENTAL.value
            state.incremental_since = state.sync_started_at or now
    else:
        state.phase = SyncPhase.INCREMENTAL.value
        if page.items:
            newest = max(to_naive_utc(item.published_at) for item in page.items)
            if state.incremental_since is None or newest > state.incremental_since:
                state.incremental_since = newest

    check_invariants(state)


def apply_failure(state: SourceSyncState, message: str, unprocessed: int) -> None:
    """Record a failed run; cursor and watermark are left untouched."""
    state.phase = SyncPhase.FAILED.value
    state.last_error = message or "Unknown error"
    state.failed_count += max(unprocessed, 0)
    check_invariants(state)


def check_invariants(state: SourceSyncState) -> None:
    if state.initial_sync_completed and state.resume_cursor:
        raise InvariantViolation(f"Source {state.source_id} completed initial sync but kept a cursor")
    if state.phase == SyncPhase.FAILED.value and not state.last_error:
        raise InvariantViolation(f"Source {state.source_id} is FAILED without an error message")
    if state.phase == SyncPhase.INITIAL_IN_PROGRESS.value and state.initial_sync_completed:
        raise InvariantViolation(f"Source {state.source_id} is back in initial sync after completing it")


def progress_of(state: SourceSyncState, now: datetime) -> SyncProgress:
    """Progress view; percentage and ETA exist only during initial sync."""
    phase = SyncPhase(state.phase)
    percent: float | None = None
    eta: int | None = None

    if phase == SyncPhase.INITIAL_IN_PROGRESS and state.total_count:
        percent = min(state.synced_count / state.total_count * 100, 100.0)
        if state.sync_started_at is not None and 0 < percent < 100:
            elapsed = (now - state.sync_started_at).total_seconds()
            eta = round(elapsed / percent * 100 - elapsed)

    return SyncProgress(
        phase=phase,
        percent_complete=percent,
        estimated_seconds_remaining=eta,
        synced_count=state.synced_count,
        failed_count=state.failed_count,
        total_count=state.total_count,
        initial_sync_completed=state.initial_sync_completed,
        last_synced_at=state.last_synced_at,
        last_error=state.last_error,
    )
