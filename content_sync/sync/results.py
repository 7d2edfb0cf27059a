"""Result types returned by the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    """Outcome of a best-effort operation."""

    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class Outcome(Generic[T]):
    """Result of a best-effort path that must not fail its caller.

    Distinguishes "nothing there" from "could not find out", which a bare
    default value would hide.
    """

    status: OutcomeStatus
    value: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        """Create a success outcome."""
        return cls(status=OutcomeStatus.OK, value=value)

    @classmethod
    def empty(cls) -> "Outcome[T]":
        """Create an outcome for a call that succeeded with nothing to report."""
        return cls(status=OutcomeStatus.EMPTY)

    @classmethod
    def failed(cls, error: Exception | str) -> "Outcome[T]":
        """Create a failed outcome."""
        return cls(status=OutcomeStatus.FAILED, error=str(error) or type(error).__name__)

    @property
    def is_ok(self) -> bool:
        return self.status == OutcomeStatus.OK

    @property
    def is_failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED


class RunStatus(str, Enum):
    """What happened to one source in one run."""

    SYNCED = "synced"
    SKIPPED = "skipped"
    QUOTA_EXHAUSTED = "quota_exhausted"
    FAILED = "failed"


@dataclass
class SyncRunResult:
    """Result of ``SyncOrchestrator.sync_one_source``."""

    source_id: UUID
    status: RunStatus
    items_processed: int = 0
    phase: str | None = None
    has_more: bool = False
    stats_refresh: Outcome[Any] | None = None
    message: str | None = None


@dataclass
class TickSummary:
    """Summary emitted at the end of a scheduler tick."""

    provider: str
    total: int = 0
    synced: int = 0
    failed: int = 0
    skipped: int = 0
    items_processed: int = 0
    quota_exhausted: bool = False
    skipped_reason: str | None = None
    failures: dict[str, str] = field(default_factory=dict)
