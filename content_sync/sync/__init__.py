"""Sync engine: state machine, ingestion pipeline, orchestration and scheduling."""

from .orchestrator import SyncOrchestrator
from .pipeline import ContentPipeline, IngestResult
from .results import Outcome, OutcomeStatus, RunStatus, SyncRunResult, TickSummary
from .scheduler import SyncScheduler
from .state import SyncPhase, SyncProgress, SyncSnapshot
from .store import SyncProgressStore
from .ticker import Ticker, run_tickers

__all__ = [
    "ContentPipeline",
    "IngestResult",
    "Outcome",
    "OutcomeStatus",
    "RunStatus",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncProgress",
    "SyncProgressStore",
    "SyncRunResult",
    "SyncScheduler",
    "SyncSnapshot",
    "Ticker",
    "TickSummary",
    "run_tickers",
]
