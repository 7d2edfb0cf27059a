"""Wiring of the sync engine from settings."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from sqlalchemy import text

from .config import Settings
from .db.connection import DatabaseConnection
from .db.models import utcnow
from .errors import ConfigurationError
from .logging import get_logger
from .providers.base import ContentMapper, ProviderClient
from .providers.youtube import YouTubeClient
from .providers.youtube_mapper import YouTubeContentMapper
from .quota.ledger import QuotaLedger
from .quota.policy import Provider, build_quota_policies
from .sync.orchestrator import SyncOrchestrator
from .sync.pipeline import ContentPipeline
from .sync.scheduler import SyncScheduler
from .sync.store import SyncProgressStore
from .sync.ticker import Ticker

logger = get_logger(__name__)

MAPPERS: dict[Provider, Callable[[], ContentMapper]] = {
    Provider.YOUTUBE: YouTubeContentMapper,
}


def default_clients(settings: Settings) -> dict[Provider, ProviderClient]:
    """Provider clients that can be built from settings.

    YouTube sync is disabled, with a warning, when no API key is configured.
    """
    if not settings.youtube.api_key:
        logger.warning("YouTube API key not configured, YouTube sync disabled")
        return {}
    return {Provider.YOUTUBE: YouTubeClient(settings.youtube)}


class SyncService:
    """Owns every long-lived component of the sync engine.

    Nothing here is a module-level singleton; the API and the headless
    worker each build one instance and pass it around.
    """

    def __init__(
        self,
        settings: Settings,
        db: DatabaseConnection | None = None,
        clients: Mapping[Provider, ProviderClient] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.db = db or DatabaseConnection(
            url=settings.database.url,
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            echo=settings.database.echo,
        )
        self.clients = dict(clients) if clients is not None else default_clients(settings)

        self.ledger = QuotaLedger(self.db, build_quota_policies(settings.quota), clock=clock)
        self.store = SyncProgressStore(self.db, clock=clock)

        pipelines: dict[Provider, ContentPipeline] = {}
        for provider, client in self.clients.items():
            if provider not in MAPPERS:
                raise ConfigurationError(f"No content mapper for provider {provider.value}")
            pipelines[provider] = ContentPipeline(
                self.db,
                self.ledger,
                client,
                MAPPERS[provider](),
                page_cost=settings.sync.page_cost_units,
                clock=clock,
            )

        self.orchestrator = SyncOrchestrator(
            self.db,
            self.store,
            pipelines,
            page_size=settings.sync.page_size,
            lock_stale_after=timedelta(seconds=settings.sync.lock_stale_after_seconds),
            clock=clock,
        )
        self.scheduler = SyncScheduler(
            self.orchestrator,
            self.ledger,
            self.store,
            batch_size=settings.sync.batch_size,
            retention_days=settings.quota.retention_days,
        )
        self.sync_ticker = Ticker(
            "sync",
            self.scheduler.tick_all,
            interval_seconds=settings.sync.tick_interval_seconds,
            jitter_seconds=settings.sync.tick_jitter_seconds,
        )
        self.prune_ticker = Ticker(
            "quota-prune",
            self.scheduler.prune_quota_history,
            interval_seconds=settings.sync.prune_interval_seconds,
            run_immediately=True,
        )
        self._ticker_tasks: list[asyncio.Task[None]] = []

    @property
    def tickers(self) -> tuple[Ticker, Ticker]:
        return self.sync_ticker, self.prune_ticker

    async def start(self, start_tickers: bool | None = None) -> None:
        """Connect the database, create tables and optionally start the tickers."""
        await self.db.connect()
        await self.db.create_tables()
        logger.info("Database connection established and tables created")

        if start_tickers is None:
            start_tickers = self.settings.sync.enabled
        if start_tickers:
            self._ticker_tasks = [asyncio.create_task(ticker.run()) for ticker in self.tickers]

    async def stop(self) -> None:
        """Stop tickers, close provider clients and dispose of the engine."""
        for ticker in self.tickers:
            ticker.stop()
        if self._ticker_tasks:
            await asyncio.gather(*self._ticker_tasks, return_exceptions=True)
            self._ticker_tasks = []

        for client in self.clients.values():
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()

        await self.ledger.wait_for_pending_checks()
        await self.db.close()

    async def check_database(self) -> bool:
        """Whether a trivial query succeeds."""
        try:
            async with self.db.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
            return False
        return True
