"""Quota ledger and guard.

Every request sent to a provider appends one ``QuotaUsageRecord``; daily
usage is always derived by summing the records of a UTC day, never kept in a
counter. The guard (``can_spend``) reads that sum and fails closed: if the
ledger cannot be read, the answer is "no".

Local tracking approximates the provider's own accounting. Concurrent
check-then-spend is not serialized, so a tick may overshoot the real quota by
at most the cost of the calls already in flight.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import delete, select

from ..db.connection import DatabaseConnection
from ..db.models import QuotaUsageRecord, utcnow
from ..errors import InvariantViolation
from ..logging import get_logger
from .policy import Operation, Provider, QuotaPolicy, WarningLevel

logger = get_logger(__name__)

DEFAULT_RETENTION_DAYS = 30
TREND_DAYS = 7


@dataclass
class OperationUsage:
    """Requests and units for one operation within a day."""

    requests: int = 0
    units: int = 0


@dataclass
class DailyUsage:
    """Aggregate of one provider's usage over a UTC day."""

    provider: Provider
    day: date
    total_units: int
    total_requests: int
    error_count: int
    usage_percentage: float
    warning_level: WarningLevel
    operation_breakdown: dict[str, OperationUsage] = field(default_factory=dict)


@dataclass
class QuotaCheck:
    """Answer to "can N units be spent now?"."""

    can_use: bool
    current_usage: int
    remaining_quota: int
    usage_percentage: float
    hours_until_reset: float


@dataclass
class QuotaSummary:
    """Read-only dashboard view of today's quota."""

    provider: Provider
    daily_usage: int
    daily_limit: int
    usage_percentage: float
    remaining_quota: int
    warning_level: WarningLevel
    error_count: int
    total_requests: int
    can_use: bool


@dataclass
class DailyTrendPoint:
    """One day of the weekly trend."""

    day: date
    total_units: int
    total_requests: int
    error_count: int
    usage_percentage: float


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` range covering a UTC day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def hours_until_midnight(now: datetime) -> float:
    """Hours from ``now`` to the next UTC midnight."""
    _, next_midnight = day_bounds(now.date())
    return (next_midnight - now).total_seconds() / 3600


class QuotaLedger:
    """Append-only quota ledger with threshold policy and spend guard."""

    def __init__(
        self,
        db: DatabaseConnection,
        policies: Mapping[Provider, QuotaPolicy],
        clock: Callable[[], datetime] = utcnow,
        threshold_checks: bool = True,
    ):
        """Initialize the ledger.

        Args:
            db: Database connection used for every ledger read and write.
            policies: Quota policy per provider, resolved at startup.
            clock: Returns the current time as naive UTC.
            threshold_checks: Schedule a background threshold check after
                each recorded call.
        """
        self._db = db
        self._policies = dict(policies)
        self._clock = clock
        self._threshold_checks = threshold_checks
        self._pending: set[asyncio.Task[None]] = set()

    def policy(self, provider: Provider) -> QuotaPolicy:
        """Return the policy for a provider."""
        try:
            return self._policies[provider]
        except KeyError:
            raise InvariantViolation(f"No quota policy configured for {provider}") from None

    def cost_of(self, provider: Provider, operation: Operation) -> int:
        """Configured unit cost of an operation."""
        return self.policy(provider).cost_of(operation)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        provider: Provider,
        operation: Operation,
        units: int | None = None,
        *,
        request_details: dict[str, Any] | None = None,
        response_status: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Append a usage record for one call attempt.

        Storage failures are logged and swallowed so that bookkeeping never
        aborts the caller's main flow. A non-positive explicit cost is a
        programming error and raises.
        """
        if units is not None and units <= 0:
            raise InvariantViolation(f"Quota units must be positive, got {units}")
        cost = units if units is not None else self.cost_of(provider, operation)
        if cost <= 0:
            raise InvariantViolation(f"Quota cost of {operation.value} must be positive, got {cost}")

        try:
            async with self._db.session() as session:
                session.add(
                    QuotaUsageRecord(
                        provider=provider.value,
                        operation=operation.value,
                        units=cost,
                        request_details=json.dumps(request_details, default=str) if request_details else None,
                        response_status=response_status,
                        error_message=error_message or None,
                        created_at=self._clock(),
                    )
                )
        except Exception as e:
            logger.error(
                "Failed to record quota usage",
                provider=provider.value,
                operation=operation.value,
                units=cost,
                error=str(e),
            )
            return

        logger.debug(
            "Quota usage recorded",
            provider=provider.value,
            operation=operation.value,
            units=cost,
            response_status=response_status,
            has_error=bool(error_message),
        )

        if self._threshold_checks:
            self._schedule_threshold_check(provider)

    def _schedule_threshold_check(self, provider: Provider) -> None:
        task = asyncio.create_task(self._check_thresholds(provider))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _check_thresholds(self, provider: Provider) -> None:
        """Log a warning or critical signal for today's usage."""
        try:
            usage = await self.daily_usage(provider)
        except Exception as e:
            logger.error("Failed to check quota thresholds", provider=provider.value, error=str(e))
            return

        if usage.warning_level == WarningLevel.SAFE:
            return

        policy = self.policy(provider)
        log = logger.error if usage.warning_level == WarningLevel.CRITICAL else logger.warning
        log(
            "Quota usage exceeded threshold",
            provider=provider.value,
            warning_level=usage.warning_level.value,
            usage_percentage=round(usage.usage_percentage, 1),
            total_units=usage.total_units,
            daily_limit=policy.daily_limit,
            remaining_units=policy.daily_limit - usage.total_units,
        )

    async def wait_for_pending_checks(self) -> None:
        """Wait for scheduled threshold checks to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def daily_usage(self, provider: Provider, day: date | None = None) -> DailyUsage:
        """Aggregate all records of a provider for one UTC day."""
        target = day or self._clock().date()
        start, end = day_bounds(target)
        policy = self.policy(provider)

        async with self._db.session() as session:
            result = await session.execute(
                select(
                    QuotaUsageRecord.operation,
                    QuotaUsageRecord.units,
                    QuotaUsageRecord.error_message,
                ).where(
                    QuotaUsageRecord.provider == provider.value,
                    QuotaUsageRecord.created_at >= start,
                    QuotaUsageRecord.created_at < end,
                )
            )
            rows = result.all()

        breakdown: dict[str, OperationUsage] = {}
        total_units = 0
        error_count = 0
        for operation, units, error_message in rows:
            total_units += units
            if error_message:
                error_count += 1
            entry = breakdown.setdefault(operation, OperationUsage())
            entry.requests += 1
            entry.units += units

        usage_percentage = total_units / policy.daily_limit * 100
        return DailyUsage(
            provider=provider,
            day=target,
            total_units=total_units,
            total_requests=len(rows),
            error_count=error_count,
            usage_percentage=usage_percentage,
            warning_level=policy.classify(usage_percentage),
            operation_breakdown=breakdown,
        )

    async def can_spend(self, provider: Provider, required_units: int = 1) -> QuotaCheck:
        """Decide whether ``required_units`` may be spent now.

        Fails closed: any error while reading the ledger yields ``can_use=False``.
        """
        if required_units < 0:
            raise InvariantViolation(f"Required units must be non-negative, got {required_units}")

        try:
            now = self._clock()
            usage = await self.daily_usage(provider, now.date())
            remaining = self.policy(provider).daily_limit - usage.total_units
            check = QuotaCheck(
                can_use=remaining >= required_units,
                current_usage=usage.total_units,
                remaining_quota=remaining,
                usage_percentage=usage.usage_percentage,
                hours_until_reset=hours_until_midnight(now),
            )
        except Exception as e:
            logger.error(
                "Failed to check quota availability",
                provider=provider.value,
                required_units=required_units,
                error=str(e),
            )
            return QuotaCheck(
                can_use=False,
                current_usage=0,
                remaining_quota=0,
                usage_percentage=100.0,
                hours_until_reset=24.0,
            )

        logger.debug(
            "Quota availability checked",
            provider=provider.value,
            required_units=required_units,
            can_use=check.can_use,
            remaining_quota=check.remaining_quota,
        )
        return check

    async def quota_summary(self, provider: Provider) -> QuotaSummary:
        """Today's usage in dashboard form."""
        usage = await self.daily_usage(provider)
        daily_limit = self.policy(provider).daily_limit
        return QuotaSummary(
            provider=provider,
            daily_usage=usage.total_units,
            daily_limit=daily_limit,
            usage_percentage=usage.usage_percentage,
            remaining_quota=daily_limit - usage.total_units,
            warning_level=usage.warning_level,
            error_count=usage.error_count,
            total_requests=usage.total_requests,
            can_use=usage.warning_level != WarningLevel.CRITICAL,
        )

    async def weekly_trend(self, provider: Provider) -> list[DailyTrendPoint]:
        """Per-day totals for the last seven UTC days, oldest first.

        Days without any record are omitted.
        """
        now = self._clock()
        start, _ = day_bounds(now.date() - timedelta(days=TREND_DAYS - 1))
        daily_limit = self.policy(provider).daily_limit

        async with self._db.session() as session:
            result = await session.execute(
                select(
                    QuotaUsageRecord.created_at,
                    QuotaUsageRecord.units,
                    QuotaUsageRecord.error_message,
                ).where(
                    QuotaUsageRecord.provider == provider.value,
                    QuotaUsageRecord.created_at >= start,
                )
            )
            rows = result.all()

        points: dict[date, DailyTrendPoint] = {}
        for created_at, units, error_message in rows:
            day = created_at.date()
            point = points.setdefault(
                day,
                DailyTrendPoint(day=day, total_units=0, total_requests=0, error_count=0, usage_percentage=0.0),
            )
            point.total_units += units
            point.total_requests += 1
            if error_message:
                point.error_count += 1

        for point in points.values():
            point.usage_percentage = point.total_units / daily_limit * 100

        return [points[day] for day in sorted(points)]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def prune(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """Delete records older than the retention window.

        Returns:
            Number of deleted records.
        """
        cutoff = self._clock() - timedelta(days=retention_days)
        async with self._db.session() as session:
            result = await session.execute(
                delete(QuotaUsageRecord).where(QuotaUsageRecord.created_at < cutoff)
            )
            deleted = result.rowcount or 0

        logger.info(
            "Old quota records pruned",
            deleted_count=deleted,
            cutoff=cutoff.isoformat(),
        )
        return deleted
