"""Quota policy definitions.

Policies are plain values built once from settings at process start and handed
to the ledger; nothing in this module holds mutable state.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ..config import ProviderQuotaSettings, QuotaSettings
from ..errors import InvariantViolation


class Provider(str, Enum):
    """External content platforms."""

    YOUTUBE = "youtube"
    TWITTER = "twitter"


class Operation(str, Enum):
    """Billable provider operations."""

    CHANNEL_INFO = "channelInfo"
    CHANNEL_VIDEOS = "channelVideos"
    PLAYLIST_ITEMS = "playlistItems"
    VIDEO_DETAILS = "videoDetails"
    SEARCH = "search"
    USERS_BY_USERNAME = "users/by/username"
    USER_TWEETS = "users/:id/tweets"


class WarningLevel(str, Enum):
    """Classification of a day's usage against the policy thresholds."""

    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class QuotaPolicy:
    """Daily budget and threshold policy for one provider."""

    daily_limit: int
    warning_threshold: float = 0.8
    critical_threshold: float = 0.95
    operation_costs: Mapping[Operation, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.daily_limit <= 0:
            raise InvariantViolation(f"daily_limit must be positive, got {self.daily_limit}")
        if not 0 < self.warning_threshold < self.critical_threshold <= 1:
            raise InvariantViolation(
                "Thresholds must satisfy 0 < warning < critical <= 1, got "
                f"warning={self.warning_threshold} critical={self.critical_threshold}"
            )
        for operation, cost in self.operation_costs.items():
            if cost <= 0:
                raise InvariantViolation(f"Cost of {operation} must be positive, got {cost}")
        object.__setattr__(self, "operation_costs", MappingProxyType(dict(self.operation_costs)))

    def cost_of(self, operation: Operation) -> int:
        """Unit cost of an operation, 1 when not configured."""
        return self.operation_costs.get(operation, 1)

    def classify(self, usage_percentage: float) -> WarningLevel:
        """Map a usage percentage onto safe / warning / critical."""
        if usage_percentage >= self.critical_threshold * 100:
            return WarningLevel.CRITICAL
        if usage_percentage >= self.warning_threshold * 100:
            return WarningLevel.WARNING
        return WarningLevel.SAFE


def policy_from_settings(settings: ProviderQuotaSettings) -> QuotaPolicy:
    """Build a policy from one provider's settings block.

    Unknown operation names are rejected so a typo in configuration does not
    silently fall back to the default cost.
    """
    costs: dict[Operation, int] = {}
    for name, cost in settings.operation_costs.items():
        try:
            operation = Operation(name)
        except ValueError as e:
            raise InvariantViolation(f"Unknown quota operation in settings: {name!r}") from e
        costs[operation] = cost

    return QuotaPolicy(
        daily_limit=settings.daily_limit,
        warning_threshold=settings.warning_threshold,
        critical_threshold=settings.critical_threshold,
        operation_costs=costs,
    )


def build_quota_policies(settings: QuotaSettings) -> dict[Provider, QuotaPolicy]:
    """Resolve the per-provider policy table."""
    return {
        Provider.YOUTUBE: policy_from_settings(settings.youtube),
        Provider.TWITTER: policy_from_settings(settings.twitter),
    }
