"""Provider quota accounting."""

from .ledger import (
    DailyTrendPoint,
    DailyUsage,
    OperationUsage,
    QuotaCheck,
    QuotaLedger,
    QuotaSummary,
)
from .policy import (
    Operation,
    Provider,
    QuotaPolicy,
    WarningLevel,
    build_quota_policies,
    policy_from_settings,
)

__all__ = [
    "DailyTrendPoint",
    "DailyUsage",
    "Operation",
    "OperationUsage",
    "Provider",
    "QuotaCheck",
    "QuotaLedger",
    "QuotaPolicy",
    "QuotaSummary",
    "WarningLevel",
    "build_quota_policies",
    "policy_from_settings",
]
