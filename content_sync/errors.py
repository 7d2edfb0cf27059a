"""Exception hierarchy for the sync engine.

The orchestrator and scheduler catch at different levels of this tree:
``QuotaExceededError`` stops scheduling without blaming the source, any other
``ContentSyncError`` fails the source, and ``InvariantViolation`` is a
programming error that is allowed to propagate.
"""


class ContentSyncError(Exception):
    """Base class for all sync engine errors."""


class ConfigurationError(ContentSyncError):
    """Raised when the engine is constructed with unusable settings."""


class QuotaExceededError(ContentSyncError):
    """Local or provider-reported quota exhaustion."""

    def __init__(
        self,
        message: str = "Provider quota exhausted",
        *,
        provider: str | None = None,
        required_units: int | None = None,
        remaining_quota: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.required_units = required_units
        self.remaining_quota = remaining_quota


class ProviderError(ContentSyncError):
    """Base class for failures reported by or on the way to a provider."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Network failure, timeout or 5xx from the provider."""


class ProviderValidationError(ProviderError):
    """Provider response did not match the expected schema."""


class SourceNotFoundError(ContentSyncError):
    """The requested source does not exist."""


class PersistenceError(ContentSyncError):
    """A storage write failed; nothing from the batch was committed."""


class InvariantViolation(ContentSyncError):
    """A programming-level invariant was broken."""
