from __future__ import annotations


class LedgerLensError(Exception):
    """Base error for LedgerLens."""


class ProviderConfigError(LedgerLensError):
    """Missing or invalid provider configuration."""


class UpstreamOracleUnavailable(LedgerLensError):
    """Language model call failed, timed out, or was refused."""


class RateLimited(LedgerLensError):
    """Caller exhausted the request budget for the current window."""

    def __init__(self, retry_after_ms: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_ms = retry_after_ms


class NoTenantResolved(LedgerLensError):
    """Non-admin request arrived without a tenant."""


class TenantAccessDenied(LedgerLensError):
    """Caller is not a member of the requested tenant."""


class ClassificationAmbiguous(LedgerLensError):
    """Router output did not map onto a known intent."""


class QueryRejectedByPolicy(LedgerLensError):
    """Generated statement failed a validation predicate."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class QueryExecutionFailed(LedgerLensError):
    """Statement passed validation but the database rejected it."""

    def __init__(self, message: str, *, schema_error: bool = False) -> None:
        super().__init__(message)
        self.schema_error = schema_error


class EvaluatorRejected(LedgerLensError):
    """Arithmetic expression was unsafe or produced a non-finite result."""


class PersistenceFailed(LedgerLensError):
    """Background write failed; logged only."""


class DatabaseError(LedgerLensError):
    """Database layer failure."""
