"""
Failure Classification: Error Taxonomy for the Catalog Sync Core.

Every failure that can leave the sync core is a KnownError carrying a
FailureKind. The HTTP layer turns these into ApiResponse envelopes.

Propagation:
- Provider clients absorb transient errors and retry within their budget
- The orchestrator absorbs single-provider failures
- Integrity errors (DuplicateKeyError, OwnershipValidationError,
  ReconciliationError) ALWAYS propagate to the caller

Local admission-control exhaustion (AdmissionDeadlineError, defined in
longbox.sync.rate_limiter) and provider-side throttling
(UpstreamRateLimitedError) share the RateLimitedError base so callers can
catch either, or tell them apart.
"""

from enum import Enum

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Classification of failure types."""

    # Input validation failures
    VALIDATION_FAILED = "validation_failed"

    # Resource failures
    NOT_FOUND = "not_found"

    # Admission and upstream failures
    RATE_LIMITED = "rate_limited"
    ADMISSION_DEADLINE = "admission_deadline"
    SERVICE_UNAVAILABLE = "service_unavailable"
    TIMEOUT = "timeout"
    ALL_PROVIDERS_UNAVAILABLE = "all_providers_unavailable"

    # Integrity violations
    DUPLICATE_KEY = "duplicate_key"
    INVARIANT_VIOLATION = "invariant_violation"


class OutcomeType(str, Enum):
    """High-level outcome classification."""

    KNOWN_FAILURE = "known_failure"


class FailureDetail(BaseModel):
    """Detailed information about a failure."""

    kind: FailureKind = Field(
        ...,
        description="Classification of the failure",
    )
    message: str = Field(
        ...,
        description="User-appropriate explanation of what went wrong",
    )
    detail: str | None = Field(
        default=None,
        description="Additional technical detail (optional)",
    )
    suggestion: str | None = Field(
        default=None,
        description="Suggested action for the user",
    )


class ApiResponse(BaseModel):
    """Error envelope returned for every KnownError."""

    outcome: OutcomeType = Field(
        ...,
        description="High-level classification of the result",
    )
    failure: FailureDetail = Field(
        ...,
        description="What went wrong",
    )

    @classmethod
    def known_failure(
        cls,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
    ) -> "ApiResponse":
        """Create a known failure response."""
        return cls(
            outcome=OutcomeType.KNOWN_FAILURE,
            failure=FailureDetail(
                kind=kind,
                message=message,
                detail=detail,
                suggestion=suggestion,
            ),
        )


class KnownError(Exception):
    """
    Base class for exceptions that represent known, explainable failures.

    Subclass this for errors where the system knows exactly what went wrong.
    """

    def __init__(
        self,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        suggestion: str | None = None,
        status_code: int = 400,
    ):
        self.kind = kind
        self.message = message
        self.detail = detail
        self.suggestion = suggestion
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ApiResponse:
        """Convert to an ApiResponse."""
        return ApiResponse.known_failure(
            kind=self.kind,
            message=self.message,
            detail=self.detail,
            suggestion=self.suggestion,
        )


# =============================================================================
# PROVIDER FAILURES
# =============================================================================


class ProviderError(KnownError):
    """A failure attributed to one catalog provider."""

    def __init__(
        self,
        provider_id: str,
        kind: FailureKind,
        message: str,
        detail: str | None = None,
        status_code: int = 502,
    ):
        self.provider_id = provider_id
        super().__init__(
            kind=kind,
            message=message,
            detail=detail,
            status_code=status_code,
        )


class RateLimitedError(ProviderError):
    """Base for both local admission exhaustion and upstream throttling."""


class UpstreamRateLimitedError(RateLimitedError):
    """The provider itself throttled us (HTTP 420/429)."""

    def __init__(self, provider_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        detail = f"retry_after={retry_after}s" if retry_after is not None else None
        super().__init__(
            provider_id,
            kind=FailureKind.RATE_LIMITED,
            message=f"{provider_id} is throttling requests.",
            detail=detail,
            status_code=429,
        )


class ProviderNotFoundError(ProviderError):
    """The provider has no record for the requested issue. Never retried."""

    def __init__(self, provider_id: str, detail: str | None = None):
        super().__init__(
            provider_id,
            kind=FailureKind.NOT_FOUND,
            message=f"{provider_id} has no record for this issue.",
            detail=detail,
            status_code=404,
        )


class ProviderUnavailableError(ProviderError):
    """The provider failed in a way that may succeed on retry."""

    def __init__(self, provider_id: str, detail: str | None = None):
        super().__init__(
            provider_id,
            kind=FailureKind.SERVICE_UNAVAILABLE,
            message=f"{provider_id} is unavailable.",
            detail=detail,
            status_code=503,
        )


class ProviderTimeoutError(ProviderError):
    """The provider did not answer before its call or orchestration deadline."""

    def __init__(self, provider_id: str, seconds: float):
        self.seconds = seconds
        super().__init__(
            provider_id,
            kind=FailureKind.TIMEOUT,
            message=f"{provider_id} did not respond in time.",
            detail=f"deadline={seconds}s",
            status_code=504,
        )


class AllProvidersUnavailableError(KnownError):
    """
    Every configured provider failed for one fetch.

    Surfaced to callers as "no data available". Carries the per-provider
    errors for diagnostics.
    """

    def __init__(self, series_key: str, issue_number: str, errors: list[ProviderError]):
        self.series_key = series_key
        self.issue_number = issue_number
        self.errors = errors
        summary = ", ".join(f"{e.provider_id}={e.kind.value}" for e in errors)
        super().__init__(
            kind=FailureKind.ALL_PROVIDERS_UNAVAILABLE,
            message="No catalog data is available for this issue right now.",
            detail=f"{series_key} #{issue_number}: {summary}",
            suggestion="Try again later.",
            status_code=503,
        )


class IssueNotFoundError(KnownError):
    """Every provider answered NotFound: the issue does not exist upstream."""

    def __init__(self, series_key: str, issue_number: str):
        self.series_key = series_key
        self.issue_number = issue_number
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message="No such issue exists in any catalog.",
            detail=f"{series_key} #{issue_number}",
            suggestion="Check the series and issue number.",
            status_code=404,
        )


# =============================================================================
# INTEGRITY FAILURES
# =============================================================================


class DuplicateKeyError(KnownError):
    """A mutation would violate a uniqueness invariant of the collection graph."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(
            kind=FailureKind.DUPLICATE_KEY,
            message=f"{entity} already exists.",
            detail=f"{entity} key={key!r}",
            status_code=409,
        )


class OwnershipValidationError(KnownError):
    """An ownership change violates the acquisition/disposal timestamp rules."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.VALIDATION_FAILED,
            message=message,
            detail=detail,
            status_code=422,
        )


class ReconciliationError(KnownError):
    """Provider records handed to one reconciliation describe different issues."""

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(
            kind=FailureKind.INVARIANT_VIOLATION,
            message=message,
            detail=detail,
            status_code=500,
        )


class CatalogLookupError(KnownError):
    """A read against the collection graph referenced something that does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(
            kind=FailureKind.NOT_FOUND,
            message=f"{entity} not found.",
            detail=f"{entity} key={key!r}",
            status_code=404,
        )
