from longbox.models.catalog import (
    CATALOG_FIELDS,
    DISPOSED_STATES,
    HELD_STATES,
    Edition,
    FieldProvenance,
    Issue,
    IssueKey,
    OwnershipRecord,
    OwnershipState,
    Series,
    issue_sort_key,
    normalize_issue_number,
)
from longbox.models.completeness import CompletenessReport
from longbox.models.failure import (
    AllProvidersUnavailableError,
    ApiResponse,
    CatalogLookupError,
    DuplicateKeyError,
    FailureDetail,
    FailureKind,
    IssueNotFoundError,
    KnownError,
    OutcomeType,
    OwnershipValidationError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RateLimitedError,
    ReconciliationError,
    UpstreamRateLimitedError,
)
from longbox.models.provider_record import ProviderRecord

__all__ = [
    "CATALOG_FIELDS",
    "DISPOSED_STATES",
    "HELD_STATES",
    "AllProvidersUnavailableError",
    "ApiResponse",
    "CatalogLookupError",
    "CompletenessReport",
    "DuplicateKeyError",
    "Edition",
    "FailureDetail",
    "FailureKind",
    "FieldProvenance",
    "Issue",
    "IssueKey",
    "IssueNotFoundError",
    "KnownError",
    "OutcomeType",
    "OwnershipRecord",
    "OwnershipState",
    "OwnershipValidationError",
    "ProviderError",
    "ProviderNotFoundError",
    "ProviderRecord",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "RateLimitedError",
    "ReconciliationError",
    "Series",
    "UpstreamRateLimitedError",
    "issue_sort_key",
    "normalize_issue_number",
]
