"""Waterfall contact enrichment.

Provider chain sequencing, retry policy, field rules and the service that
wraps a run with an entitlement check, persistence and a credit charge.
"""

from .errors import (
    DefinitiveProviderError,
    ProviderError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
)
from .fields import (
    ENRICHMENT_FIELDS,
    NICE_TO_HAVE_FIELDS,
    REQUIRED_FIELDS,
    is_complete,
    merge_missing,
    missing_fields,
)
from .retry import RetryOutcome, RetryPolicy, call_with_retry
from .waterfall import (
    ContactValidator,
    EnrichmentContext,
    EnrichmentProvider,
    ProviderResult,
    StepRecord,
    ValidationResult,
    WaterfallEnricher,
    WaterfallResult,
    WaterfallState,
)
from .recorder import (
    EnrichmentRecorder,
    InMemoryEnrichmentRecorder,
    LeadSnapshot,
    RunReceipt,
    SqlEnrichmentRecorder,
)
from .service import EnrichmentOutcome, EnrichmentService, ReenrichmentSummary

__all__ = [
    # Errors
    "DefinitiveProviderError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderNetworkError",
    "ProviderTimeoutError",
    # Fields
    "ENRICHMENT_FIELDS",
    "NICE_TO_HAVE_FIELDS",
    "REQUIRED_FIELDS",
    "is_complete",
    "merge_missing",
    "missing_fields",
    # Retry
    "RetryOutcome",
    "RetryPolicy",
    "call_with_retry",
    # Waterfall
    "ContactValidator",
    "EnrichmentContext",
    "EnrichmentProvider",
    "ProviderResult",
    "StepRecord",
    "ValidationResult",
    "WaterfallEnricher",
    "WaterfallResult",
    "WaterfallState",
    # Persistence
    "EnrichmentRecorder",
    "InMemoryEnrichmentRecorder",
    "LeadSnapshot",
    "RunReceipt",
    "SqlEnrichmentRecorder",
    # Service
    "EnrichmentOutcome",
    "EnrichmentService",
    "ReenrichmentSummary",
]
