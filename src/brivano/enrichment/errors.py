"""Provider error hierarchy for the enrichment waterfall."""

from typing import Optional


class ProviderError(Exception):
    """Base exception for enrichment provider failures."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderHTTPError(ProviderError):
    """Raised when a provider answers with a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by the provider.
    """

    def __init__(
        self,
        status_code: int,
        message: str = "",
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message or f"HTTP {status_code}", provider)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its timeout."""

    pass


class ProviderNetworkError(ProviderError):
    """Raised when a provider cannot be reached."""

    pass


class DefinitiveProviderError(ProviderError):
    """Raised when a provider failure must not be retried (4xx)."""

    def __init__(self, cause: ProviderError) -> None:
        super().__init__(str(cause), cause.provider)
        self.cause = cause


def is_retryable(error: Exception) -> bool:
    """Whether a provider failure is transient.

    Client errors are definitive; server errors, timeouts and network
    failures are retried.
    """
    if isinstance(error, DefinitiveProviderError):
        return False
    if isinstance(error, ProviderHTTPError):
        return not error.is_client_error
    return isinstance(error, (ProviderTimeoutError, ProviderNetworkError))
