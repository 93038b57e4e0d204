"""Shared HTTP plumbing for provider and validator clients.

Requests go through a ``requests.Session`` and run in the default executor,
so a slow provider never blocks the event loop. Transport failures are
mapped onto the provider error hierarchy the waterfall retry logic
understands.
"""

import asyncio
import functools
import logging
from typing import Any, Optional

import requests

from ..enrichment.errors import (
    ProviderError,
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderTimeoutError,
)

logger = logging.getLogger(__name__)

# Constants
DEFAULT_TIMEOUT_SECONDS = 30.0
USER_AGENT = "Brivano-Enrichment/1.0"


class HTTPClientMixin:
    """Session handling and error mapping for JSON HTTP APIs.

    Subclasses set ``name`` and ``base_url`` and call ``_request``.

    Attributes:
        api_key: Provider API key.
        timeout_seconds: Per-request timeout.
        session: Requests session for connection pooling.
    """

    name: str = "http"
    base_url: str = ""

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key:
            raise ValueError(f"{self.name} API key required")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        })

    def _request_sync(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Make one blocking request and decode the JSON body.

        Raises:
            ProviderHTTPError: On a 4xx or 5xx response.
            ProviderTimeoutError: If the request times out.
            ProviderNetworkError: If the provider cannot be reached.
            ProviderError: If the body is not valid JSON.
        """
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout_seconds)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            raise ProviderTimeoutError(
                f"Request timed out after {self.timeout_seconds}s", provider=self.name
            ) from e
        except requests.RequestException as e:
            raise ProviderNetworkError(f"Request failed: {e}", provider=self.name) from e

        if response.status_code >= 400:
            body = (response.text or "")[:200]
            raise ProviderHTTPError(
                response.status_code,
                f"API error {response.status_code}: {body}",
                provider=self.name,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Response was not valid JSON", provider=self.name) from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Run ``_request_sync`` in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(self._request_sync, method, path, **kwargs),
        )

    async def close(self) -> None:
        """Close the requests session and release resources."""
        self.session.close()
