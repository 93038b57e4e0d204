"""Hunter.io email lookup.

With a known contact name the email finder is tried first; otherwise, or
when it has nothing, the domain search supplies the most likely address and
the person behind it.
"""

import logging
from typing import Any, Optional

from ..enrichment.errors import ProviderHTTPError
from ..enrichment.waterfall import EnrichmentContext, EnrichmentProvider, ProviderResult
from .base import HTTPClientMixin

logger = logging.getLogger(__name__)

HUNTER_BASE_URL = "https://api.hunter.io/v2"
DOMAIN_SEARCH_LIMIT = 5


class HunterProvider(HTTPClientMixin, EnrichmentProvider):
    """Hunter.io ``email-finder`` and ``domain-search`` adapter."""

    name = "hunter"
    base_url = HUNTER_BASE_URL

    async def _find_email(self, domain: str, first_name: str, last_name: str) -> Optional[str]:
        try:
            data = await self._request(
                "GET",
                "/email-finder",
                params={
                    "domain": domain,
                    "first_name": first_name,
                    "last_name": last_name,
                    "api_key": self.api_key,
                },
            )
        except ProviderHTTPError as e:
            # Hunter answers 404 when it cannot derive an address
            if e.status_code == 404:
                return None
            raise
        return (data.get("data") or {}).get("email")

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        names = context.name_parts()
        if names:
            email = await self._find_email(context.domain, *names)
            if email:
                return ProviderResult(fields={"email": email})

        data = await self._request(
            "GET",
            "/domain-search",
            params={
                "domain": context.domain,
                "api_key": self.api_key,
                "limit": DOMAIN_SEARCH_LIMIT,
            },
        )
        emails = (data.get("data") or {}).get("emails") or []
        if not emails:
            logger.info("Hunter found no emails for %s", context.domain)
            return ProviderResult()

        best: dict[str, Any] = emails[0]
        fields: dict[str, Any] = {"email": best.get("value")}
        if best.get("first_name") and best.get("last_name"):
            fields["full_name"] = f"{best['first_name']} {best['last_name']}"
        fields["job_title"] = best.get("position")
        fields["linkedin_url"] = best.get("linkedin")
        fields["phone"] = best.get("phone_number")
        return ProviderResult(fields=fields)
