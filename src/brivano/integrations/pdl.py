"""People Data Labs person enrichment."""

import logging
from typing import Any

from ..enrichment.waterfall import EnrichmentContext, EnrichmentProvider, ProviderResult
from .base import HTTPClientMixin

logger = logging.getLogger(__name__)

PDL_BASE_URL = "https://api.peopledatalabs.com/v5"


def parse_person(person: dict[str, Any]) -> dict[str, Any]:
    """Map a PDL person onto record fields."""
    personal_emails = person.get("personal_emails") or []
    phones = person.get("phone_numbers") or []
    return {
        "full_name": person.get("full_name"),
        "email": person.get("work_email") or (personal_emails[0] if personal_emails else None),
        "phone": phones[0] if phones else None,
        "mobile_phone": person.get("mobile_phone"),
        "job_title": person.get("job_title"),
        "seniority_level": (person.get("job_title_levels") or [None])[0],
        "linkedin_url": person.get("linkedin_url"),
        "company_name": person.get("job_company_name"),
        "industry": person.get("job_company_industry"),
    }


class PeopleDataLabsProvider(HTTPClientMixin, EnrichmentProvider):
    """PDL ``person/enrich`` adapter keyed on email, name and company."""

    name = "pdl"
    base_url = PDL_BASE_URL

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        params = {"company": context.domain}
        if context.email:
            params["email"] = context.email
        if context.full_name:
            params["name"] = context.full_name

        data = await self._request(
            "GET",
            "/person/enrich",
            params=params,
            headers={"X-Api-Key": self.api_key},
        )

        if data.get("status") != 200 or not data.get("data"):
            logger.info("PDL has no match for %s", context.domain)
            return ProviderResult()
        return ProviderResult(fields=parse_person(data["data"]))
