"""Apollo.io people search, the first provider in the waterfall.

Searches people at the target domain and picks the best contact: the first
owner/CEO/founder/president if any, otherwise the first result.
"""

import logging
from typing import Any, Optional

from ..enrichment.waterfall import EnrichmentContext, EnrichmentProvider, ProviderResult
from .base import HTTPClientMixin

logger = logging.getLogger(__name__)

APOLLO_BASE_URL = "https://api.apollo.io/v1"
SEARCH_PAGE_SIZE = 5

# Titles that mark a decision maker, in no particular order
PRIORITY_TITLES = ("owner", "ceo", "founder", "president")


def pick_best_match(people: list[dict[str, Any]]) -> dict[str, Any]:
    """First decision maker by title, falling back to the first person."""
    for person in people:
        title = (person.get("title") or "").lower()
        if any(priority in title for priority in PRIORITY_TITLES):
            return person
    return people[0]


def _phone_number(phone: Any) -> Optional[str]:
    if isinstance(phone, dict):
        return (
            phone.get("number")
            or phone.get("sanitized_number")
            or phone.get("raw_number")
        )
    return str(phone) if phone else None


def _phone_of_type(phones: list[Any], phone_type: str) -> Optional[str]:
    for phone in phones:
        if isinstance(phone, dict) and phone.get("type") == phone_type:
            return _phone_number(phone)
    return None


def parse_person(person: dict[str, Any]) -> dict[str, Any]:
    """Map an Apollo person (with nested organization) onto record fields."""
    org = person.get("organization") or {}
    phones = person.get("phone_numbers") or []
    departments = person.get("departments") or []

    return {
        "full_name": person.get("name"),
        "email": person.get("email"),
        "phone": _phone_number(phones[0]) if phones else None,
        "mobile_phone": _phone_of_type(phones, "mobile"),
        "direct_phone": _phone_of_type(phones, "direct_dial"),
        "job_title": person.get("title"),
        "seniority_level": person.get("seniority"),
        "department": departments[0] if departments else None,
        "linkedin_url": person.get("linkedin_url"),
        "company_name": org.get("name"),
        "company_linkedin_url": org.get("linkedin_url"),
        "employee_count": org.get("estimated_num_employees"),
        "annual_revenue": org.get("annual_revenue"),
        "industry": org.get("industry"),
        "founded_year": org.get("founded_year"),
        "headquarters_city": org.get("city"),
        "headquarters_state": org.get("state"),
    }


class ApolloProvider(HTTPClientMixin, EnrichmentProvider):
    """Apollo.io ``mixed_people/search`` adapter.

    Example:
        >>> provider = ApolloProvider(api_key="...")
        >>> result = await provider.attempt(EnrichmentContext(domain="acmedental.com"))
        >>> result.fields["full_name"]
        'Jane Doe'
    """

    name = "apollo"
    base_url = APOLLO_BASE_URL

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        body: dict[str, Any] = {
            # Apollo's preferred auth method is the key in the body
            "api_key": self.api_key,
            "q_organization_domains": context.domain,
            "page": 1,
            "per_page": SEARCH_PAGE_SIZE,
        }
        if context.target_titles:
            body["person_titles"] = context.target_titles

        data = await self._request(
            "POST",
            "/mixed_people/search",
            json=body,
            headers={"Content-Type": "application/json", "Cache-Control": "no-cache"},
        )

        people = data.get("people") or []
        if not people:
            logger.info("Apollo found no people for %s", context.domain)
            return ProviderResult()

        return ProviderResult(fields=parse_person(pick_best_match(people)))
