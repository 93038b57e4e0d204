"""Clearbit company lookup, the last provider in the waterfall.

Supplies firmographics only: it never finds a contact's name, email or
phone, so it mainly fills the company fields of an exhausted run.
"""

import logging
import re
from typing import Any, Optional

from ..enrichment.waterfall import EnrichmentContext, EnrichmentProvider, ProviderResult
from .base import HTTPClientMixin

logger = logging.getLogger(__name__)

CLEARBIT_BASE_URL = "https://company.clearbit.com/v2"
LINKEDIN_COMPANY_URL = "https://www.linkedin.com/company/"


def parse_revenue(value: Any) -> Optional[int]:
    """Parse an estimated revenue string such as "$10M-$50M" to its digits.

    Returns None when there is nothing numeric to parse.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)
    digits = re.sub(r"[^0-9]", "", str(value))
    return int(digits) if digits else None


def parse_company(company: dict[str, Any]) -> dict[str, Any]:
    """Map a Clearbit company onto record fields."""
    category = company.get("category") or {}
    metrics = company.get("metrics") or {}
    geo = company.get("geo") or {}
    linkedin_handle = (company.get("linkedin") or {}).get("handle")

    return {
        "company_name": company.get("name"),
        "industry": category.get("industry"),
        "employee_count": metrics.get("employees"),
        "annual_revenue": parse_revenue(metrics.get("estimatedAnnualRevenue")),
        "company_linkedin_url": (
            f"{LINKEDIN_COMPANY_URL}{linkedin_handle}" if linkedin_handle else None
        ),
        "founded_year": company.get("foundedYear"),
        "headquarters_city": geo.get("city"),
        "headquarters_state": geo.get("stateCode"),
    }


class ClearbitProvider(HTTPClientMixin, EnrichmentProvider):
    """Clearbit ``companies/find`` adapter."""

    name = "clearbit"
    base_url = CLEARBIT_BASE_URL

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        company = await self._request(
            "GET",
            "/companies/find",
            params={"domain": context.domain},
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if not company:
            return ProviderResult()
        return ProviderResult(fields=parse_company(company))
