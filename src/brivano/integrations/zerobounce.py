"""ZeroBounce email validation."""

import logging
from typing import Any

from ..enrichment.waterfall import ContactValidator, ValidationResult
from .base import HTTPClientMixin

logger = logging.getLogger(__name__)

ZEROBOUNCE_BASE_URL = "https://api.zerobounce.net/v2"

# ZeroBounce statuses: valid, invalid, catch-all, unknown, spamtrap, abuse, do_not_mail
VALID_STATUSES = frozenset({"valid", "catch-all"})


class ZeroBounceEmailValidator(HTTPClientMixin, ContactValidator):
    """Clears emails ZeroBounce reports as undeliverable."""

    name = "zerobounce"
    field_name = "email"
    base_url = ZEROBOUNCE_BASE_URL

    async def validate(self, value: Any) -> ValidationResult:
        data = await self._request(
            "GET",
            "/validate",
            params={"api_key": self.api_key, "email": value},
        )
        status = (data.get("status") or "unknown").lower()
        return ValidationResult(
            valid=status in VALID_STATUSES,
            status=status,
            details={"sub_status": data.get("sub_status")},
        )
