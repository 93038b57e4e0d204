"""Twilio Lookup v2 phone validation.

Uses the twilio SDK's line type intelligence to reject numbers Twilio does
not recognise. SDK calls are blocking and run in the default executor.
"""

import asyncio
import logging
import re
from typing import Any, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client as TwilioClient

from ..enrichment.errors import ProviderHTTPError, ProviderNetworkError
from ..enrichment.waterfall import ContactValidator, ValidationResult

logger = logging.getLogger(__name__)

# Shorter numbers cannot be dialled and are rejected without a lookup
MIN_PHONE_DIGITS = 10

VALID_LINE_TYPES = frozenset({"mobile", "landline", "fixedVoip", "nonFixedVoip"})


def clean_phone(phone: str) -> str:
    """Strip everything except digits and a leading plus."""
    return re.sub(r"[^0-9+]", "", phone)


class TwilioPhoneValidator(ContactValidator):
    """Clears phone numbers Twilio Lookup reports as invalid.

    Attributes:
        account_sid: Twilio account SID.
        auth_token: Twilio auth token.
    """

    name = "twilio"
    field_name = "phone"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        client: Optional[TwilioClient] = None,
    ) -> None:
        if not account_sid or not auth_token:
            raise ValueError(
                "Twilio credentials required. Set TWILIO_ACCOUNT_SID and "
                "TWILIO_AUTH_TOKEN environment variables or pass them as parameters."
            )
        self.account_sid = account_sid
        self.auth_token = auth_token
        self._client = client or TwilioClient(account_sid, auth_token)
        logger.info(
            "TwilioPhoneValidator initialized (account=%s...)", account_sid[:8]
        )

    def _lookup_sync(self, phone: str) -> Any:
        return self._client.lookups.v2.phone_numbers(phone).fetch(
            fields="line_type_intelligence"
        )

    async def validate(self, value: Any) -> ValidationResult:
        phone = clean_phone(str(value))
        if len(phone.lstrip("+")) < MIN_PHONE_DIGITS:
            return ValidationResult(valid=False, status="too_short")

        loop = asyncio.get_running_loop()
        try:
            lookup = await loop.run_in_executor(None, self._lookup_sync, phone)
        except TwilioRestException as e:
            if e.status == 404:
                return ValidationResult(valid=False, status="not_found")
            raise ProviderHTTPError(e.status, str(e.msg), provider=self.name) from e
        except OSError as e:
            raise ProviderNetworkError(f"Twilio Lookup failed: {e}", provider=self.name) from e

        line_info = getattr(lookup, "line_type_intelligence", None) or {}
        line_type = line_info.get("type")
        valid = getattr(lookup, "valid", None) is not False and (
            not line_type or line_type in VALID_LINE_TYPES
        )
        return ValidationResult(
            valid=valid,
            status=line_type or ("valid" if valid else "invalid"),
            details={"line_type": line_type, "carrier": line_info.get("carrier_name")},
        )
