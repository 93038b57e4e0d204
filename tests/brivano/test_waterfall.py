"""Unit tests for the waterfall enrichment sequencer.

Providers and validators are in-process fakes so the tests exercise the
sequencing rules: fill-only-if-missing merging, early stop on a complete
record, retries, cancellation and post-chain validation.
"""

import asyncio
import os
import sys
from typing import Any, Optional
from unittest.mock import AsyncMock

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from brivano.enrichment import (
    ContactValidator,
    EnrichmentContext,
    EnrichmentProvider,
    ProviderHTTPError,
    ProviderResult,
    RetryPolicy,
    ValidationResult,
    WaterfallEnricher,
    WaterfallState,
    is_complete,
    merge_missing,
    missing_fields,
)


class FakeProvider(EnrichmentProvider):
    """Provider returning canned fields, or raising queued errors first."""

    def __init__(self, name: str, fields: Optional[dict[str, Any]] = None, errors=()):
        self.name = name
        self.fields = fields or {}
        self.errors = list(errors)
        self.calls: list[EnrichmentContext] = []
        self.closed = False

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        self.calls.append(context)
        if self.errors:
            raise self.errors.pop(0)
        return ProviderResult(fields=dict(self.fields))

    async def close(self) -> None:
        self.closed = True


class FakeValidator(ContactValidator):
    def __init__(self, field_name: str, valid: bool = True, status: str = "valid", error=None):
        self.name = f"check_{field_name}"
        self.field_name = field_name
        self.valid = valid
        self.status = status
        self.error = error
        self.seen: list[Any] = []

    async def validate(self, value: Any) -> ValidationResult:
        self.seen.append(value)
        if self.error is not None:
            raise self.error
        return ValidationResult(valid=self.valid, status=self.status)


FULL_CONTACT = {
    "full_name": "Jane Doe",
    "email": "jane@acmedental.com",
    "phone": "+15555550100",
}


def make_enricher(providers, validators=(), max_attempts=3):
    return WaterfallEnricher(
        providers,
        RetryPolicy(max_attempts=max_attempts, base_delay=1.0),
        validators=validators,
        sleep=AsyncMock(),
    )


@pytest.mark.unit
class TestFieldRules:
    """Tests for completeness and merge rules."""

    def test_complete_needs_name_email_and_phone(self):
        assert is_complete(FULL_CONTACT)
        assert not is_complete({**FULL_CONTACT, "phone": None})
        assert not is_complete({**FULL_CONTACT, "email": "  "})

    def test_missing_lists_required_first(self):
        assert missing_fields({"email": "a@b.com"}) == [
            "full_name", "phone", "job_title", "linkedin_url", "company_name",
        ]

    def test_merge_never_overwrites(self):
        record = {"email": "known@acme.com", "phone": None}

        filled = merge_missing(record, {"email": "other@acme.com", "phone": "555"})

        assert filled == ["phone"]
        assert record["email"] == "known@acme.com"
        assert record["phone"] == "555"

    def test_merge_skips_blank_values(self):
        record = {"full_name": None}
        assert merge_missing(record, {"full_name": ""}) == []
        assert record["full_name"] is None


@pytest.mark.unit
class TestWaterfallSequencing:
    """Tests for provider ordering and stopping."""

    @pytest.mark.asyncio
    async def test_first_provider_completes_record(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)
        hunter = FakeProvider("hunter", {"email": "other@acmedental.com"})

        result = await make_enricher([apollo, hunter]).run("acmedental.com")

        assert result.terminal_state == WaterfallState.COMPLETE
        assert result.is_complete
        assert result.providers_used == ["apollo"]
        assert hunter.calls == []

    @pytest.mark.asyncio
    async def test_later_provider_only_fills_gaps(self):
        """Test that an earlier value survives a later provider's answer."""
        apollo = FakeProvider("apollo", {"full_name": "Jane Doe", "email": "jane@acme.com"})
        hunter = FakeProvider("hunter", {"email": "info@acme.com", "phone": "+15555550100"})

        result = await make_enricher([apollo, hunter]).run("acme.com")

        assert result.merged_fields["email"] == "jane@acme.com"
        assert result.merged_fields["phone"] == "+15555550100"
        assert result.step_log[1].fields_found == ["phone"]
        assert result.providers_used == ["apollo", "hunter"]
        assert result.terminal_state == WaterfallState.COMPLETE

    @pytest.mark.asyncio
    async def test_known_fields_are_never_overwritten(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)

        result = await make_enricher([apollo]).run(
            "acme.com", {"email": "owner@acme.com"}
        )

        assert result.merged_fields["email"] == "owner@acme.com"
        assert "email" not in result.step_log[0].fields_found

    @pytest.mark.asyncio
    async def test_already_complete_calls_no_provider(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)

        result = await make_enricher([apollo]).run("acme.com", FULL_CONTACT)

        assert result.terminal_state == WaterfallState.COMPLETE
        assert result.providers_used == []
        assert result.step_log == []
        assert apollo.calls == []

    @pytest.mark.asyncio
    async def test_incomplete_after_all_providers_is_exhausted(self):
        apollo = FakeProvider("apollo", {"full_name": "Jane Doe"})
        clearbit = FakeProvider("clearbit", {"company_name": "Acme Dental"})

        result = await make_enricher([apollo, clearbit]).run("acme.com")

        assert result.terminal_state == WaterfallState.EXHAUSTED
        assert not result.is_complete
        assert not result.failed
        assert result.merged_fields["company_name"] == "Acme Dental"
        assert result.step_log[-1].fields_missing == ["email", "phone", "job_title", "linkedin_url"]

    @pytest.mark.asyncio
    async def test_no_providers_fails(self):
        result = await make_enricher([]).run("acme.com")

        assert result.terminal_state == WaterfallState.FAILED
        assert result.error == "no_providers_configured"
        assert result.providers_used == []

    @pytest.mark.asyncio
    async def test_provider_sees_fields_found_so_far(self):
        apollo = FakeProvider("apollo", {"full_name": "Jane Doe"})
        hunter = FakeProvider("hunter", {"email": "jane@acme.com"})

        await make_enricher([apollo, hunter]).run("acme.com", target_titles=["Owner"])

        context = hunter.calls[0]
        assert context.full_name == "Jane Doe"
        assert context.name_parts() == ("Jane", "Doe")
        assert context.target_titles == ["Owner"]

    def test_single_word_name_has_no_parts(self):
        assert EnrichmentContext(domain="acme.com", known={"full_name": "Cher"}).name_parts() is None
        assert EnrichmentContext(domain="acme.com", known={"full_name": "  "}).name_parts() is None
        assert EnrichmentContext(domain="acme.com").name_parts() is None

    @pytest.mark.asyncio
    async def test_unknown_seed_keys_are_dropped(self):
        apollo = FakeProvider("apollo")

        result = await make_enricher([apollo]).run("acme.com", {"favourite_colour": "blue"})

        assert "favourite_colour" not in result.merged_fields


@pytest.mark.unit
class TestWaterfallFailures:
    """Tests for retries and failing providers."""

    @pytest.mark.asyncio
    async def test_server_errors_are_retried_within_the_step(self):
        apollo = FakeProvider(
            "apollo", FULL_CONTACT, errors=[ProviderHTTPError(500), ProviderHTTPError(500)]
        )
        enricher = make_enricher([apollo])

        result = await enricher.run("acme.com")

        assert result.terminal_state == WaterfallState.COMPLETE
        assert result.step_log[0].attempts == 3
        assert result.step_log[0].success
        assert [c.args[0] for c in enricher._sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_client_error_moves_to_next_provider(self):
        """Test a 4xx is recorded once and the chain continues."""
        apollo = FakeProvider("apollo", errors=[ProviderHTTPError(401, "invalid api key")])
        hunter = FakeProvider("hunter", FULL_CONTACT)

        result = await make_enricher([apollo, hunter]).run("acme.com")

        first = result.step_log[0]
        assert first.success is False
        assert first.attempts == 1
        assert first.error.startswith("definitive:")
        assert len(apollo.calls) == 1
        assert result.providers_used == ["apollo", "hunter"]
        assert result.terminal_state == WaterfallState.COMPLETE

    @pytest.mark.asyncio
    async def test_exhausted_retries_still_count_as_used(self):
        apollo = FakeProvider("apollo", errors=[ProviderHTTPError(503)] * 2)

        result = await make_enricher([apollo], max_attempts=2).run("acme.com")

        assert result.providers_used == ["apollo"]
        assert result.step_log[0].attempts == 2
        assert result.terminal_state == WaterfallState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_cancel_before_first_provider(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)
        cancel = asyncio.Event()
        cancel.set()

        result = await make_enricher([apollo]).run("acme.com", cancel_event=cancel)

        assert result.terminal_state == WaterfallState.FAILED
        assert result.error == "cancelled"
        assert apollo.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_providers_keeps_partial_log(self):
        cancel = asyncio.Event()

        class CancellingProvider(FakeProvider):
            async def attempt(self, context):
                cancel.set()
                return await super().attempt(context)

        apollo = CancellingProvider("apollo", {"full_name": "Jane Doe"})
        hunter = FakeProvider("hunter", FULL_CONTACT)

        result = await make_enricher([apollo, hunter]).run("acme.com", cancel_event=cancel)

        assert result.failed
        assert result.providers_used == ["apollo"]
        assert hunter.calls == []

    @pytest.mark.asyncio
    async def test_close_closes_every_provider(self):
        apollo, hunter = FakeProvider("apollo"), FakeProvider("hunter")
        await make_enricher([apollo, hunter]).close()
        assert apollo.closed and hunter.closed


@pytest.mark.unit
class TestValidators:
    """Tests for post-chain contact validation."""

    @pytest.mark.asyncio
    async def test_invalid_value_is_cleared(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)
        email_check = FakeValidator("email", valid=False, status="invalid")

        result = await make_enricher([apollo], [email_check]).run("acme.com")

        assert result.merged_fields["email"] is None
        assert result.terminal_state == WaterfallState.EXHAUSTED
        assert result.step_log[-1].error == "invalid: invalid"
        assert result.providers_used == ["apollo"]

    @pytest.mark.asyncio
    async def test_valid_value_is_kept(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)
        phone_check = FakeValidator("phone")

        result = await make_enricher([apollo], [phone_check]).run("acme.com")

        assert result.terminal_state == WaterfallState.COMPLETE
        assert phone_check.seen == ["+15555550100"]
        assert result.step_log[-1].fields_found == ["phone_validated"]

    @pytest.mark.asyncio
    async def test_validator_outage_keeps_value(self):
        apollo = FakeProvider("apollo", FULL_CONTACT)
        email_check = FakeValidator("email", error=ProviderHTTPError(400, "bad request"))

        result = await make_enricher([apollo], [email_check]).run("acme.com")

        assert result.merged_fields["email"] == FULL_CONTACT["email"]
        assert result.step_log[-1].error.startswith("validation_error:")
        assert result.terminal_state == WaterfallState.COMPLETE

    @pytest.mark.asyncio
    async def test_absent_value_is_not_validated(self):
        apollo = FakeProvider("apollo", {"full_name": "Jane Doe"})
        email_check = FakeValidator("email")

        result = await make_enricher([apollo], [email_check]).run("acme.com")

        assert email_check.seen == []
        assert len(result.step_log) == 1
