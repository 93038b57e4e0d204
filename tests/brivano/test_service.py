"""Unit tests for the enrichment service.

Wires the entitlement engine, a waterfall of fake providers and the
in-memory recorder together to check the ordering of the entitlement
check, the waterfall run, persistence and the credit charge.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from brivano.entitlements import EntitlementEngine, InMemoryCreditStore, StaticTierResolver
from brivano.enrichment import (
    EnrichmentContext,
    EnrichmentProvider,
    EnrichmentService,
    InMemoryEnrichmentRecorder,
    LeadSnapshot,
    ProviderResult,
    RetryPolicy,
    WaterfallEnricher,
    WaterfallState,
)
from brivano.models import LeadStatus

NOW = datetime(2025, 6, 15, 12, 0)

FULL_CONTACT = {
    "full_name": "Jane Doe",
    "email": "jane@acmedental.com",
    "phone": "+15555550100",
}


class StaticProvider(EnrichmentProvider):
    def __init__(self, name, fields=None, error=None):
        self.name = name
        self.fields = fields or {}
        self.error = error
        self.domains: list[str] = []

    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        self.domains.append(context.domain)
        if self.error is not None:
            raise self.error
        return ProviderResult(fields=dict(self.fields))


def make_service(providers, tier="starter", store=None):
    store = store or InMemoryCreditStore()
    engine = EntitlementEngine(
        store,
        StaticTierResolver({"u-1": tier}),
        clock=lambda: NOW.replace(tzinfo=timezone.utc),
    )
    enricher = WaterfallEnricher(providers, RetryPolicy(base_delay=0), sleep=AsyncMock())
    recorder = InMemoryEnrichmentRecorder()
    service = EnrichmentService(engine, enricher, recorder, clock=lambda: NOW)
    return service, store, recorder


@pytest.mark.unit
class TestEnrich:
    """Tests for EnrichmentService.enrich."""

    @pytest.mark.asyncio
    async def test_successful_run_is_stored_and_charged(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, store, recorder = make_service([apollo])

        outcome = await service.enrich("u-1", "acmedental.com", lead_id="lead-1")

        assert outcome.allowed and outcome.billed
        assert outcome.result.terminal_state == WaterfallState.COMPLETE
        assert outcome.version == 1
        assert outcome.charge.new_consumed == 2
        assert len(recorder.runs) == 1
        assert store.usage[0]["reference_id"] == "lead-1"

    @pytest.mark.asyncio
    async def test_reused_idempotency_key_is_not_billed(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, store, _ = make_service([apollo])
        await service.engine.charge("u-1", "scrape", idempotency_key="req-1")

        outcome = await service.enrich("u-1", "acmedental.com", idempotency_key="req-1")

        assert outcome.billed is False
        assert outcome.charge.error == "idempotency_key_mismatch"
        assert len(store.usage) == 1

    @pytest.mark.asyncio
    async def test_lead_update_is_audited(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo])
        recorder.add_lead(LeadSnapshot(
            id="lead-1", name="Acme Dental", domain="acmedental.com",
            fields={"phone": "+15555550100"},
        ))

        outcome = await service.enrich("u-1", "acmedental.com", lead_id="lead-1")

        changed = {entry["field_name"]: entry for entry in recorder.audit_log}
        assert set(changed) == {"full_name", "email"}
        assert changed["email"]["table"] == "leads"
        assert changed["email"]["old_value"] is None
        assert changed["email"]["new_value"] == "jane@acmedental.com"
        assert outcome.run_id in changed["email"]["reason"]

    @pytest.mark.asyncio
    async def test_denied_user_triggers_no_provider(self):
        """Test that an unaffordable enrichment never reaches a provider."""
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo], tier="free")
        await service.engine.charge("u-1", "scrape", count=24)

        outcome = await service.enrich("u-1", "acmedental.com")

        assert outcome.allowed is False
        assert outcome.billed is False
        assert outcome.remaining == 1
        assert apollo.domains == []
        assert recorder.runs == []
        assert outcome.to_dict()["error"] == "insufficient_credits"

    @pytest.mark.asyncio
    async def test_exhausted_run_is_still_charged(self):
        apollo = StaticProvider("apollo", {"full_name": "Jane Doe"})
        service, _, _ = make_service([apollo])

        outcome = await service.enrich("u-1", "acmedental.com")

        assert outcome.result.terminal_state == WaterfallState.EXHAUSTED
        assert outcome.billed is True

    @pytest.mark.asyncio
    async def test_no_provider_invoked_is_not_charged(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, store, recorder = make_service([apollo])

        outcome = await service.enrich("u-1", "acmedental.com", known_fields=FULL_CONTACT)

        assert outcome.result.is_complete
        assert outcome.billed is False
        assert outcome.charge is None
        assert store.usage == []
        assert len(recorder.runs) == 1

    @pytest.mark.asyncio
    async def test_failed_run_is_neither_stored_nor_charged(self):
        service, store, recorder = make_service([])

        outcome = await service.enrich("u-1", "acmedental.com")

        assert outcome.allowed is True
        assert outcome.result.failed
        assert outcome.billed is False
        assert recorder.runs == []
        assert store.usage == []

    @pytest.mark.asyncio
    async def test_idempotent_request_is_charged_once(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, store, _ = make_service([apollo])

        first = await service.enrich("u-1", "acme.com", idempotency_key="req-1")
        second = await service.enrich("u-1", "acme.com", idempotency_key="req-1")

        assert first.billed and second.billed
        assert second.charge.replayed is True
        assert len(store.usage) == 1

    @pytest.mark.asyncio
    async def test_unconfirmed_charge_leaves_outcome_unbilled(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        store = InMemoryCreditStore()
        store.debit = AsyncMock(side_effect=RuntimeError("connection reset"))
        service, _, recorder = make_service([apollo], store=store)

        outcome = await service.enrich("u-1", "acme.com")

        assert outcome.billed is False
        assert outcome.charge.error == "storage_error"
        assert outcome.result.merged_fields["email"] == FULL_CONTACT["email"]
        assert len(recorder.runs) == 1

    @pytest.mark.asyncio
    async def test_lead_is_updated_and_versioned(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo])
        recorder.add_lead(LeadSnapshot(id="lead-1", name="Acme Dental", domain="acme.com"))

        await service.enrich("u-1", "acme.com", lead_id="lead-1")
        second = await service.enrich("u-1", "acme.com", lead_id="lead-1")

        lead = recorder.leads["lead-1"]
        assert second.version == 2
        assert lead.fields["email"] == FULL_CONTACT["email"]
        assert lead.providers_used == ["apollo"]
        assert lead.enriched_at is not None


@pytest.mark.unit
class TestReenrichStale:
    """Tests for EnrichmentService.reenrich_stale."""

    def add_leads(self, recorder):
        recorder.add_lead(LeadSnapshot(
            id="old", name="Old Dental", domain="old.com",
            enriched_at=NOW - timedelta(days=60), providers_used=["apollo"],
        ))
        recorder.add_lead(LeadSnapshot(
            id="older", name="Older Dental", domain="older.com",
            enriched_at=NOW - timedelta(days=90), providers_used=["hunter"],
        ))
        recorder.add_lead(LeadSnapshot(
            id="fresh", name="Fresh Dental", domain="fresh.com",
            enriched_at=NOW - timedelta(days=2), providers_used=["apollo"],
        ))
        recorder.add_lead(LeadSnapshot(
            id="lost", name="Lost Dental", domain="lost.com",
            status=LeadStatus.DISQUALIFIED,
            enriched_at=NOW - timedelta(days=90), providers_used=["apollo"],
        ))
        recorder.add_lead(LeadSnapshot(
            id="never", name="New Dental", domain="new.com",
        ))

    @pytest.mark.asyncio
    async def test_only_active_stale_leads_oldest_first(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, store, recorder = make_service([apollo])
        self.add_leads(recorder)

        summary = await service.reenrich_stale("u-1", threshold_days=30)

        assert summary.total_stale == 2
        assert summary.re_enriched == 2
        assert summary.errors == []
        assert apollo.domains == ["older.com", "old.com"]
        assert len(store.usage) == 2
        stale_entries = [
            entry for entry in recorder.audit_log if entry["field_name"] == "enrichment_data"
        ]
        assert [entry["record_id"] for entry in stale_entries] == ["older", "old"]
        assert stale_entries[0]["reason"] == "Auto re-enrichment (data was 30+ days old)"

    @pytest.mark.asyncio
    async def test_reenrichment_is_seeded_with_company_name(self):
        apollo = StaticProvider("apollo", {"email": "x@old.com"})
        service, _, recorder = make_service([apollo])
        self.add_leads(recorder)

        await service.reenrich_stale("u-1", threshold_days=30, max_leads=1)

        assert recorder.runs[0]["merged_fields"]["company_name"] == "Older Dental"
        assert recorder.runs[0]["version"] == 1

    @pytest.mark.asyncio
    async def test_explicit_lead_ids(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo])
        self.add_leads(recorder)

        summary = await service.reenrich_stale("u-1", lead_ids=["fresh", "missing"])

        assert summary.total_stale == 1
        assert apollo.domains == ["fresh.com"]

    @pytest.mark.asyncio
    async def test_stops_when_credits_run_out(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo], tier="free")
        self.add_leads(recorder)
        await service.engine.charge("u-1", "scrape", count=23)

        summary = await service.reenrich_stale("u-1", threshold_days=30)

        assert summary.re_enriched == 1
        assert summary.errors == ["Lead old: insufficient credits"]

    @pytest.mark.asyncio
    async def test_failure_on_one_lead_does_not_stop_the_pass(self):
        apollo = StaticProvider("apollo", FULL_CONTACT)
        service, _, recorder = make_service([apollo])
        self.add_leads(recorder)
        original = recorder.record_run

        async def flaky_record_run(user_id, domain, result, lead_id=None):
            if lead_id == "older":
                raise RuntimeError("disk full")
            return await original(user_id, domain, result, lead_id=lead_id)

        recorder.record_run = flaky_record_run

        summary = await service.reenrich_stale("u-1", threshold_days=30)

        assert summary.re_enriched == 1
        assert summary.errors == ["Lead older: disk full"]

    @pytest.mark.asyncio
    async def test_nothing_stale(self):
        service, _, _ = make_service([StaticProvider("apollo")])

        summary = await service.reenrich_stale("u-1")

        assert summary.to_dict() == {"total_stale": 0, "re_enriched": 0, "errors": []}
