"""Integration tests for the SQLAlchemy enrichment recorder."""

import os
import sys
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Ensure src is on sys.path so imports work correctly
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from brivano.enrichment import SqlEnrichmentRecorder, StepRecord, WaterfallResult, WaterfallState
from brivano.enrichment.fields import seed_record
from brivano.models import (
    AuditLogEntry,
    Base,
    EnrichmentRun,
    Lead,
    LeadStatus,
    create_test_engine,
)

NOW = datetime(2025, 6, 15, 12, 0)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'enrichment.db'}"


async def make_session_factory(url: str) -> async_sessionmaker[AsyncSession]:
    engine = create_test_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def make_result(**fields) -> WaterfallResult:
    merged = seed_record(fields)
    return WaterfallResult(
        merged_fields=merged,
        providers_used=["apollo", "hunter"],
        step_log=[
            StepRecord(provider="apollo", success=True, fields_found=["full_name"]),
            StepRecord(provider="hunter", success=False, error="definitive: HTTP 401"),
        ],
        terminal_state=WaterfallState.EXHAUSTED,
        is_complete=False,
    )


async def add_leads(factory, *leads: Lead) -> None:
    async with factory() as session:
        session.add_all(leads)
        await session.commit()


@pytest.mark.integration
class TestSqlEnrichmentRecorder:
    """Tests for SqlEnrichmentRecorder against SQLite."""

    @pytest.mark.asyncio
    async def test_run_without_lead(self, db_url):
        factory = await make_session_factory(db_url)
        recorder = SqlEnrichmentRecorder(factory)

        receipt = await recorder.record_run("u-1", "acme.com", make_result(full_name="Jane Doe"))

        assert receipt.version == 1
        async with factory() as session:
            run = await session.get(EnrichmentRun, receipt.run_id)
        assert run.terminal_state == "exhausted"
        assert run.providers_used == ["apollo", "hunter"]
        assert run.step_log[1]["error"] == "definitive: HTTP 401"
        assert run.merged_fields["full_name"] == "Jane Doe"

    @pytest.mark.asyncio
    async def test_run_updates_lead_and_bumps_version(self, db_url):
        factory = await make_session_factory(db_url)
        await add_leads(factory, Lead(id="lead-1", name="Acme Dental", domain="acme.com"))
        recorder = SqlEnrichmentRecorder(factory)

        first = await recorder.record_run(
            "u-1", "acme.com", make_result(full_name="Jane Doe"), lead_id="lead-1"
        )
        second = await recorder.record_run(
            "u-1", "acme.com", make_result(email="jane@acme.com"), lead_id="lead-1"
        )

        assert (first.version, second.version) == (1, 2)
        async with factory() as session:
            lead = await session.get(Lead, "lead-1")
        assert lead.full_name == "Jane Doe"
        assert lead.email == "jane@acme.com"
        assert lead.enrichment_providers_used == ["apollo", "hunter"]
        assert lead.enriched_at is not None

    @pytest.mark.asyncio
    async def test_lead_changes_are_audited(self, db_url):
        factory = await make_session_factory(db_url)
        await add_leads(
            factory,
            Lead(id="lead-1", name="Acme Dental", domain="acme.com", email="old@acme.com"),
        )
        recorder = SqlEnrichmentRecorder(factory)

        receipt = await recorder.record_run(
            "u-1", "acme.com",
            make_result(full_name="Jane Doe", email="jane@acme.com"),
            lead_id="lead-1",
        )

        async with factory() as session:
            entries = (
                await session.execute(
                    select(AuditLogEntry).order_by(AuditLogEntry.field_name)
                )
            ).scalars().all()
        assert [entry.field_name for entry in entries] == ["email", "full_name"]
        assert all(entry.table_name == "leads" for entry in entries)
        assert all(entry.record_id == "lead-1" for entry in entries)
        assert entries[0].old_value == "old@acme.com"
        assert entries[0].new_value == "jane@acme.com"
        assert entries[1].old_value is None
        assert receipt.run_id in entries[0].reason

    @pytest.mark.asyncio
    async def test_run_without_lead_writes_no_audit(self, db_url):
        factory = await make_session_factory(db_url)
        recorder = SqlEnrichmentRecorder(factory)

        await recorder.record_run("u-1", "acme.com", make_result(full_name="Jane Doe"))

        async with factory() as session:
            assert (await session.execute(select(AuditLogEntry))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_find_stale_leads(self, db_url):
        factory = await make_session_factory(db_url)
        await add_leads(
            factory,
            Lead(id="old", name="Old", domain="old.com",
                 enriched_at=NOW - timedelta(days=45), enrichment_providers_used=["apollo"]),
            Lead(id="older", name="Older", domain="older.com",
                 enriched_at=NOW - timedelta(days=120), enrichment_providers_used=["pdl"]),
            Lead(id="fresh", name="Fresh", domain="fresh.com",
                 enriched_at=NOW - timedelta(days=1), enrichment_providers_used=["apollo"]),
            Lead(id="won", name="Won", domain="won.com", status=LeadStatus.CONVERTED,
                 enriched_at=NOW - timedelta(days=120), enrichment_providers_used=["apollo"]),
            Lead(id="never", name="Never", domain="never.com"),
        )
        recorder = SqlEnrichmentRecorder(factory)

        stale = await recorder.find_stale_leads(NOW - timedelta(days=30), limit=10)
        limited = await recorder.find_stale_leads(NOW - timedelta(days=30), limit=1)

        assert [lead.id for lead in stale] == ["older", "old"]
        assert stale[0].providers_used == ["pdl"]
        assert [lead.id for lead in limited] == ["older"]

    @pytest.mark.asyncio
    async def test_get_leads_skips_unknown_ids(self, db_url):
        factory = await make_session_factory(db_url)
        await add_leads(
            factory,
            Lead(id="lead-1", name="Acme", domain="acme.com", email="jane@acme.com"),
        )
        recorder = SqlEnrichmentRecorder(factory)

        leads = await recorder.get_leads(["lead-1", "nope"])

        assert [lead.id for lead in leads] == ["lead-1"]
        assert leads[0].fields == {"email": "jane@acme.com"}
        assert await recorder.get_leads([]) == []

    @pytest.mark.asyncio
    async def test_append_audit(self, db_url):
        factory = await make_session_factory(db_url)
        recorder = SqlEnrichmentRecorder(factory)

        await recorder.append_audit(
            table_name="leads",
            record_id="lead-1",
            action="update",
            field_name="enrichment_data",
            old_value="stale",
            new_value="re-enriched",
            reason="Auto re-enrichment (data was 30+ days old)",
        )

        async with factory() as session:
            entry = (await session.execute(select(AuditLogEntry))).scalar_one()
        assert entry.to_dict()["new_value"] == "re-enriched"
