"""Persistence for enrichment runs, lead updates and audit entries."""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import (
    ACTIVE_LEAD_STATUSES,
    AuditLogEntry,
    DatabaseManager,
    EnrichmentRun,
    Lead,
    LeadStatus,
)
from .fields import is_present
from .waterfall import WaterfallResult

logger = logging.getLogger(__name__)


@dataclass
class LeadSnapshot:
    """The parts of a lead the enrichment service needs."""

    id: str
    name: str
    domain: str
    status: LeadStatus = LeadStatus.NEW
    enriched_at: Optional[datetime] = None
    providers_used: Optional[list[str]] = None
    fields: dict[str, Any] = field(default_factory=dict)


@dataclass
class RunReceipt:
    """Identity of a persisted run."""

    run_id: str
    version: int


class EnrichmentRecorder(ABC):
    """Stores terminal waterfall runs and reads leads due for re-enrichment."""

    @abstractmethod
    async def record_run(
        self,
        user_id: str,
        domain: str,
        result: WaterfallResult,
        lead_id: Optional[str] = None,
    ) -> RunReceipt:
        """Insert a new run version and write its fields back onto the lead.

        Each lead field the run changes gets an audit entry in the same
        write as the run itself.
        """

    @abstractmethod
    async def find_stale_leads(self, cutoff: datetime, limit: int) -> list[LeadSnapshot]:
        """Active, previously enriched leads enriched before ``cutoff``, oldest first."""

    @abstractmethod
    async def get_leads(self, lead_ids: Sequence[str]) -> list[LeadSnapshot]:
        """Leads by id; unknown ids are skipped."""

    @abstractmethod
    async def append_audit(
        self,
        table_name: str,
        record_id: str,
        action: str,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        """Append an audit log entry."""


def _lead_updates(result: WaterfallResult) -> dict[str, Any]:
    return {
        name: result.merged_fields.get(name)
        for name in Lead.CONTACT_FIELDS
        if is_present(result.merged_fields.get(name))
    }


def _changed_fields(
    current: dict[str, Any], result: WaterfallResult
) -> list[tuple[str, Optional[str], str]]:
    """Contact fields the run changes on a lead, as (name, old, new)."""
    changes = []
    for name, value in _lead_updates(result).items():
        old = current.get(name)
        if old != value:
            changes.append((name, None if old is None else str(old), str(value)))
    return changes


def _run_reason(run_id: str, version: int) -> str:
    return f"Enrichment run {run_id} (version {version})"


class InMemoryEnrichmentRecorder(EnrichmentRecorder):
    """Process-local recorder for tests and CLI dry runs."""

    def __init__(self) -> None:
        self.leads: dict[str, LeadSnapshot] = {}
        self.runs: list[dict[str, Any]] = []
        self.audit_log: list[dict[str, Any]] = []

    def add_lead(self, lead: LeadSnapshot) -> LeadSnapshot:
        self.leads[lead.id] = lead
        return lead

    async def record_run(
        self,
        user_id: str,
        domain: str,
        result: WaterfallResult,
        lead_id: Optional[str] = None,
    ) -> RunReceipt:
        version = 1
        if lead_id is not None:
            version += sum(1 for run in self.runs if run["lead_id"] == lead_id)

        now = datetime.utcnow()
        run = {
            "id": str(uuid.uuid4()),
            "lead_id": lead_id,
            "user_id": user_id,
            "domain": domain,
            "version": version,
            "created_at": now,
            **result.to_dict(),
        }
        self.runs.append(run)

        lead = self.leads.get(lead_id) if lead_id else None
        if lead is not None:
            for name, old_value, new_value in _changed_fields(lead.fields, result):
                await self.append_audit(
                    table_name="leads",
                    record_id=lead.id,
                    action="update",
                    field_name=name,
                    old_value=old_value,
                    new_value=new_value,
                    reason=_run_reason(run["id"], version),
                )
            lead.fields.update(_lead_updates(result))
            lead.providers_used = list(result.providers_used)
            lead.enriched_at = now

        return RunReceipt(run_id=run["id"], version=version)

    async def find_stale_leads(self, cutoff: datetime, limit: int) -> list[LeadSnapshot]:
        stale = [
            lead for lead in self.leads.values()
            if lead.status in ACTIVE_LEAD_STATUSES
            and lead.providers_used is not None
            and lead.enriched_at is not None
            and lead.enriched_at < cutoff
        ]
        stale.sort(key=lambda lead: lead.enriched_at)
        return stale[:limit]

    async def get_leads(self, lead_ids: Sequence[str]) -> list[LeadSnapshot]:
        return [self.leads[lead_id] for lead_id in lead_ids if lead_id in self.leads]

    async def append_audit(
        self,
        table_name: str,
        record_id: str,
        action: str,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.audit_log.append({
            "table": table_name,
            "record_id": record_id,
            "action": action,
            "field_name": field_name,
            "old_value": old_value,
            "new_value": new_value,
            "reason": reason,
            "timestamp": datetime.utcnow(),
        })


def _snapshot(lead: Lead) -> LeadSnapshot:
    return LeadSnapshot(
        id=lead.id,
        name=lead.name,
        domain=lead.domain,
        status=lead.status,
        enriched_at=lead.enriched_at,
        providers_used=lead.enrichment_providers_used,
        fields=lead.known_fields(),
    )


class SqlEnrichmentRecorder(EnrichmentRecorder):
    """Recorder on the ``enrichment_runs``, ``leads`` and ``audit_log`` tables.

    Args:
        session_factory: Session factory to use. Defaults to the shared
            factory from ``DatabaseManager``.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self._session_factory = session_factory

    async def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = await DatabaseManager.get_session_factory()
        return self._session_factory

    async def record_run(
        self,
        user_id: str,
        domain: str,
        result: WaterfallResult,
        lead_id: Optional[str] = None,
    ) -> RunReceipt:
        factory = await self._factory()
        async with factory() as session:
            version = 1
            if lead_id is not None:
                previous = (
                    await session.execute(
                        select(func.count(EnrichmentRun.id)).where(
                            EnrichmentRun.lead_id == lead_id
                        )
                    )
                ).scalar_one()
                version += previous

            payload = result.to_dict()
            run = EnrichmentRun(
                id=str(uuid.uuid4()),
                lead_id=lead_id,
                user_id=user_id,
                domain=domain,
                version=version,
                terminal_state=payload["terminal_state"],
                merged_fields=payload["merged_fields"],
                providers_used=payload["providers_used"],
                step_log=payload["step_log"],
                is_complete=payload["is_complete"],
            )
            session.add(run)

            if lead_id is not None:
                lead = await session.get(Lead, lead_id)
                if lead is None:
                    logger.warning("Lead %s not found, storing run without lead update", lead_id)
                else:
                    current = {name: getattr(lead, name) for name in Lead.CONTACT_FIELDS}
                    for name, old_value, new_value in _changed_fields(current, result):
                        setattr(lead, name, result.merged_fields[name])
                        session.add(AuditLogEntry(
                            table_name="leads",
                            record_id=lead.id,
                            action="update",
                            field_name=name,
                            old_value=old_value,
                            new_value=new_value,
                            reason=_run_reason(run.id, version),
                        ))
                    lead.enrichment_providers_used = list(result.providers_used)
                    lead.enriched_at = datetime.utcnow()

            try:
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            logger.info(
                "Stored enrichment run %s (version %d) for %s",
                run.id, version, domain,
            )
            return RunReceipt(run_id=run.id, version=version)

    async def find_stale_leads(self, cutoff: datetime, limit: int) -> list[LeadSnapshot]:
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(
                select(Lead)
                .where(
                    Lead.enriched_at < cutoff,
                    Lead.status.in_(ACTIVE_LEAD_STATUSES),
                    Lead.enrichment_providers_used.is_not(None),
                )
                .order_by(Lead.enriched_at.asc())
                .limit(limit)
            )
            return [_snapshot(lead) for lead in result.scalars().all()]

    async def get_leads(self, lead_ids: Sequence[str]) -> list[LeadSnapshot]:
        if not lead_ids:
            return []
        factory = await self._factory()
        async with factory() as session:
            result = await session.execute(select(Lead).where(Lead.id.in_(list(lead_ids))))
            return [_snapshot(lead) for lead in result.scalars().all()]

    async def append_audit(
        self,
        table_name: str,
        record_id: str,
        action: str,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        factory = await self._factory()
        async with factory() as session:
            session.add(AuditLogEntry(
                table_name=table_name,
                record_id=record_id,
                action=action,
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
            ))
            await session.commit()
