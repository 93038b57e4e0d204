"""Enrichment service: entitlement check, waterfall, persistence, charge.

The order is fixed:

1. check the user can afford one ``enrich`` before any provider is called;
2. run the waterfall to a terminal state;
3. persist the run (a FAILED run is neither stored nor charged);
4. charge only if at least one provider was actually invoked.

A charge that does not confirm leaves the outcome unbilled; the enriched
data is still returned.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from ..entitlements.engine import ChargeResult, EntitlementEngine
from .recorder import EnrichmentRecorder, LeadSnapshot
from .waterfall import WaterfallEnricher, WaterfallResult

logger = logging.getLogger(__name__)

ENRICH_ACTION = "enrich"
DEFAULT_STALE_THRESHOLD_DAYS = 30
DEFAULT_MAX_LEADS_PER_RUN = 25


@dataclass
class EnrichmentOutcome:
    """Result of one enrichment request.

    Attributes:
        allowed: False when the entitlement check denied the request.
        result: Waterfall result, None when not allowed.
        billed: Whether a credit charge was confirmed.
        remaining: Credits left before the request, None when unbounded.
        charge: Charge result, None when no charge was attempted.
        run_id: Id of the stored run.
        version: Version of the stored run.
    """

    allowed: bool
    result: Optional[WaterfallResult] = None
    billed: bool = False
    remaining: Optional[int] = None
    charge: Optional[ChargeResult] = None
    run_id: Optional[str] = None
    version: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "billed": self.billed,
            "remaining": self.remaining,
            "run_id": self.run_id,
            "version": self.version,
        }
        if self.result is not None:
            data.update(self.result.to_dict())
        else:
            data.update({
                "merged_fields": {},
                "providers_used": [],
                "step_log": [],
                "terminal_state": None,
                "is_complete": False,
                "error": "insufficient_credits",
            })
        return data


@dataclass
class ReenrichmentSummary:
    """Totals for one stale-lead re-enrichment pass."""

    total_stale: int = 0
    re_enriched: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_stale": self.total_stale,
            "re_enriched": self.re_enriched,
            "errors": self.errors,
        }


def _utcnow() -> datetime:
    return datetime.utcnow()


class EnrichmentService:
    """Ties the entitlement engine, the waterfall and the recorder together.

    Args:
        engine: Entitlement engine used for the check and the charge.
        enricher: Configured waterfall.
        recorder: Run and audit persistence.
        clock: Returns the current naive UTC time.
    """

    def __init__(
        self,
        engine: EntitlementEngine,
        enricher: WaterfallEnricher,
        recorder: EnrichmentRecorder,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine = engine
        self.enricher = enricher
        self.recorder = recorder
        self.clock = clock

    async def enrich(
        self,
        user_id: str,
        domain: str,
        known_fields: Optional[Mapping[str, Any]] = None,
        target_titles: Optional[Sequence[str]] = None,
        lead_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> EnrichmentOutcome:
        """Enrich one domain on behalf of a user.

        Args:
            user_id: User to authorize and charge.
            domain: Company domain to enrich.
            known_fields: Fields already known for the target.
            target_titles: Job titles to prefer.
            lead_id: Lead to write the result back onto.
            idempotency_key: Makes a retried request charge at most once.
            cancel_event: Stops the waterfall before the next provider.

        Returns:
            EnrichmentOutcome; ``allowed=False`` when the user cannot afford it.
        """
        decision = await self.engine.check(user_id, ENRICH_ACTION)
        if not decision.allowed:
            logger.info(
                "Enrichment of %s denied for user %s: %s credits remaining",
                domain, user_id, decision.remaining,
            )
            return EnrichmentOutcome(allowed=False, remaining=decision.remaining)

        result = await self.enricher.run(
            domain,
            known_fields or {},
            target_titles=target_titles,
            cancel_event=cancel_event,
        )
        outcome = EnrichmentOutcome(
            allowed=True, result=result, remaining=decision.remaining
        )

        if result.failed:
            logger.warning(
                "Enrichment of %s for user %s failed (%s); not stored or charged",
                domain, user_id, result.error,
            )
            return outcome

        receipt = await self.recorder.record_run(user_id, domain, result, lead_id=lead_id)
        outcome.run_id = receipt.run_id
        outcome.version = receipt.version

        if not result.providers_used:
            logger.info("No provider invoked for %s; nothing to charge", domain)
            return outcome

        charge = await self.engine.charge(
            user_id,
            ENRICH_ACTION,
            reference_id=lead_id or receipt.run_id,
            idempotency_key=idempotency_key,
        )
        outcome.charge = charge
        outcome.billed = charge.success
        if not charge.success:
            logger.error(
                "Enrichment run %s for user %s delivered but not billed: %s",
                receipt.run_id, user_id, charge.error,
            )
        return outcome

    async def reenrich_stale(
        self,
        user_id: str,
        threshold_days: int = DEFAULT_STALE_THRESHOLD_DAYS,
        max_leads: int = DEFAULT_MAX_LEADS_PER_RUN,
        lead_ids: Optional[Sequence[str]] = None,
    ) -> ReenrichmentSummary:
        """Refresh leads whose enrichment is older than ``threshold_days``.

        Each stale lead is re-run seeded only with its domain and name, so
        outdated contact data does not block fresher provider values. A new
        run version and an audit entry are written per refreshed lead. The
        pass stops early once the user runs out of credits.

        Args:
            user_id: User the refresh is performed and charged for.
            threshold_days: Age after which enrichment is stale.
            max_leads: Maximum number of leads per pass.
            lead_ids: Refresh exactly these leads instead of searching.

        Returns:
            ReenrichmentSummary with counts and per-lead errors.
        """
        if lead_ids:
            leads = await self.recorder.get_leads(lead_ids)
        else:
            cutoff = self.clock() - timedelta(days=threshold_days)
            leads = await self.recorder.find_stale_leads(cutoff, max_leads)

        summary = ReenrichmentSummary(total_stale=len(leads))
        if not leads:
            logger.info("No stale leads found")
            return summary

        logger.info("Re-enriching %d stale leads for user %s", len(leads), user_id)
        for lead in leads:
            try:
                outcome = await self._reenrich_one(user_id, lead, threshold_days)
            except Exception as e:
                logger.error("Re-enrichment of lead %s failed: %s", lead.id, e, exc_info=True)
                summary.errors.append(f"Lead {lead.id}: {e}")
                continue
            if not outcome.allowed:
                summary.errors.append(f"Lead {lead.id}: insufficient credits")
                break
            if outcome.result.failed:
                summary.errors.append(f"Lead {lead.id}: {outcome.result.error}")
                continue
            summary.re_enriched += 1

        logger.info(
            "Re-enrichment completed: %d/%d re-enriched",
            summary.re_enriched, summary.total_stale,
        )
        return summary

    async def _reenrich_one(
        self, user_id: str, lead: LeadSnapshot, threshold_days: int
    ) -> EnrichmentOutcome:
        outcome = await self.enrich(
            user_id,
            lead.domain,
            known_fields={"company_name": lead.name},
            lead_id=lead.id,
        )
        if outcome.allowed and not outcome.result.failed:
            await self.recorder.append_audit(
                table_name="leads",
                record_id=lead.id,
                action="update",
                field_name="enrichment_data",
                old_value="stale",
                new_value="re-enriched",
                reason=f"Auto re-enrichment (data was {threshold_days}+ days old)",
            )
        return outcome
