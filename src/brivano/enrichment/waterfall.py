"""Waterfall enrichment sequencer.

Runs an ordered chain of contact-data providers one at a time against a
company domain. Each provider only fills fields that are still missing, and
the chain stops as soon as full name, email and phone are all known, so
later (usually more expensive) providers are never called for data an
earlier one already supplied.

States:

    PENDING -> RUNNING -> COMPLETE | EXHAUSTED | FAILED

EXHAUSTED is a partial success: every provider was tried and the record is
still incomplete. FAILED means the run could not proceed at all (no
providers configured, or the caller cancelled it).

Optional contact validators run after the chain and clear a field whose
value is definitively invalid.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from .errors import DefinitiveProviderError
from .fields import is_complete, is_present, merge_missing, missing_fields, seed_record
from .retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class WaterfallState(str, Enum):
    """Lifecycle state of a waterfall run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass
class EnrichmentContext:
    """What a provider is told about the target.

    Attributes:
        domain: Company web domain, the lookup key.
        known: Snapshot of the fields accumulated so far.
        target_titles: Job titles to prefer when picking a contact.
    """

    domain: str
    known: dict[str, Any] = field(default_factory=dict)
    target_titles: list[str] = field(default_factory=list)

    @property
    def full_name(self) -> Optional[str]:
        return self.known.get("full_name") or None

    @property
    def email(self) -> Optional[str]:
        return self.known.get("email") or None

    @property
    def company_name(self) -> Optional[str]:
        return self.known.get("company_name") or None

    def name_parts(self) -> Optional[tuple[str, str]]:
        """First and last name split from ``full_name``.

        None unless the name has at least two words.
        """
        parts = (self.full_name or "").split()
        if len(parts) < 2:
            return None
        return parts[0], parts[-1]


@dataclass
class ProviderResult:
    """Fields returned by one provider; empty when it found nothing."""

    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> list[str]:
        return [name for name, value in self.fields.items() if is_present(value)]


@dataclass
class StepRecord:
    """Audit entry for one provider or validator step.

    Attributes:
        provider: Provider or validator name.
        success: Whether the step completed (for validators: value valid).
        fields_found: Fields the step contributed.
        fields_missing: Required and nice-to-have fields missing after it.
        attempts: Attempts made, including retries.
        duration_ms: Wall time of the step including backoff.
        error: Failure reason, if any.
    """

    provider: str
    success: bool
    fields_found: list[str] = field(default_factory=list)
    fields_missing: list[str] = field(default_factory=list)
    attempts: int = 1
    duration_ms: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "success": self.success,
            "fields_found": self.fields_found,
            "fields_missing": self.fields_missing,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
            "error": self.error,
        }


@dataclass
class WaterfallResult:
    """Final state of a waterfall run.

    Attributes:
        merged_fields: Accumulated field values.
        providers_used: Every provider invoked, in call order.
        step_log: One record per provider or validator step.
        terminal_state: COMPLETE, EXHAUSTED or FAILED.
        is_complete: Whether full name, email and phone are present.
        error: Reason for a FAILED run.
    """

    merged_fields: dict[str, Any]
    providers_used: list[str]
    step_log: list[StepRecord]
    terminal_state: WaterfallState
    is_complete: bool
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.terminal_state == WaterfallState.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "merged_fields": self.merged_fields,
            "providers_used": self.providers_used,
            "step_log": [step.to_dict() for step in self.step_log],
            "terminal_state": self.terminal_state.value,
            "is_complete": self.is_complete,
            "error": self.error,
        }


class EnrichmentProvider(ABC):
    """A single contact-data source in the waterfall.

    Implementations raise ``ProviderHTTPError``, ``ProviderTimeoutError`` or
    ``ProviderNetworkError`` on failure and return an empty
    ``ProviderResult`` when they have nothing for the target.
    """

    name: str = "provider"

    @abstractmethod
    async def attempt(self, context: EnrichmentContext) -> ProviderResult:
        """Query the provider once."""

    async def close(self) -> None:
        """Release any resources held by the provider."""
        return None


@dataclass
class ValidationResult:
    """Outcome of validating one contact value."""

    valid: bool
    status: str = "valid"
    details: dict[str, Any] = field(default_factory=dict)


class ContactValidator(ABC):
    """Post-chain check of a single contact field.

    Attributes:
        name: Validator name used in the step log.
        field_name: Record field the validator inspects.
    """

    name: str = "validator"
    field_name: str = ""

    @abstractmethod
    async def validate(self, value: Any) -> ValidationResult:
        """Validate a present field value."""

    async def close(self) -> None:
        return None


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class WaterfallEnricher:
    """Runs providers in order with fill-only-if-missing merging.

    Args:
        providers: Providers in waterfall order.
        retry_policy: Attempt limit and backoff per provider.
        validators: Validators to run on the merged record.
        sleep: Awaitable sleep used between retries.

    Example:
        >>> enricher = WaterfallEnricher([ApolloProvider(key), HunterProvider(key)])
        >>> result = await enricher.run("acmedental.com", {"company_name": "Acme"})
        >>> result.terminal_state
        <WaterfallState.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        providers: Sequence[EnrichmentProvider],
        retry_policy: Optional[RetryPolicy] = None,
        validators: Sequence[ContactValidator] = (),
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.providers = list(providers)
        self.retry_policy = retry_policy or RetryPolicy()
        self.validators = list(validators)
        self._sleep = sleep

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self.providers]

    async def run(
        self,
        domain: str,
        known_fields: Optional[Mapping[str, Any]] = None,
        target_titles: Optional[Sequence[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> WaterfallResult:
        """Enrich one target.

        Args:
            domain: Company domain to look up.
            known_fields: Fields already known; these are never overwritten.
            target_titles: Job titles to prefer.
            cancel_event: When set, no further provider is called and the
                run ends FAILED with error "cancelled".

        Returns:
            WaterfallResult in a terminal state.
        """
        record = seed_record(known_fields or {})
        providers_used: list[str] = []
        step_log: list[StepRecord] = []
        titles = list(target_titles or [])

        def finish(state: WaterfallState, error: Optional[str] = None) -> WaterfallResult:
            result = WaterfallResult(
                merged_fields=record,
                providers_used=providers_used,
                step_log=step_log,
                terminal_state=state,
                is_complete=is_complete(record),
                error=error,
            )
            logger.info(
                "Waterfall for %s finished %s. Providers used: %s. Complete: %s",
                domain,
                state.value,
                ", ".join(providers_used) or "none",
                result.is_complete,
            )
            return result

        if not self.providers:
            logger.error("No enrichment providers configured for %s", domain)
            return finish(WaterfallState.FAILED, "no_providers_configured")

        logger.info(
            "Starting waterfall enrichment for %s with providers: %s",
            domain,
            ", ".join(self.provider_names),
        )

        for step_index, provider in enumerate(self.providers):
            if is_complete(record):
                logger.info(
                    "Record for %s complete, skipping %d remaining provider(s)",
                    domain, len(self.providers) - step_index,
                )
                break
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Waterfall for %s cancelled before %s", domain, provider.name)
                return finish(WaterfallState.FAILED, "cancelled")

            step = await self._run_provider(provider, domain, record, titles)
            providers_used.append(provider.name)
            step_log.append(step)

        for validator in self.validators:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Waterfall for %s cancelled before %s", domain, validator.name)
                return finish(WaterfallState.FAILED, "cancelled")
            step = await self._run_validator(validator, record)
            if step is not None:
                step_log.append(step)

        if is_complete(record):
            return finish(WaterfallState.COMPLETE)
        return finish(WaterfallState.EXHAUSTED)

    async def _run_provider(
        self,
        provider: EnrichmentProvider,
        domain: str,
        record: dict[str, Any],
        target_titles: list[str],
    ) -> StepRecord:
        context = EnrichmentContext(
            domain=domain,
            known=dict(record),
            target_titles=target_titles,
        )
        started = time.monotonic()
        outcome = await call_with_retry(
            lambda: provider.attempt(context),
            self.retry_policy,
            label=provider.name,
            sleep=self._sleep,
        )
        duration_ms = _elapsed_ms(started)

        if not outcome.success:
            error = outcome.error
            if isinstance(error, DefinitiveProviderError):
                reason = f"definitive: {error}"
            else:
                reason = str(error) or error.__class__.__name__
            logger.warning(
                "Provider %s failed after %d attempt(s): %s",
                provider.name, outcome.attempts, reason,
            )
            return StepRecord(
                provider=provider.name,
                success=False,
                fields_missing=missing_fields(record),
                attempts=outcome.attempts,
                duration_ms=duration_ms,
                error=reason,
            )

        filled = merge_missing(record, outcome.value.fields if outcome.value else {})
        logger.info("%s: %d fields found", provider.name, len(filled))
        return StepRecord(
            provider=provider.name,
            success=True,
            fields_found=filled,
            fields_missing=missing_fields(record),
            attempts=outcome.attempts,
            duration_ms=duration_ms,
        )

    async def _run_validator(
        self,
        validator: ContactValidator,
        record: dict[str, Any],
    ) -> Optional[StepRecord]:
        value = record.get(validator.field_name)
        if not is_present(value):
            return None

        started = time.monotonic()
        outcome = await call_with_retry(
            lambda: validator.validate(value),
            self.retry_policy,
            label=validator.name,
            sleep=self._sleep,
        )
        if not outcome.success:
            # Validation outages never block the record
            logger.warning(
                "Validator %s errored, keeping value: %s", validator.name, outcome.error
            )
            return StepRecord(
                provider=validator.name,
                success=True,
                fields_missing=missing_fields(record),
                attempts=outcome.attempts,
                duration_ms=_elapsed_ms(started),
                error=f"validation_error: {outcome.error}",
            )

        result = outcome.value
        if result.valid:
            logger.info("%s: %s validated (%s)", validator.name, validator.field_name, result.status)
            fields_found = [f"{validator.field_name}_validated"]
            error = None
        else:
            logger.info(
                "%s: %s invalid (%s), clearing it",
                validator.name, validator.field_name, result.status,
            )
            record[validator.field_name] = None
            fields_found = []
            error = f"invalid: {result.status}"

        return StepRecord(
            provider=validator.name,
            success=result.valid,
            fields_found=fields_found,
            fields_missing=missing_fields(record),
            attempts=outcome.attempts,
            duration_ms=_elapsed_ms(started),
            error=error,
        )

    async def close(self) -> None:
        for component in [*self.providers, *self.validators]:
            await component.close()
