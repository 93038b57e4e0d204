"""Credit counter storage abstraction.

The entitlement engine never reads-then-writes the counter itself. It asks
a ``CreditStore`` to perform a conditional increment ("add ``cost`` if the
result stays within allowance + bonus") which each implementation must
carry out atomically, so concurrent charges for the same user can neither
lose an increment nor overdraw the pool.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class PeriodState:
    """Snapshot of one user's counter for one month."""

    user_id: str
    period_start: date
    credits_used: int = 0
    bonus_credits: int = 0
    id: Optional[str] = None


@dataclass
class DebitRequest:
    """A conditional increment against a period counter.

    Attributes:
        user_id: User being charged.
        period_start: Period the charge belongs to.
        action: Credit action name.
        unit_cost: Credits per unit.
        count: Number of units; one usage row is written per unit.
        allowance: Monthly allowance for the user's tier, None if unbounded.
            The store adds the period's bonus to get the ceiling.
        reference_id: Caller's business reference (e.g. a lead id).
        idempotency_key: Caller token making retries safe.
    """

    user_id: str
    period_start: date
    action: str
    unit_cost: int
    count: int
    allowance: Optional[int]
    reference_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    @property
    def total_cost(self) -> int:
        return self.unit_cost * self.count


@dataclass
class DebitResult:
    """Outcome of a conditional increment.

    Attributes:
        success: Whether the increment was applied (or replayed).
        consumed: Counter value after the attempt.
        replayed: True if an earlier charge with the same key was returned.
        reason: Short machine-readable reason on failure.
    """

    success: bool
    consumed: int
    replayed: bool = False
    reason: Optional[str] = None


class CreditStore(ABC):
    """Persistence for monthly credit counters."""

    @abstractmethod
    async def get_period(self, user_id: str, period_start: date) -> Optional[PeriodState]:
        """Read a period row without creating it."""

    @abstractmethod
    async def latest_period_before(
        self, user_id: str, period_start: date
    ) -> Optional[PeriodState]:
        """Most recent period row strictly before ``period_start``."""

    @abstractmethod
    async def ensure_period(
        self, user_id: str, period_start: date, opening_bonus: int
    ) -> PeriodState:
        """Return the period row, creating it with ``opening_bonus`` if absent."""

    @abstractmethod
    async def debit(self, request: DebitRequest) -> DebitResult:
        """Atomically apply a conditional increment."""

    @abstractmethod
    async def add_bonus(self, user_id: str, period_start: date, amount: int) -> PeriodState:
        """Atomically add bonus credits to an existing period row."""


class InMemoryCreditStore(CreditStore):
    """Process-local store guarded by an asyncio lock.

    Used by tests and CLI dry runs. Keeps the usage rows and audit entries
    it would have written so callers can inspect them.
    """

    def __init__(self) -> None:
        self._periods: dict[tuple[str, date], PeriodState] = {}
        self._replays: dict[tuple[str, str], tuple[str, int, DebitResult]] = {}
        self._lock = asyncio.Lock()
        self.usage: list[dict[str, Any]] = []
        self.audit_log: list[dict[str, Any]] = []

    async def get_period(self, user_id: str, period_start: date) -> Optional[PeriodState]:
        period = self._periods.get((user_id, period_start))
        return replace(period) if period else None

    async def latest_period_before(
        self, user_id: str, period_start: date
    ) -> Optional[PeriodState]:
        earlier = [
            p for (uid, start), p in self._periods.items()
            if uid == user_id and start < period_start
        ]
        if not earlier:
            return None
        return replace(max(earlier, key=lambda p: p.period_start))

    async def ensure_period(
        self, user_id: str, period_start: date, opening_bonus: int
    ) -> PeriodState:
        async with self._lock:
            key = (user_id, period_start)
            if key not in self._periods:
                self._periods[key] = PeriodState(
                    user_id=user_id,
                    period_start=period_start,
                    bonus_credits=opening_bonus,
                    id=str(uuid.uuid4()),
                )
                logger.debug(
                    "Opened credit period %s for user %s with %d bonus credits",
                    period_start, user_id, opening_bonus,
                )
            return replace(self._periods[key])

    async def debit(self, request: DebitRequest) -> DebitResult:
        async with self._lock:
            replay_key = (request.user_id, request.idempotency_key)
            if request.idempotency_key and replay_key in self._replays:
                action, count, previous = self._replays[replay_key]
                return replay_result(request, action, count, previous.consumed)

            period = self._periods.get((request.user_id, request.period_start))
            if period is None:
                return DebitResult(success=False, consumed=0, reason="period_missing")

            cost = request.total_cost
            if request.allowance is not None:
                ceiling = request.allowance + period.bonus_credits
                if period.credits_used + cost > ceiling:
                    return DebitResult(
                        success=False,
                        consumed=period.credits_used,
                        reason="insufficient_credits",
                    )

            old_value = period.credits_used
            period.credits_used += cost
            now = datetime.utcnow()

            for unit_index in range(request.count):
                self.usage.append({
                    "user_id": request.user_id,
                    "period_start": request.period_start,
                    "action": request.action,
                    "credits_spent": request.unit_cost,
                    "reference_id": request.reference_id,
                    "idempotency_key": request.idempotency_key,
                    "unit_index": unit_index,
                    "created_at": now,
                })
            self.audit_log.append({
                "table": "credit_periods",
                "record_id": period.id,
                "action": "charge",
                "field_name": "credits_used",
                "old_value": str(old_value),
                "new_value": str(period.credits_used),
                "reason": _charge_reason(request),
                "timestamp": now,
            })

            result = DebitResult(success=True, consumed=period.credits_used)
            if request.idempotency_key:
                self._replays[replay_key] = (request.action, request.count, result)
            return result

    async def add_bonus(self, user_id: str, period_start: date, amount: int) -> PeriodState:
        async with self._lock:
            period = self._periods[(user_id, period_start)]
            period.bonus_credits += amount
            self.audit_log.append({
                "table": "credit_periods",
                "record_id": period.id,
                "action": "grant",
                "field_name": "bonus_credits",
                "old_value": str(period.bonus_credits - amount),
                "new_value": str(period.bonus_credits),
                "reason": "Bonus credits granted",
                "timestamp": datetime.utcnow(),
            })
            return replace(period)


def _charge_reason(request: DebitRequest) -> str:
    reason = f"{request.action} x{request.count}"
    if request.reference_id:
        reason += f" (ref {request.reference_id})"
    return reason


def replay_result(
    request: DebitRequest, action: str, count: int, consumed: int
) -> DebitResult:
    """Result for a request whose idempotency key is already recorded.

    A key reused for a different action or unit count is rejected instead
    of replayed.
    """
    if (action, count) != (request.action, request.count):
        logger.warning(
            "Idempotency key %s for user %s was first used for %s x%d, not %s x%d",
            request.idempotency_key, request.user_id, action, count,
            request.action, request.count,
        )
        return DebitResult(
            success=False, consumed=consumed, reason="idempotency_key_mismatch"
        )
    return DebitResult(success=True, consumed=consumed, replayed=True)
