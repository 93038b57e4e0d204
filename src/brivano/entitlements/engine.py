"""Entitlement engine: credit checks, charges and feature gates.

The engine combines the static policy tables with a ``CreditStore`` and a
tier resolver. Denials (not enough credits, tier too low) come back as
result objects; only configuration problems such as an unknown action name
raise.

Example:
    >>> engine = EntitlementEngine(InMemoryCreditStore(), StaticTierResolver({"u-1": "starter"}))
    >>> decision = await engine.check("u-1", "enrich", count=3)
    >>> decision.allowed, decision.remaining
    (True, 100)
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from . import policy
from .policy import SubscriptionTier
from .store import CreditStore, DebitRequest, PeriodState

logger = logging.getLogger(__name__)

TierResolver = Callable[[str], Awaitable[Optional[Union[SubscriptionTier, str]]]]


class StaticTierResolver:
    """Tier lookup from a fixed mapping; unknown users are on the free tier."""

    def __init__(self, tiers: Optional[dict[str, Union[SubscriptionTier, str]]] = None):
        self.tiers = dict(tiers or {})

    async def __call__(self, user_id: str) -> SubscriptionTier:
        return SubscriptionTier.parse(self.tiers.get(user_id))


@dataclass
class UsageSnapshot:
    """Credits consumed in a period and bonus credits attached to it."""

    consumed: int
    bonus_available: int


@dataclass
class EntitlementDecision:
    """Answer to "may this user perform this action".

    Attributes:
        allowed: Whether the action fits in the remaining pool.
        remaining: Credits left before the action, None when unbounded.
        cost: Credits the action would cost.
        tier: Tier the decision was made for.
    """

    allowed: bool
    remaining: Optional[int]
    cost: int
    tier: SubscriptionTier

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "cost": self.cost,
            "tier": self.tier.value,
        }


@dataclass
class ChargeResult:
    """Outcome of a charge.

    Attributes:
        success: True only when the charge was durably recorded.
        new_consumed: Period counter after the charge attempt.
        cost: Credits the charge was for.
        replayed: True when an earlier charge with the same key was returned.
        error: Reason for a failed charge.
    """

    success: bool
    new_consumed: int
    cost: int = 0
    replayed: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "new_consumed": self.new_consumed,
            "cost": self.cost,
            "replayed": self.replayed,
            "error": self.error,
        }


@dataclass
class FeatureDecision:
    """Answer to "does this tier unlock this feature"."""

    allowed: bool
    required_tier: SubscriptionTier

    def to_dict(self) -> dict[str, Any]:
        return {"allowed": self.allowed, "required_tier": self.required_tier.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementEngine:
    """Authorizes and meters credit-consuming actions.

    Attributes:
        store: Credit counter storage.
        tier_resolver: Async callable mapping a user id to a tier.
        clock: Returns the current time; decides the active period.
    """

    def __init__(
        self,
        store: CreditStore,
        tier_resolver: Optional[TierResolver] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.tier_resolver = tier_resolver or StaticTierResolver()
        self.clock = clock

    async def tier_for(self, user_id: str) -> SubscriptionTier:
        return SubscriptionTier.parse(await self.tier_resolver(user_id))

    def current_period(self) -> date:
        return policy.period_start_for(self.clock())

    async def _opening_bonus(
        self, user_id: str, period_start: date, tier: SubscriptionTier
    ) -> int:
        previous = await self.store.latest_period_before(user_id, period_start)
        if previous is None:
            return 0
        return policy.carry_forward_bonus(
            tier, previous.credits_used, previous.bonus_credits
        )

    async def _open_period(self, user_id: str, tier: SubscriptionTier) -> PeriodState:
        period_start = self.current_period()
        period = await self.store.get_period(user_id, period_start)
        if period is not None:
            return period
        opening_bonus = await self._opening_bonus(user_id, period_start, tier)
        return await self.store.ensure_period(user_id, period_start, opening_bonus)

    async def current_usage(
        self, user_id: str, period_start: Optional[date] = None
    ) -> UsageSnapshot:
        """Credits consumed and bonus available for a period.

        Read-only: a missing row reports zero consumption. For the current
        period the bonus that would carry over from the previous month is
        reported even before the row exists.
        """
        period_start = period_start or self.current_period()
        period = await self.store.get_period(user_id, period_start)
        if period is not None:
            return UsageSnapshot(
                consumed=period.credits_used,
                bonus_available=period.bonus_credits,
            )

        bonus = 0
        if period_start == self.current_period():
            tier = await self.tier_for(user_id)
            bonus = await self._opening_bonus(user_id, period_start, tier)
        return UsageSnapshot(consumed=0, bonus_available=bonus)

    async def check(self, user_id: str, action: str, count: int = 1) -> EntitlementDecision:
        """Decide whether ``count`` units of ``action`` are affordable.

        Raises:
            UnknownActionError: If the action is not configured.
        """
        cost = policy.cost_for(action, count)
        tier = await self.tier_for(user_id)
        usage = await self.current_usage(user_id)
        remaining = policy.remaining_credits(tier, usage.consumed, usage.bonus_available)
        allowed = policy.can_afford_credits(
            tier, usage.consumed, usage.bonus_available, cost
        )
        if not allowed:
            logger.info(
                "Denied %s x%d for user %s on %s tier: cost %d, remaining %s",
                action, count, user_id, tier.value, cost, remaining,
            )
        return EntitlementDecision(
            allowed=allowed, remaining=remaining, cost=cost, tier=tier
        )

    async def can_afford(self, user_id: str, action: str, count: int = 1) -> bool:
        return (await self.check(user_id, action, count)).allowed

    async def charge(
        self,
        user_id: str,
        action: str,
        count: int = 1,
        reference_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> ChargeResult:
        """Charge ``count`` units of ``action`` against the current period.

        The increment is conditional and atomic in the store. A storage
        failure is reported as ``success=False``; callers must then treat
        the work as unbilled.

        Raises:
            UnknownActionError: If the action is not configured.
        """
        cost = policy.cost_for(action, count)
        unit_cost = policy.CREDIT_COSTS[action]

        if cost == 0:
            usage = await self.current_usage(user_id)
            return ChargeResult(success=True, new_consumed=usage.consumed, cost=0)

        tier = await self.tier_for(user_id)
        try:
            period = await self._open_period(user_id, tier)
            result = await self.store.debit(DebitRequest(
                user_id=user_id,
                period_start=period.period_start,
                action=action,
                unit_cost=unit_cost,
                count=count,
                allowance=policy.allowance_for(tier),
                reference_id=reference_id,
                idempotency_key=idempotency_key,
            ))
        except Exception as e:
            logger.error(
                "Credit charge for user %s (%s x%d) was not recorded: %s",
                user_id, action, count, e,
                exc_info=True,
            )
            return ChargeResult(
                success=False, new_consumed=0, cost=cost, error="storage_error"
            )

        if result.success:
            logger.info(
                "Charged user %s %d credits for %s x%d (consumed now %d%s)",
                user_id, cost, action, count, result.consumed,
                ", replayed" if result.replayed else "",
            )
        else:
            logger.info(
                "Charge for user %s rejected: %s", user_id, result.reason
            )

        return ChargeResult(
            success=result.success,
            new_consumed=result.consumed,
            cost=cost,
            replayed=result.replayed,
            error=result.reason,
        )

    async def grant_bonus(self, user_id: str, amount: int) -> UsageSnapshot:
        """Attach non-expiring bonus credits to the user's current period."""
        if amount < 1:
            raise ValueError(f"Bonus amount must be positive, got {amount}")
        tier = await self.tier_for(user_id)
        period = await self._open_period(user_id, tier)
        period = await self.store.add_bonus(user_id, period.period_start, amount)
        logger.info("Granted %d bonus credits to user %s", amount, user_id)
        return UsageSnapshot(consumed=period.credits_used, bonus_available=period.bonus_credits)

    def feature_gate(self, tier: Union[SubscriptionTier, str], feature: str) -> FeatureDecision:
        """Tier gate for a feature, independent of credit balance.

        Raises:
            UnknownFeatureError: If the feature is not configured.
        """
        required = policy.required_tier(feature)
        return FeatureDecision(
            allowed=policy.has_feature(SubscriptionTier.parse(tier), feature),
            required_tier=required,
        )
