"""Credit and feature entitlement policy.

Static tables and pure decision functions. Nothing here touches storage,
so every rule can be evaluated from a (tier, consumed, bonus, action)
tuple alone.

Tiers are totally ordered:

    free < starter < growth < scale < enterprise

Each tier has a monthly credit allowance (enterprise is unbounded) and
unlocks every feature of the tiers below it. Bonus credits are pooled with
the allowance for availability checks; the monthly allowance is drawn down
first, so only the part of a period's usage above the allowance eats into
the bonus that carries over to the next month.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


class EntitlementError(Exception):
    """Base exception for entitlement configuration errors."""

    pass


class UnknownActionError(EntitlementError):
    """Raised when a credit action name is not in the cost table."""

    pass


class UnknownFeatureError(EntitlementError):
    """Raised when a feature name is not in the feature table."""

    pass


class SubscriptionTier(str, Enum):
    """Subscription level, ordered from lowest to highest."""

    FREE = "free"
    STARTER = "starter"
    GROWTH = "growth"
    SCALE = "scale"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __ge__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __lt__(self, other):
        if not isinstance(other, SubscriptionTier):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: Optional[str]) -> "SubscriptionTier":
        """Resolve a raw tier value, treating unknown or missing tiers as free."""
        if isinstance(value, SubscriptionTier):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.FREE


_TIER_ORDER = list(SubscriptionTier)

# Monthly credit allowance per tier; None means unbounded
TIER_ALLOWANCES: dict[SubscriptionTier, Optional[int]] = {
    SubscriptionTier.FREE: 25,
    SubscriptionTier.STARTER: 100,
    SubscriptionTier.GROWTH: 300,
    SubscriptionTier.SCALE: 1000,
    SubscriptionTier.ENTERPRISE: None,
}

# Credit cost per unit of each metered action
CREDIT_COSTS: dict[str, int] = {
    "scrape": 1,
    "enrich": 2,
    "search": 0,
    "lead_score": 1,
    "sentiment": 1,
    "skip_trace": 5,
    # Outreach is never metered
    "email": 0,
    "sms": 0,
    "call": 0,
}

# Minimum tier required for each feature
FEATURE_TIERS: dict[str, SubscriptionTier] = {
    "crm_access": SubscriptionTier.FREE,
    "basic_scraper": SubscriptionTier.FREE,
    "click_to_call": SubscriptionTier.STARTER,
    "call_recording": SubscriptionTier.STARTER,
    "sms_tools": SubscriptionTier.STARTER,
    "email_tools": SubscriptionTier.STARTER,
    "csv_import": SubscriptionTier.STARTER,
    "csv_export": SubscriptionTier.STARTER,
    "basic_templates": SubscriptionTier.STARTER,
    "kanban_view": SubscriptionTier.STARTER,
    "ai_call_recaps": SubscriptionTier.GROWTH,
    "lead_scoring": SubscriptionTier.GROWTH,
    "sentiment_analysis": SubscriptionTier.GROWTH,
    "ai_templates": SubscriptionTier.GROWTH,
    "ai_voice_agent_limited": SubscriptionTier.GROWTH,
    "ai_voice_agent_unlimited": SubscriptionTier.SCALE,
    "ai_weekly_digest": SubscriptionTier.SCALE,
    "call_transcription": SubscriptionTier.SCALE,
    "webhook_integrations": SubscriptionTier.SCALE,
    "api_access": SubscriptionTier.SCALE,
    "scraper_50_leads_month": SubscriptionTier.SCALE,
    "prospect_search": SubscriptionTier.SCALE,
    "industry_search": SubscriptionTier.SCALE,
    "real_estate_scraper": SubscriptionTier.SCALE,
    "skip_tracing": SubscriptionTier.SCALE,
    "waterfall_enrichment": SubscriptionTier.SCALE,
    "unlimited_scraper": SubscriptionTier.ENTERPRISE,
    "priority_support": SubscriptionTier.ENTERPRISE,
    "custom_integrations": SubscriptionTier.ENTERPRISE,
}


def allowance_for(tier: SubscriptionTier) -> Optional[int]:
    """Monthly credit allowance for a tier, or None when unbounded."""
    return TIER_ALLOWANCES[SubscriptionTier.parse(tier)]


def cost_for(action: str, count: int = 1) -> int:
    """Total credit cost of ``count`` units of ``action``.

    Raises:
        UnknownActionError: If the action is not metered or free.
        ValueError: If count is below 1.
    """
    if action not in CREDIT_COSTS:
        raise UnknownActionError(f"Unknown credit action: {action!r}")
    if count < 1:
        raise ValueError(f"count must be at least 1, got {count}")
    return CREDIT_COSTS[action] * count


def credit_limit(tier: SubscriptionTier, bonus: int) -> Optional[int]:
    """Total credits usable in a period: allowance plus bonus."""
    allowance = allowance_for(tier)
    if allowance is None:
        return None
    return allowance + bonus


def remaining_credits(tier: SubscriptionTier, consumed: int, bonus: int) -> Optional[int]:
    """Credits left in the period, or None when unbounded."""
    limit = credit_limit(tier, bonus)
    if limit is None:
        return None
    return max(0, limit - consumed)


def can_afford_credits(
    tier: SubscriptionTier,
    consumed: int,
    bonus: int,
    cost: int,
) -> bool:
    """Decide whether a charge of ``cost`` fits in the remaining pool."""
    if cost == 0:
        return True
    limit = credit_limit(tier, bonus)
    if limit is None:
        return True
    return limit - consumed >= cost


def carry_forward_bonus(tier: SubscriptionTier, consumed: int, bonus: int) -> int:
    """Bonus credits left over at the end of a period.

    The allowance is spent first, so only usage above it reduces the bonus.
    """
    allowance = allowance_for(tier)
    if allowance is None:
        return bonus
    overdraw = max(0, consumed - allowance)
    return max(0, bonus - overdraw)


def required_tier(feature: str) -> SubscriptionTier:
    """Minimum tier for a feature.

    Raises:
        UnknownFeatureError: If the feature is not in the feature table.
    """
    if feature not in FEATURE_TIERS:
        raise UnknownFeatureError(f"Unknown feature: {feature!r}")
    return FEATURE_TIERS[feature]


def has_feature(tier: SubscriptionTier, feature: str) -> bool:
    """Whether ``tier`` unlocks ``feature``. Unknown features are denied."""
    if feature not in FEATURE_TIERS:
        return False
    return SubscriptionTier.parse(tier) >= FEATURE_TIERS[feature]


def period_start_for(moment: Optional[datetime] = None) -> date:
    """First day of the calendar month containing ``moment`` (UTC)."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return date(moment.year, moment.month, 1)
