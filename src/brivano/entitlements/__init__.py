"""Credit entitlements.

Tier allowances, per-action credit costs, atomic charging and the tier
feature gate.
"""

from .policy import (
    CREDIT_COSTS,
    FEATURE_TIERS,
    TIER_ALLOWANCES,
    EntitlementError,
    SubscriptionTier,
    UnknownActionError,
    UnknownFeatureError,
    allowance_for,
    can_afford_credits,
    carry_forward_bonus,
    cost_for,
    has_feature,
    period_start_for,
    remaining_credits,
    required_tier,
)
from .store import CreditStore, DebitRequest, DebitResult, InMemoryCreditStore, PeriodState
from .sql_store import SqlCreditStore
from .engine import (
    ChargeResult,
    EntitlementDecision,
    EntitlementEngine,
    FeatureDecision,
    StaticTierResolver,
    UsageSnapshot,
)

__all__ = [
    # Policy
    "CREDIT_COSTS",
    "FEATURE_TIERS",
    "TIER_ALLOWANCES",
    "EntitlementError",
    "SubscriptionTier",
    "UnknownActionError",
    "UnknownFeatureError",
    "allowance_for",
    "can_afford_credits",
    "carry_forward_bonus",
    "cost_for",
    "has_feature",
    "period_start_for",
    "remaining_credits",
    "required_tier",
    # Storage
    "CreditStore",
    "DebitRequest",
    "DebitResult",
    "InMemoryCreditStore",
    "PeriodState",
    "SqlCreditStore",
    # Engine
    "ChargeResult",
    "EntitlementDecision",
    "EntitlementEngine",
    "FeatureDecision",
    "StaticTierResolver",
    "UsageSnapshot",
]
