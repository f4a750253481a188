"""
Step 6 - Fragility tier classification.

Precedence (first match wins):
  1. fewer than two completed fills   -> D1a_AT_RISK
  2. PDC perfect < target             -> T5_UNSALVAGEABLE
  3. PDC status quo >= target         -> COMPLIANT
  4. delay budget per refill          -> F1..F5
then the Q4 tightening rule may promote an F-tier by one level.
"""
from __future__ import annotations

from typing import Optional

from packages.shared.models import (
    ActiveTier,
    AdherenceConfig,
    Compliant,
    FragilityTier,
    GapBudget,
    InsufficientHistory,
    Projection,
    Unsalvageable,
)

# F5 -> F4 -> F3 -> F2 -> F1; F1 has nowhere to go.
_Q4_PROMOTION: dict[FragilityTier, FragilityTier] = {
    FragilityTier.F5_SAFE: FragilityTier.F4_COMFORTABLE,
    FragilityTier.F4_COMFORTABLE: FragilityTier.F3_MODERATE,
    FragilityTier.F3_MODERATE: FragilityTier.F2_FRAGILE,
    FragilityTier.F2_FRAGILE: FragilityTier.F1_IMMINENT,
}


def tier_from_delay_budget(budget: Optional[float], config: AdherenceConfig) -> FragilityTier:
    """
    Bands with inclusive lower bounds: <2 F1, [2,6) F2, [6,11) F3, [11,20] F4, >20 F5.
    No budget means no refill is needed before period end.
    """
    if budget is None:
        return FragilityTier.F5_SAFE
    if budget < config.f2_min_delay_budget:
        return FragilityTier.F1_IMMINENT
    if budget < config.f3_min_delay_budget:
        return FragilityTier.F2_FRAGILE
    if budget < config.f4_min_delay_budget:
        return FragilityTier.F3_MODERATE
    if budget <= config.f5_above_delay_budget:
        return FragilityTier.F4_COMFORTABLE
    return FragilityTier.F5_SAFE


def apply_q4_tightening(
    tier: FragilityTier,
    days_to_period_end: int,
    gap_days_remaining: int,
    config: AdherenceConfig,
) -> tuple[FragilityTier, bool]:
    """Promote one level when fewer than 60 days remain and at most 5 gap days are left."""
    if not config.q4_tightening_enabled or tier not in _Q4_PROMOTION:
        return tier, False
    if days_to_period_end >= config.q4_tightening_days_to_end:
        return tier, False
    if gap_days_remaining > config.q4_tightening_gap_days:
        return tier, False
    return _Q4_PROMOTION[tier], True


def classify_fragility(
    fill_count: int,
    projection: Projection,
    gap_budget: GapBudget,
    config: AdherenceConfig,
) -> InsufficientHistory | Unsalvageable | Compliant | ActiveTier:
    if fill_count < config.min_fills_for_denominator:
        return InsufficientHistory(fill_count=fill_count)

    if projection.pdc_perfect < config.pdc_target:
        return Unsalvageable(pdc_perfect=projection.pdc_perfect)

    if projection.pdc_status_quo >= config.pdc_target:
        return Compliant(pdc_status_quo=projection.pdc_status_quo)

    budget = gap_budget.delay_budget_per_refill
    base = tier_from_delay_budget(budget, config)
    tier, q4_adjusted = apply_q4_tightening(
        base, projection.days_remaining, gap_budget.gap_days_remaining, config
    )
    return ActiveTier(
        tier=tier,
        base_tier=base,
        delay_budget_per_refill=budget,
        q4_adjusted=q4_adjusted,
    )
