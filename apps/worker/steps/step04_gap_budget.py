"""
Step 4 - Gap-day and delay-budget accounting.
Turns covered/treatment days into the slack left before PDC drops under target.
"""
from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from apps.worker.steps.step01_normalize import completed_fills, effective_days_supply
from packages.shared.models import (
    AdherenceConfig,
    CoverageResult,
    FillRecord,
    GapBudget,
    SupplyState,
)


def gap_days_allowed(treatment_days: int, config: AdherenceConfig) -> int:
    """round(treatment_days x allowance), halves rounded up; 351 days -> 70."""
    exact = Decimal(treatment_days) * Decimal(str(config.gap_allowance_fraction))
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def coverage_shortfall(days_remaining: int, supply_on_hand: int) -> int:
    return max(0, days_remaining - supply_on_hand)


def estimate_days_per_refill(fills: list[FillRecord], config: AdherenceConfig) -> int:
    """Mean days-supply of the scope's completed fills, falling back to the standard fill."""
    supplies = [effective_days_supply(f, config) for f in completed_fills(fills)]
    if not supplies:
        return config.standard_days_supply
    avg = int(Decimal(sum(supplies)) / Decimal(len(supplies)) + Decimal("0.5"))
    return avg if avg > 0 else config.standard_days_supply


def remaining_refills_needed(shortfall: int, days_per_refill: int) -> int:
    if shortfall <= 0:
        return 0
    return math.ceil(shortfall / days_per_refill)


def delay_budget(gap_days_remaining: int, refills_needed: int) -> float | None:
    """
    Gap days that may still be spent per remaining refill.
    None when nothing is left to refill (the "done, no action" case).
    """
    if refills_needed <= 0:
        return None
    return gap_days_remaining / refills_needed


def calculate_gap_budget(
    coverage: CoverageResult,
    supply: SupplyState,
    days_remaining: int,
    fills: list[FillRecord],
    config: AdherenceConfig,
) -> GapBudget:
    allowed = gap_days_allowed(coverage.treatment_days, config)
    used = coverage.treatment_days - coverage.covered_days
    remaining = allowed - used

    shortfall = coverage_shortfall(days_remaining, supply.supply_on_hand)
    per_refill = estimate_days_per_refill(fills, config)
    refills = remaining_refills_needed(shortfall, per_refill)

    return GapBudget(
        gap_days_allowed=allowed,
        gap_days_used=used,
        gap_days_remaining=remaining,
        coverage_shortfall=shortfall,
        estimated_days_per_refill=per_refill,
        remaining_refills_needed=refills,
        delay_budget_per_refill=delay_budget(remaining, refills),
    )
