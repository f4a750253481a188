"""
Step 5 - End-of-period PDC projections.
"""
from __future__ import annotations

from packages.shared.models import CoverageResult, Projection, SupplyState


def pdc_status_quo(coverage: CoverageResult, supply_on_hand: int, days_remaining: int) -> float:
    """PDC at period end if no further fill happens: today's coverage plus supply on hand."""
    projected = coverage.covered_days_to_date + min(supply_on_hand, days_remaining)
    return min(1.0, projected / coverage.treatment_days)


def pdc_perfect(coverage: CoverageResult, days_remaining: int) -> float:
    """Best achievable PDC: every remaining day covered starting today."""
    projected = coverage.covered_days_to_date + days_remaining
    return min(1.0, projected / coverage.treatment_days)


def project_pdc(coverage: CoverageResult, supply: SupplyState, days_remaining: int) -> Projection:
    return Projection(
        pdc_status_quo=pdc_status_quo(coverage, supply.supply_on_hand, days_remaining),
        pdc_perfect=pdc_perfect(coverage, days_remaining),
        days_remaining=days_remaining,
    )
