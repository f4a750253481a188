"""
Unit tests for gap-day and delay-budget accounting (Step 4).
"""
from datetime import date

from apps.worker.steps.step04_gap_budget import (
    calculate_gap_budget,
    coverage_shortfall,
    delay_budget,
    estimate_days_per_refill,
    gap_days_allowed,
    remaining_refills_needed,
)
from packages.shared.models import AdherenceConfig, CoverageResult, FillRecord, FillStatus, SupplyState


def _make_fill(days_supply, status=FillStatus.COMPLETED) -> FillRecord:
    return FillRecord(drug_code="310965", fill_date=date(2025, 1, 1), days_supply=days_supply, status=status)


class TestGapDaysAllowed:
    def test_351_day_period_allows_70(self):
        assert gap_days_allowed(351, AdherenceConfig()) == 70

    def test_365_day_period_allows_73(self):
        assert gap_days_allowed(365, AdherenceConfig()) == 73

    def test_half_rounds_up(self):
        assert gap_days_allowed(2, AdherenceConfig(gap_allowance_fraction=0.25)) == 1

    def test_fraction_is_configurable(self):
        assert gap_days_allowed(100, AdherenceConfig(gap_allowance_fraction=0.10)) == 10


class TestRefills:
    def test_shortfall_never_negative(self):
        assert coverage_shortfall(20, 45) == 0
        assert coverage_shortfall(47, 10) == 37

    def test_refills_use_ceiling_division(self):
        assert remaining_refills_needed(31, 30) == 2
        assert remaining_refills_needed(30, 30) == 1
        assert remaining_refills_needed(0, 30) == 0

    def test_days_per_refill_is_mean_of_completed_fills(self):
        fills = [_make_fill(30), _make_fill(90), _make_fill(90, status=FillStatus.CANCELLED)]
        assert estimate_days_per_refill(fills, AdherenceConfig()) == 60

    def test_days_per_refill_defaults_missing_supply(self):
        assert estimate_days_per_refill([_make_fill(None)], AdherenceConfig()) == 30

    def test_days_per_refill_without_fills_uses_standard(self):
        assert estimate_days_per_refill([], AdherenceConfig(standard_days_supply=28)) == 28


class TestDelayBudget:
    def test_budget_divides_remaining_gap_days(self):
        assert delay_budget(10, 2) == 5
        assert delay_budget(35, 2) == 17.5

    def test_budget_may_be_negative(self):
        assert delay_budget(-28, 2) == -14

    def test_no_refills_means_no_budget(self):
        assert delay_budget(20, 0) is None


class TestCalculateGapBudget:
    def test_over_budget_patient(self):
        coverage = CoverageResult(covered_days=253, treatment_days=351, pdc=253 / 351, gap_days_used=98, covered_days_to_date=240)
        supply = SupplyState(days_until_runout=0, supply_on_hand=0)
        budget = calculate_gap_budget(coverage, supply, 60, [_make_fill(30)], AdherenceConfig())
        assert budget.gap_days_allowed == 70
        assert budget.gap_days_used == 98
        assert budget.gap_days_remaining == -28
        assert budget.coverage_shortfall == 60
        assert budget.remaining_refills_needed == 2
        assert budget.delay_budget_per_refill == -14

    def test_enough_supply_on_hand(self):
        coverage = CoverageResult(covered_days=340, treatment_days=365, pdc=340 / 365, gap_days_used=25, covered_days_to_date=300)
        supply = SupplyState(days_until_runout=40, supply_on_hand=40)
        budget = calculate_gap_budget(coverage, supply, 40, [_make_fill(90)], AdherenceConfig())
        assert budget.remaining_refills_needed == 0
        assert budget.delay_budget_per_refill is None
        assert budget.gap_days_remaining == 48
