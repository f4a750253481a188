"""
Unit tests for coverage interval merging and supply state (Step 3).
"""
from datetime import date, timedelta

from apps.worker.steps.step03_coverage import (
    calculate_coverage,
    covered_days_between,
    merge_intervals,
    supply_state,
)
from packages.shared.models import CoverageInterval, TreatmentPeriod

YEAR_2025 = TreatmentPeriod(start=date(2025, 1, 1), end=date(2025, 12, 31), total_days=365)


def _iv(start: date, days: int = 30) -> CoverageInterval:
    return CoverageInterval(start=start, end=start + timedelta(days=days))


class TestMergeIntervals:
    def test_overlapping_fills_are_not_double_counted(self):
        intervals = [_iv(date(2025, 1, 1)), _iv(date(2025, 1, 15))]
        merged = merge_intervals(intervals)
        assert len(merged) == 1
        assert merged[0].days == 44
        assert sum(iv.days for iv in intervals) == 60

    def test_adjacent_fills_merge(self):
        merged = merge_intervals([_iv(date(2025, 1, 1)), _iv(date(2025, 1, 31))])
        assert merged == [CoverageInterval(start=date(2025, 1, 1), end=date(2025, 3, 2))]

    def test_contained_fill_adds_nothing(self):
        merged = merge_intervals([_iv(date(2025, 1, 1), 90), _iv(date(2025, 2, 1), 10)])
        assert [iv.days for iv in merged] == [90]

    def test_disjoint_fills_stay_separate(self):
        merged = merge_intervals([_iv(date(2025, 5, 1)), _iv(date(2025, 1, 1))])
        assert [iv.start for iv in merged] == [date(2025, 1, 1), date(2025, 5, 1)]

    def test_empty(self):
        assert merge_intervals([]) == []


class TestCalculateCoverage:
    def test_year_end_cap_for_90_day_fill_on_dec_1(self):
        period = TreatmentPeriod(start=date(2025, 12, 1), end=date(2025, 12, 31), total_days=31)
        result = calculate_coverage([_iv(date(2025, 12, 1), 90)], period, as_of=date(2025, 12, 1))
        assert result.covered_days == 31
        assert result.pdc == 1.0
        assert result.gap_days_used == 0

    def test_covered_never_exceeds_treatment_days(self):
        intervals = [_iv(date(2025, 1, 1) + timedelta(days=10 * i), 90) for i in range(40)]
        result = calculate_coverage(intervals, YEAR_2025, as_of=date(2025, 6, 1))
        assert result.covered_days <= result.treatment_days
        assert result.covered_days == 365

    def test_pdc_is_covered_over_treatment_days(self):
        result = calculate_coverage([_iv(date(2025, 1, 1), 90), _iv(date(2025, 7, 10), 90)], YEAR_2025, date(2025, 11, 15))
        assert result.covered_days == 180
        assert result.pdc == 180 / 365
        assert result.gap_days_used == 185

    def test_covered_to_date_stops_before_as_of(self):
        result = calculate_coverage([_iv(date(2025, 1, 1), 90)], YEAR_2025, as_of=date(2025, 1, 11))
        assert result.covered_days == 90
        assert result.covered_days_to_date == 10

    def test_prior_year_supply_is_clipped(self):
        period = TreatmentPeriod(start=date(2025, 1, 10), end=date(2025, 12, 31), total_days=356)
        assert covered_days_between([_iv(date(2024, 12, 20))], period.start, period.end + timedelta(days=1)) == 9

    def test_additional_non_overlapping_fill_never_lowers_pdc(self):
        base = [_iv(date(2025, 1, 1)), _iv(date(2025, 3, 1))]
        before = calculate_coverage(base, YEAR_2025, date(2025, 12, 31)).pdc
        after = calculate_coverage(base + [_iv(date(2025, 6, 1))], YEAR_2025, date(2025, 12, 31)).pdc
        assert after >= before


class TestSupplyState:
    def test_supply_on_hand_and_runout(self):
        state = supply_state([_iv(date(2025, 11, 1))], as_of=date(2025, 11, 15))
        assert state.runout_date == date(2025, 12, 1)
        assert state.days_until_runout == 16
        assert state.supply_on_hand == 16
        assert state.last_fill_date == date(2025, 11, 1)

    def test_out_of_meds_is_negative(self):
        state = supply_state([_iv(date(2025, 9, 1))], as_of=date(2025, 11, 15))
        assert state.days_until_runout < 0
        assert state.supply_on_hand == 0

    def test_early_refill_extends_runout(self):
        state = supply_state([_iv(date(2025, 11, 1)), _iv(date(2025, 11, 10))], as_of=date(2025, 11, 15))
        assert state.runout_date == date(2025, 12, 10)
        assert state.supply_on_hand == 25

    def test_no_intervals(self):
        state = supply_state([], as_of=date(2025, 11, 15))
        assert state.runout_date is None
        assert state.supply_on_hand == 0
