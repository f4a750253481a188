"""
Step 3 - Coverage interval merging (HEDIS union).
Each calendar day is counted at most once, however many fills cover it.
"""
from __future__ import annotations

from datetime import date, timedelta

from packages.shared.models import CoverageInterval, CoverageResult, SupplyState, TreatmentPeriod


def merge_intervals(intervals: list[CoverageInterval]) -> list[CoverageInterval]:
    """
    Union half-open intervals into a sorted, disjoint list.
    Adjacent intervals (next.start == current.end) are merged as well.
    """
    if not intervals:
        return []

    ordered = sorted(intervals, key=lambda iv: (iv.start, iv.end))
    merged: list[CoverageInterval] = []
    cur_start, cur_end = ordered[0].start, ordered[0].end

    for iv in ordered[1:]:
        if iv.start <= cur_end:
            if iv.end > cur_end:
                cur_end = iv.end
            continue
        merged.append(CoverageInterval(start=cur_start, end=cur_end))
        cur_start, cur_end = iv.start, iv.end

    merged.append(CoverageInterval(start=cur_start, end=cur_end))
    return merged


def clip_intervals(
    intervals: list[CoverageInterval],
    start: date,
    end_exclusive: date,
) -> list[CoverageInterval]:
    clipped: list[CoverageInterval] = []
    for iv in intervals:
        lo = max(iv.start, start)
        hi = min(iv.end, end_exclusive)
        if lo < hi:
            clipped.append(CoverageInterval(start=lo, end=hi, drug_code=iv.drug_code))
    return clipped


def covered_days_between(
    intervals: list[CoverageInterval],
    start: date,
    end_exclusive: date,
) -> int:
    if end_exclusive <= start:
        return 0
    return sum(iv.days for iv in merge_intervals(clip_intervals(intervals, start, end_exclusive)))


def calculate_coverage(
    intervals: list[CoverageInterval],
    period: TreatmentPeriod,
    as_of: date,
) -> CoverageResult:
    """
    Covered days inside the period. Supply extending past the period end
    (e.g. a 90-day fill on Dec 1) is not credited to this measurement year.
    """
    period_end_excl = period.end + timedelta(days=1)
    covered = covered_days_between(intervals, period.start, period_end_excl)
    covered = min(covered, period.total_days)

    to_date_end = min(as_of, period_end_excl)
    covered_to_date = min(covered_days_between(intervals, period.start, to_date_end), covered)

    return CoverageResult(
        covered_days=covered,
        treatment_days=period.total_days,
        pdc=min(1.0, covered / period.total_days),
        gap_days_used=period.total_days - covered,
        covered_days_to_date=covered_to_date,
    )


def supply_state(intervals: list[CoverageInterval], as_of: date) -> SupplyState:
    """
    Runout is taken from the unclipped union, so stockpiled early refills
    push the runout date out rather than being lost.
    """
    if not intervals:
        return SupplyState()

    merged = merge_intervals(intervals)
    started = [iv for iv in merged if iv.start <= as_of]
    block = started[-1] if started else merged[0]

    on_hand = sum(
        (iv.end - max(iv.start, as_of)).days
        for iv in merged
        if iv.end > as_of
    )

    return SupplyState(
        last_fill_date=max(iv.start for iv in intervals),
        runout_date=block.end,
        days_until_runout=(block.end - as_of).days,
        supply_on_hand=max(on_hand, 0),
    )
