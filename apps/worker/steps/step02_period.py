"""
Step 2 - Treatment period resolution.
IPSD (first in-year fill) through min(Dec 31, enrollment end, death date), inclusive.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from packages.shared.errors import FillValidationError
from packages.shared.models import CoverageInterval, TreatmentPeriod


def inclusive_days(start: date, end: date) -> int:
    return (end - start).days + 1


def resolve_period_end(
    measurement_year: int,
    enrollment_end: Optional[date] = None,
    death_date: Optional[date] = None,
) -> date:
    candidates = [date(measurement_year, 12, 31)]
    candidates.extend(d for d in (enrollment_end, death_date) if d is not None)
    return min(candidates)


def resolve_treatment_period(
    intervals: list[CoverageInterval],
    measurement_year: int,
    enrollment_end: Optional[date] = None,
    death_date: Optional[date] = None,
) -> TreatmentPeriod:
    """
    Resolve the measurement window for a scope (one drug, or every drug of a measure).
    Raises FillValidationError when no in-year fill anchors the window or the
    window is empty (e.g. enrollment ended before the first fill).
    """
    year_start = date(measurement_year, 1, 1)
    year_end = date(measurement_year, 12, 31)
    in_year = [iv.start for iv in intervals if year_start <= iv.start <= year_end]
    if not in_year:
        raise FillValidationError(f"No completed fills dated in {measurement_year}")

    start = min(in_year)
    end = resolve_period_end(measurement_year, enrollment_end, death_date)
    if start > end:
        raise FillValidationError(
            f"Treatment period is empty: first fill {start.isoformat()} after period end {end.isoformat()}"
        )
    return TreatmentPeriod(start=start, end=end, total_days=inclusive_days(start, end))


def days_remaining(period: TreatmentPeriod, as_of: date) -> int:
    """Days from as_of (inclusive) through period end; the whole period if as_of precedes it."""
    if as_of > period.end:
        return 0
    return inclusive_days(max(as_of, period.start), period.end)


def fills_in_period(intervals: list[CoverageInterval], period: TreatmentPeriod) -> int:
    """Completed fills dated inside the period (the D1a denominator count)."""
    return sum(1 for iv in intervals if period.contains(iv.start))
