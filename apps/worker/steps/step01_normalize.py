"""
Step 1 - Fill normalization.
Drop non-completed fills, default missing days-supply, emit half-open coverage intervals.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta

from packages.shared.errors import FillValidationError
from packages.shared.models import AdherenceConfig, CoverageInterval, FillRecord, FillStatus


def parse_fill_date(fill: FillRecord) -> date:
    """Return the fill date as a ``date``; raise FillValidationError if unparseable."""
    value = fill.fill_date
    if isinstance(value, date):
        return value
    text = (value or "").strip()
    if not text:
        raise FillValidationError(f"Fill for {fill.drug_code} has no fill date", fill.drug_code)
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise FillValidationError(
            f"Unparseable fill date {text!r} for {fill.drug_code}", fill.drug_code
        ) from None


def effective_days_supply(fill: FillRecord, config: AdherenceConfig) -> int:
    if fill.days_supply is None or fill.days_supply <= 0:
        return config.default_days_supply
    return fill.days_supply


def completed_fills(fills: list[FillRecord]) -> list[FillRecord]:
    """Reversed, cancelled and in-flight dispenses never count."""
    return [f for f in fills if f.status == FillStatus.COMPLETED]


def normalize_fills(
    fills: list[FillRecord],
    config: AdherenceConfig,
) -> list[CoverageInterval]:
    """
    Convert raw fills into date-sorted [fill_date, fill_date + days_supply) intervals.
    Ties on start date are ordered by end date then drug code so output is stable.
    """
    intervals: list[CoverageInterval] = []
    for fill in completed_fills(fills):
        start = parse_fill_date(fill)
        end = start + timedelta(days=effective_days_supply(fill, config))
        intervals.append(CoverageInterval(start=start, end=end, drug_code=fill.drug_code))

    intervals.sort(key=lambda iv: (iv.start, iv.end, iv.drug_code or ""))
    return intervals
