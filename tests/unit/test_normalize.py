"""
Unit tests for fill normalization (Step 1).
"""
from datetime import date, datetime

import pytest

from apps.worker.steps.step01_normalize import (
    completed_fills,
    effective_days_supply,
    normalize_fills,
    parse_fill_date,
)
from packages.shared.errors import FillValidationError
from packages.shared.models import AdherenceConfig, FillRecord, FillStatus


def _make_fill(
    fill_date="2025-01-15",
    days_supply: int | None = 30,
    status: FillStatus = FillStatus.COMPLETED,
    drug_code: str = "83367",
) -> FillRecord:
    return FillRecord(drug_code=drug_code, fill_date=fill_date, days_supply=days_supply, status=status)


class TestParseFillDate:
    def test_iso_date_string(self):
        assert parse_fill_date(_make_fill("2025-03-04")) == date(2025, 3, 4)

    def test_fhir_datetime_with_zulu(self):
        assert parse_fill_date(_make_fill("2025-03-04T15:30:00Z")) == date(2025, 3, 4)

    def test_datetime_is_truncated_on_construction(self):
        fill = _make_fill(datetime(2025, 3, 4, 23, 59))
        assert fill.fill_date == date(2025, 3, 4)

    def test_unparseable_date_raises(self):
        with pytest.raises(FillValidationError) as exc:
            parse_fill_date(_make_fill("03/04/2025", drug_code="6809"))
        assert exc.value.drug_code == "6809"

    def test_blank_date_raises(self):
        with pytest.raises(FillValidationError):
            parse_fill_date(_make_fill("   "))


class TestDaysSupply:
    def test_missing_days_supply_defaults_to_30(self):
        assert effective_days_supply(_make_fill(days_supply=None), AdherenceConfig()) == 30

    def test_zero_or_negative_days_supply_defaults(self):
        config = AdherenceConfig()
        assert effective_days_supply(_make_fill(days_supply=0), config) == 30
        assert effective_days_supply(_make_fill(days_supply=-5), config) == 30

    def test_default_is_configurable(self):
        config = AdherenceConfig(default_days_supply=28)
        assert effective_days_supply(_make_fill(days_supply=None), config) == 28

    def test_fractional_days_supply_truncated(self):
        assert _make_fill(days_supply=30.0).days_supply == 30


class TestNormalizeFills:
    def test_reversed_and_cancelled_fills_excluded(self):
        fills = [
            _make_fill("2025-01-01"),
            _make_fill("2025-02-01", status=FillStatus.ENTERED_IN_ERROR),
            _make_fill("2025-03-01", status=FillStatus.CANCELLED),
            _make_fill("2025-04-01", status=FillStatus.IN_PROGRESS),
        ]
        assert len(completed_fills(fills)) == 1
        intervals = normalize_fills(fills, AdherenceConfig())
        assert [iv.start for iv in intervals] == [date(2025, 1, 1)]

    def test_intervals_are_half_open_and_sorted(self):
        fills = [_make_fill("2025-03-01", 30), _make_fill("2025-01-01", 90)]
        intervals = normalize_fills(fills, AdherenceConfig())
        assert intervals[0].start == date(2025, 1, 1)
        assert intervals[0].end == date(2025, 4, 1)
        assert intervals[0].days == 90
        assert intervals[1].start == date(2025, 3, 1)

    def test_bad_date_on_cancelled_fill_is_ignored(self):
        fills = [_make_fill("garbage", status=FillStatus.CANCELLED), _make_fill("2025-01-01")]
        assert len(normalize_fills(fills, AdherenceConfig())) == 1
