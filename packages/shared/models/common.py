from datetime import date, datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import FillStatus, MAMeasure


class FillRecord(BaseModel):
    """One dispensing event as received from the dispense collaborator.

    ``fill_date`` may still be an ISO string here; it is parsed (and rejected
    if unparseable) by the fill normalizer, not at construction time.
    """
    model_config = ConfigDict(frozen=True)

    drug_code: str
    fill_date: Union[date, str]
    days_supply: Optional[int] = None
    status: FillStatus = FillStatus.COMPLETED
    display_name: Optional[str] = None
    measure: Optional[MAMeasure] = None
    fill_id: Optional[str] = None

    @field_validator("fill_date", mode="before")
    @classmethod
    def _truncate_datetime(cls, value):
        if isinstance(value, datetime):
            return value.date()
        return value

    @field_validator("days_supply", mode="before")
    @classmethod
    def _coerce_days_supply(cls, value):
        # Quantity values arrive as decimals; partial days are not dispensed.
        if isinstance(value, float):
            return int(value)
        return value


class CoverageInterval(BaseModel):
    """Half-open interval [start, end) of days with medication on hand."""
    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    drug_code: Optional[str] = None

    @property
    def days(self) -> int:
        return max((self.end - self.start).days, 0)


class TreatmentPeriod(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    total_days: int = Field(ge=1)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end
