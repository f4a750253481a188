from __future__ import annotations

import hashlib
import os
from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .common import TreatmentPeriod
from .enums import (
    ACTIVE_TIERS,
    CONTACT_WINDOWS,
    TIER_ACTIONS,
    AggregateStatus,
    FragilityTier,
    MAMeasure,
    PriorityQueue,
)


class Warning(BaseModel):
    code: str
    message: str
    patient_id: Optional[str] = None
    scope_key: Optional[str] = None


def _default_base_scores() -> dict[FragilityTier, int]:
    return {
        FragilityTier.F1_IMMINENT: 100,
        FragilityTier.F2_FRAGILE: 80,
        FragilityTier.F3_MODERATE: 60,
        FragilityTier.F4_COMFORTABLE: 40,
        FragilityTier.F5_SAFE: 20,
    }


class AdherenceConfig(BaseModel):
    """Every tunable of the engine. Overridable per run for regression replays."""
    model_config = ConfigDict(frozen=True)

    measurement_year: Optional[int] = None  # None -> year of the as-of date
    default_days_supply: int = Field(default=30, ge=1)
    standard_days_supply: int = Field(default=30, ge=1)
    gap_allowance_fraction: float = Field(default=0.20, ge=0, le=1)
    pdc_target: float = Field(default=0.80, gt=0, le=1)
    min_fills_for_denominator: int = Field(default=2, ge=1)

    # Delay-budget fence posts; lower bounds are inclusive.
    f2_min_delay_budget: float = 2
    f3_min_delay_budget: float = 6
    f4_min_delay_budget: float = 11
    f5_above_delay_budget: float = 20

    q4_tightening_enabled: bool = True
    q4_tightening_days_to_end: int = 60  # strict <
    q4_tightening_gap_days: int = 5  # <=

    base_scores: dict[FragilityTier, int] = Field(default_factory=_default_base_scores)
    bonus_out_of_meds: int = 30
    bonus_q4: int = 25
    bonus_multi_measure: int = 15
    bonus_new_patient: int = 10
    q4_months: tuple[int, ...] = (10, 11, 12)
    multi_measure_min: int = 2
    new_patient_window_days: int = 90

    queue_critical_min: int = 150
    queue_high_min: int = 100
    queue_watch_min: int = 80
    queue_medium_min: int = 60

    def year_for(self, as_of: date) -> int:
        return self.measurement_year if self.measurement_year is not None else as_of.year

    def fingerprint(self) -> str:
        return hashlib.sha256(self.model_dump_json().encode()).hexdigest()

    @classmethod
    def from_env(cls, prefix: str = "RXTRIAGE_") -> "AdherenceConfig":
        """Build a config from ``RXTRIAGE_<FIELD>`` variables; unset fields keep defaults."""
        overrides: dict[str, object] = {}
        for name, field in cls.model_fields.items():
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            if field.annotation in (bool, Optional[bool]):
                overrides[name] = raw.strip().lower() in {"1", "true", "yes", "on"}
            elif name == "q4_months":
                overrides[name] = tuple(int(v) for v in raw.split(",") if v.strip())
            elif name == "base_scores":
                continue  # structured; override in code
            else:
                overrides[name] = raw.strip()
        return cls.model_validate(overrides)


# ── Stage outputs ──────────────────────────────────────────────────────────


class CoverageResult(BaseModel):
    covered_days: int = Field(ge=0)
    treatment_days: int = Field(ge=1)
    pdc: float = Field(ge=0, le=1)
    gap_days_used: int = Field(ge=0)
    covered_days_to_date: int = Field(default=0, ge=0)


class SupplyState(BaseModel):
    last_fill_date: Optional[date] = None
    runout_date: Optional[date] = None
    days_until_runout: int = 0
    supply_on_hand: int = Field(default=0, ge=0)


class GapBudget(BaseModel):
    gap_days_allowed: int = Field(ge=0)
    gap_days_used: int = Field(ge=0)
    gap_days_remaining: int
    coverage_shortfall: int = Field(ge=0)
    estimated_days_per_refill: int = Field(ge=1)
    remaining_refills_needed: int = Field(ge=0)
    delay_budget_per_refill: Optional[float] = None


class Projection(BaseModel):
    pdc_status_quo: float = Field(ge=0, le=1)
    pdc_perfect: float = Field(ge=0, le=1)
    days_remaining: int = Field(ge=0)


# ── Fragility tier (closed tagged union) ───────────────────────────────────


class _TierVariant(BaseModel):
    model_config = ConfigDict(frozen=True)

    @computed_field  # type: ignore[misc]
    @property
    def contact_window(self) -> str:
        return CONTACT_WINDOWS[self.tier]

    @computed_field  # type: ignore[misc]
    @property
    def action(self) -> str:
        return TIER_ACTIONS[self.tier]


class InsufficientHistory(_TierVariant):
    kind: Literal["insufficient_history"] = "insufficient_history"
    fill_count: int = Field(ge=0)

    @computed_field  # type: ignore[misc]
    @property
    def tier(self) -> FragilityTier:
        return FragilityTier.D1a_AT_RISK


class Unsalvageable(_TierVariant):
    kind: Literal["unsalvageable"] = "unsalvageable"
    pdc_perfect: float

    @computed_field  # type: ignore[misc]
    @property
    def tier(self) -> FragilityTier:
        return FragilityTier.T5_UNSALVAGEABLE


class Compliant(_TierVariant):
    kind: Literal["compliant"] = "compliant"
    pdc_status_quo: float

    @computed_field  # type: ignore[misc]
    @property
    def tier(self) -> FragilityTier:
        return FragilityTier.COMPLIANT


class ActiveTier(_TierVariant):
    kind: Literal["active"] = "active"
    tier: FragilityTier
    base_tier: FragilityTier
    delay_budget_per_refill: Optional[float] = None
    q4_adjusted: bool = False

    @field_validator("tier", "base_tier")
    @classmethod
    def _only_delay_budget_tiers(cls, value: FragilityTier) -> FragilityTier:
        if value not in ACTIVE_TIERS:
            raise ValueError(f"{value.value} is not a delay-budget tier")
        return value


TierAssessment = Annotated[
    Union[InsufficientHistory, Unsalvageable, Compliant, ActiveTier],
    Field(discriminator="kind"),
]


# ── Priority (closed tagged union) ─────────────────────────────────────────


class PriorityBonuses(BaseModel):
    out_of_meds: int = 0
    q4: int = 0
    multi_measure: int = 0
    new_patient: int = 0

    def total(self) -> int:
        return self.out_of_meds + self.q4 + self.multi_measure + self.new_patient


class PriorityResult(BaseModel):
    base_score: int
    bonuses: PriorityBonuses
    total: int
    queue: PriorityQueue


class Scored(BaseModel):
    kind: Literal["scored"] = "scored"
    result: PriorityResult


class Urgent(BaseModel):
    kind: Literal["urgent"] = "urgent"
    reason: Literal["second_fill_outreach"] = "second_fill_outreach"


class NoActivePriority(BaseModel):
    kind: Literal["none"] = "none"
    reason: Literal["compliant", "unsalvageable", "no_refills_needed"]


PriorityOutcome = Annotated[
    Union[Scored, Urgent, NoActivePriority],
    Field(discriminator="kind"),
]


def priority_score(outcome: Scored | Urgent | NoActivePriority) -> Optional[int]:
    return outcome.result.total if isinstance(outcome, Scored) else None


# ── Per-scope results ──────────────────────────────────────────────────────


class ScopeResult(BaseModel):
    patient_id: str
    measure: MAMeasure
    treatment_period: TreatmentPeriod
    fill_count: int = Field(ge=0)
    coverage: CoverageResult
    supply: SupplyState
    gap_budget: GapBudget
    projection: Projection
    assessment: TierAssessment
    priority: PriorityOutcome

    @property
    def tier(self) -> FragilityTier:
        return self.assessment.tier

    @property
    def priority_score(self) -> Optional[int]:
        return priority_score(self.priority)

    @property
    def q4_adjusted(self) -> bool:
        return isinstance(self.assessment, ActiveTier) and self.assessment.q4_adjusted


class MedicationResult(ScopeResult):
    drug_code: str
    display_name: str


class MedicationFailure(BaseModel):
    """A drug whose own scope could not be evaluated this run."""
    drug_code: str
    display_name: str
    reason: str


class MeasureResult(ScopeResult):
    drug_codes: list[str] = Field(default_factory=list)
    medications: list[MedicationResult] = Field(default_factory=list)
    failed_medications: list[MedicationFailure] = Field(default_factory=list)


class MeasureFailure(BaseModel):
    """
    A tracked measure with no usable measure-level result. Medication results
    that did succeed are still carried so they can be reported and stored.
    """
    patient_id: str
    measure: MAMeasure
    reason: str
    drug_codes: list[str] = Field(default_factory=list)
    medications: list[MedicationResult] = Field(default_factory=list)
    failed_medications: list[MedicationFailure] = Field(default_factory=list)


# ── Aggregates ─────────────────────────────────────────────────────────────


class MeasureAggregate(BaseModel):
    measure: MAMeasure
    status: AggregateStatus
    tier: Optional[FragilityTier] = None
    pdc: Optional[float] = None
    priority_score: Optional[int] = None
    queue: Optional[PriorityQueue] = None
    urgent: bool = False
    days_until_runout: Optional[int] = None
    medications_at_risk: list[str] = Field(default_factory=list)


class PatientAggregate(BaseModel):
    patient_id: str
    status: AggregateStatus
    worst_tier: Optional[FragilityTier] = None
    min_pdc: Optional[float] = None
    max_priority_score: Optional[int] = None
    queue: Optional[PriorityQueue] = None
    urgent: bool = False
    days_until_earliest_runout: Optional[int] = None
    pdc_by_measure: dict[MAMeasure, Optional[float]] = Field(default_factory=dict)
    measures: list[MeasureAggregate] = Field(default_factory=list)


class EvaluationReceipt(BaseModel):
    as_of: date
    measurement_year: int
    config_sha256: str = Field(pattern=r"^[a-f0-9]{64}$")
    inputs_sha256: str = Field(pattern=r"^[a-f0-9]{64}$")
    outputs_sha256: str = Field(pattern=r"^[a-f0-9]{64}$")
    fills_received: int = Field(ge=0)
    measures_evaluated: int = Field(ge=0)
    medications_evaluated: int = Field(ge=0)
    warnings: int = Field(ge=0)


class PatientEvaluation(BaseModel):
    """Full output of one engine run for one patient."""
    patient_id: str
    as_of: date
    measurement_year: int
    measures: list[MeasureResult] = Field(default_factory=list)
    failed_measures: list[MeasureFailure] = Field(default_factory=list)
    aggregate: PatientAggregate
    warnings: list[Warning] = Field(default_factory=list)
    receipt: Optional[EvaluationReceipt] = None
