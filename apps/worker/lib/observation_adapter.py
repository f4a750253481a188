"""
MeasureResult / MedicationResult -> AdherenceObservation (output boundary).

Every field of the observation is populated explicitly from a result; the
DTO forbids extra keys so a renamed result field fails loudly here instead
of silently dropping out of the payload. Scopes that could not be evaluated
become ``insufficient_data`` observations with no metrics, so they replace
whatever was current for their key.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.shared.models import (
    AggregateStatus,
    FragilityTier,
    MAMeasure,
    MeasureFailure,
    MeasureResult,
    MedicationFailure,
    MedicationResult,
    PatientEvaluation,
    PriorityQueue,
    ResultScope,
    Scored,
    Urgent,
)

_METRIC_FIELDS = (
    "pdc",
    "pdc_status_quo",
    "pdc_perfect",
    "covered_days",
    "treatment_days",
    "gap_days_used",
    "gap_days_allowed",
    "gap_days_remaining",
    "days_until_runout",
    "fragility_tier",
)


class AdherenceObservation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    patient_id: str
    as_of: date
    scope: ResultScope
    measure: MAMeasure
    status: AggregateStatus = AggregateStatus.OK
    reason: Optional[str] = None
    is_current: bool = True

    pdc: Optional[float] = Field(default=None, ge=0, le=1)
    pdc_status_quo: Optional[float] = Field(default=None, ge=0, le=1)
    pdc_perfect: Optional[float] = Field(default=None, ge=0, le=1)
    covered_days: Optional[int] = Field(default=None, ge=0)
    treatment_days: Optional[int] = Field(default=None, ge=1)
    gap_days_used: Optional[int] = Field(default=None, ge=0)
    gap_days_allowed: Optional[int] = Field(default=None, ge=0)
    gap_days_remaining: Optional[int] = None
    delay_budget: Optional[float] = None
    days_until_runout: Optional[int] = None
    fragility_tier: Optional[FragilityTier] = None
    priority_score: Optional[int] = None
    queue: Optional[PriorityQueue] = None
    urgent: bool = False
    q4_adjusted: bool = False

    # Medication level only
    rxnorm: Optional[str] = None
    display: Optional[str] = None
    remaining_refills: Optional[int] = None
    supply_on_hand: Optional[int] = None
    coverage_shortfall: Optional[int] = None
    estimated_days_per_refill: Optional[int] = None

    @model_validator(mode="after")
    def _metrics_match_status(self) -> "AdherenceObservation":
        missing = [name for name in _METRIC_FIELDS if getattr(self, name) is None]
        if self.status == AggregateStatus.OK and missing:
            raise ValueError(f"ok observation is missing {', '.join(missing)}")
        if self.status != AggregateStatus.OK and len(missing) != len(_METRIC_FIELDS):
            raise ValueError("insufficient_data observation cannot carry metrics")
        return self

    @property
    def scope_code(self) -> str:
        return self.rxnorm if self.scope == ResultScope.MEDICATION and self.rxnorm else self.measure.value


def _common_fields(result: MeasureResult | MedicationResult, as_of: date) -> dict:
    queue = result.priority.result.queue if isinstance(result.priority, Scored) else None
    return {
        "patient_id": result.patient_id,
        "as_of": as_of,
        "measure": result.measure,
        "pdc": result.coverage.pdc,
        "pdc_status_quo": result.projection.pdc_status_quo,
        "pdc_perfect": result.projection.pdc_perfect,
        "covered_days": result.coverage.covered_days,
        "treatment_days": result.coverage.treatment_days,
        "gap_days_used": result.gap_budget.gap_days_used,
        "gap_days_allowed": result.gap_budget.gap_days_allowed,
        "gap_days_remaining": result.gap_budget.gap_days_remaining,
        "delay_budget": result.gap_budget.delay_budget_per_refill,
        "days_until_runout": result.supply.days_until_runout,
        "fragility_tier": result.tier,
        "priority_score": result.priority_score,
        "queue": queue,
        "urgent": isinstance(result.priority, Urgent),
        "q4_adjusted": result.q4_adjusted,
    }


def measure_observation(result: MeasureResult, as_of: date) -> AdherenceObservation:
    return AdherenceObservation(scope=ResultScope.MEASURE, **_common_fields(result, as_of))


def medication_observation(result: MedicationResult, as_of: date) -> AdherenceObservation:
    return AdherenceObservation(
        scope=ResultScope.MEDICATION,
        rxnorm=result.drug_code,
        display=result.display_name,
        remaining_refills=result.gap_budget.remaining_refills_needed,
        supply_on_hand=result.supply.supply_on_hand,
        coverage_shortfall=result.gap_budget.coverage_shortfall,
        estimated_days_per_refill=result.gap_budget.estimated_days_per_refill,
        **_common_fields(result, as_of),
    )


def insufficient_measure_observation(failure: MeasureFailure, as_of: date) -> AdherenceObservation:
    return AdherenceObservation(
        patient_id=failure.patient_id,
        as_of=as_of,
        scope=ResultScope.MEASURE,
        measure=failure.measure,
        status=AggregateStatus.INSUFFICIENT_DATA,
        reason=failure.reason,
    )


def insufficient_medication_observation(
    patient_id: str,
    measure: MAMeasure,
    failure: MedicationFailure,
    as_of: date,
) -> AdherenceObservation:
    return AdherenceObservation(
        patient_id=patient_id,
        as_of=as_of,
        scope=ResultScope.MEDICATION,
        measure=measure,
        status=AggregateStatus.INSUFFICIENT_DATA,
        reason=failure.reason,
        rxnorm=failure.drug_code,
        display=failure.display_name,
    )


def observations_for(evaluation: PatientEvaluation) -> list[AdherenceObservation]:
    """Measure observation first, then its medications, in measure order."""
    as_of = evaluation.as_of
    by_measure: dict[MAMeasure, MeasureResult | MeasureFailure] = {
        **{m.measure: m for m in evaluation.measures},
        **{f.measure: f for f in evaluation.failed_measures},
    }

    observations: list[AdherenceObservation] = []
    for measure in sorted(by_measure, key=lambda m: m.value):
        outcome = by_measure[measure]
        if isinstance(outcome, MeasureFailure):
            observations.append(insufficient_measure_observation(outcome, as_of))
        else:
            observations.append(measure_observation(outcome, as_of))

        entries: list[tuple[str, AdherenceObservation]] = [
            (med.drug_code, medication_observation(med, as_of)) for med in outcome.medications
        ]
        entries.extend(
            (failed.drug_code, insufficient_medication_observation(evaluation.patient_id, measure, failed, as_of))
            for failed in outcome.failed_medications
        )
        observations.extend(obs for _, obs in sorted(entries, key=lambda entry: entry[0]))
    return observations
