"""
Pipeline orchestrator - runs steps 1-9 for one patient.

Measure level (HEDIS union across every drug of the class) and medication
level (each drug alone) are computed independently. A bad record only takes
down the drug it belongs to; the measure and the rest of the patient are
still evaluated from what remains.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Optional

from apps.worker.lib.measure_classifier import MeasureClassifier
from apps.worker.steps.step01_normalize import completed_fills, normalize_fills, parse_fill_date
from apps.worker.steps.step02_period import days_remaining, fills_in_period, resolve_treatment_period
from apps.worker.steps.step03_coverage import calculate_coverage, supply_state
from apps.worker.steps.step04_gap_budget import calculate_gap_budget
from apps.worker.steps.step05_projection import project_pdc
from apps.worker.steps.step06_fragility import classify_fragility
from apps.worker.steps.step07_priority import score_priority
from apps.worker.steps.step08_aggregate import aggregate_patient
from apps.worker.steps.step09_receipt import create_receipt
from packages.shared.errors import FillValidationError, MissingPatientIdentity
from packages.shared.models import (
    AdherenceConfig,
    FillRecord,
    FillStatus,
    MAMeasure,
    MeasureFailure,
    MeasureResult,
    MedicationFailure,
    MedicationResult,
    PatientEvaluation,
    Warning,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeContext:
    """Inputs shared by every scope of one patient evaluation."""
    patient_id: str
    as_of: date
    measurement_year: int
    config: AdherenceConfig
    measure_count: int
    first_fill_date: Optional[date]
    enrollment_end: Optional[date] = None
    death_date: Optional[date] = None


def evaluate_scope(fills: list[FillRecord], ctx: ScopeContext) -> dict:
    """Run steps 1-7 over one scope's fills. Raises FillValidationError."""
    config = ctx.config
    intervals = normalize_fills(fills, config)
    period = resolve_treatment_period(intervals, ctx.measurement_year, ctx.enrollment_end, ctx.death_date)
    coverage = calculate_coverage(intervals, period, ctx.as_of)
    supply = supply_state(intervals, ctx.as_of)
    remaining = days_remaining(period, ctx.as_of)
    gap_budget = calculate_gap_budget(coverage, supply, remaining, fills, config)
    projection = project_pdc(coverage, supply, remaining)
    fill_count = fills_in_period(intervals, period)
    assessment = classify_fragility(fill_count, projection, gap_budget, config)
    priority = score_priority(
        assessment, gap_budget, supply, ctx.as_of, ctx.measure_count, ctx.first_fill_date, config
    )
    return {
        "treatment_period": period,
        "fill_count": fill_count,
        "coverage": coverage,
        "supply": supply,
        "gap_budget": gap_budget,
        "projection": projection,
        "assessment": assessment,
        "priority": priority,
    }


def group_fills_by_measure(
    fills: list[FillRecord],
    classifier: MeasureClassifier,
) -> dict[MAMeasure, list[FillRecord]]:
    """Only completed fills make a measure tracked; non-MA drugs are ignored."""
    grouped: dict[MAMeasure, list[FillRecord]] = defaultdict(list)
    tracked: set[MAMeasure] = set()
    for fill in fills:
        measure = classifier.measure_for(fill)
        if measure is None:
            continue
        grouped[measure].append(fill)
        if fill.status == FillStatus.COMPLETED:
            tracked.add(measure)
    return {m: grouped[m] for m in sorted(tracked, key=lambda m: m.value)}


def group_fills_by_medication(fills: list[FillRecord]) -> dict[str, list[FillRecord]]:
    grouped: dict[str, list[FillRecord]] = defaultdict(list)
    for fill in fills:
        grouped[fill.drug_code].append(fill)
    return dict(sorted(grouped.items()))


def first_completed_fill_date(fills: list[FillRecord]) -> Optional[date]:
    dates: list[date] = []
    for fill in completed_fills(fills):
        try:
            dates.append(parse_fill_date(fill))
        except FillValidationError:
            continue  # reported by the scope that owns the fill
    return min(dates) if dates else None


def _display_name(drug_code: str, fills: list[FillRecord]) -> str:
    for fill in fills:
        if fill.display_name:
            return fill.display_name
    return drug_code


def _scope_warning(ctx: ScopeContext, scope_key: str, message: str, code: str = "FILL_VALIDATION") -> Warning:
    logger.warning(f"Patient {ctx.patient_id} {scope_key}: {message}")
    return Warning(
        code=code,
        message=message,
        patient_id=ctx.patient_id,
        scope_key=scope_key,
    )


def evaluate_measure(
    measure: MAMeasure,
    fills: list[FillRecord],
    ctx: ScopeContext,
    include_medication_level: bool = True,
) -> tuple[MeasureResult | MeasureFailure, list[Warning]]:
    """
    Evaluate one measure and, optionally, each of its drugs.

    A drug with an unreadable record is dropped from the measure-level union
    and reported on its own; the measure is computed from the drugs that
    remain. Medication results that succeeded are kept even when the
    measure-level scope fails.
    """
    warnings: list[Warning] = []
    medications: list[MedicationResult] = []
    failed_medications: list[MedicationFailure] = []
    usable_fills: list[FillRecord] = []
    excluded: list[str] = []

    for drug_code, drug_fills in group_fills_by_medication(fills).items():
        scope_key = f"{measure.value}/{drug_code}"
        display_name = _display_name(drug_code, drug_fills)
        try:
            normalize_fills(drug_fills, ctx.config)
        except FillValidationError as exc:
            warnings.append(_scope_warning(ctx, scope_key, str(exc)))
            excluded.append(drug_code)
            if include_medication_level:
                failed_medications.append(
                    MedicationFailure(drug_code=drug_code, display_name=display_name, reason=str(exc))
                )
            continue
        usable_fills.extend(drug_fills)

        if not include_medication_level:
            continue
        try:
            parts = evaluate_scope(drug_fills, ctx)
        except FillValidationError as exc:
            warnings.append(_scope_warning(ctx, scope_key, str(exc)))
            failed_medications.append(
                MedicationFailure(drug_code=drug_code, display_name=display_name, reason=str(exc))
            )
            continue
        medications.append(MedicationResult(
            patient_id=ctx.patient_id,
            measure=measure,
            drug_code=drug_code,
            display_name=display_name,
            **parts,
        ))

    drug_codes = sorted({f.drug_code for f in fills})
    if not usable_fills:
        reason = f"No {measure.value} drug has readable fill records"
        warnings.append(_scope_warning(ctx, measure.value, reason))
        return MeasureFailure(
            patient_id=ctx.patient_id,
            measure=measure,
            reason=reason,
            drug_codes=drug_codes,
            medications=medications,
            failed_medications=failed_medications,
        ), warnings

    if excluded:
        warnings.append(_scope_warning(
            ctx,
            measure.value,
            f"{measure.value} computed without {', '.join(excluded)}",
            code="DRUG_EXCLUDED",
        ))

    try:
        parts = evaluate_scope(usable_fills, ctx)
    except FillValidationError as exc:
        warnings.append(_scope_warning(ctx, measure.value, str(exc)))
        return MeasureFailure(
            patient_id=ctx.patient_id,
            measure=measure,
            reason=str(exc),
            drug_codes=drug_codes,
            medications=medications,
            failed_medications=failed_medications,
        ), warnings

    result = MeasureResult(
        patient_id=ctx.patient_id,
        measure=measure,
        drug_codes=drug_codes,
        medications=medications,
        failed_medications=failed_medications,
        **parts,
    )
    return result, warnings


def evaluate_patient(
    patient_id: str,
    fills: list[FillRecord],
    as_of: date,
    config: Optional[AdherenceConfig] = None,
    classifier: Optional[MeasureClassifier] = None,
    enrollment_end: Optional[date] = None,
    death_date: Optional[date] = None,
    include_medication_level: bool = True,
) -> PatientEvaluation:
    """
    Evaluate one patient from their complete fill history as of ``as_of``.
    Pure: the same (fills, as_of, config) always yields the same evaluation.
    """
    if not patient_id or not str(patient_id).strip():
        raise MissingPatientIdentity("Fill history has no patient id")

    config = config or AdherenceConfig()
    classifier = classifier or MeasureClassifier()
    year = config.year_for(as_of)

    by_measure = group_fills_by_measure(fills, classifier)
    ma_fills = [fill for measure_fills in by_measure.values() for fill in measure_fills]
    ctx = ScopeContext(
        patient_id=patient_id,
        as_of=as_of,
        measurement_year=year,
        config=config,
        measure_count=len(by_measure),
        first_fill_date=first_completed_fill_date(ma_fills),
        enrollment_end=enrollment_end,
        death_date=death_date,
    )

    warnings: list[Warning] = []
    measures: list[MeasureResult] = []
    failed_measures: list[MeasureFailure] = []
    for measure, measure_fills in by_measure.items():
        outcome, scope_warnings = evaluate_measure(measure, measure_fills, ctx, include_medication_level)
        if isinstance(outcome, MeasureFailure):
            failed_measures.append(outcome)
        else:
            measures.append(outcome)
        warnings.extend(scope_warnings)

    results = {m.measure: m for m in measures}
    aggregate = aggregate_patient(patient_id, list(by_measure), results)
    receipt = create_receipt(patient_id, fills, as_of, year, config, measures, aggregate, warnings)

    logger.debug(
        f"Patient {patient_id}: {len(measures)}/{len(by_measure)} measures, "
        f"worst tier {aggregate.worst_tier}, score {aggregate.max_priority_score}"
    )
    return PatientEvaluation(
        patient_id=patient_id,
        as_of=as_of,
        measurement_year=year,
        measures=measures,
        failed_measures=failed_measures,
        aggregate=aggregate,
        warnings=warnings,
        receipt=receipt,
    )
