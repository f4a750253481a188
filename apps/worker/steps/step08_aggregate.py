"""
Step 8 - Measure and patient roll-ups.
Worst case wins: the most severe tier, the lowest PDC and the highest priority
score surface, so a healthy medication never masks an at-risk one.
"""
from __future__ import annotations

from typing import Optional

from packages.shared.models import (
    TIER_SEVERITY,
    AggregateStatus,
    FragilityTier,
    MAMeasure,
    MeasureAggregate,
    MeasureResult,
    PatientAggregate,
    Scored,
    Urgent,
)

_NOT_AT_RISK = {FragilityTier.COMPLIANT, FragilityTier.F5_SAFE}


def worst_tier(tiers: list[FragilityTier]) -> Optional[FragilityTier]:
    """Most severe ordered tier; D1a only when nothing else is known."""
    ordered = [t for t in tiers if t in TIER_SEVERITY]
    if ordered:
        return min(ordered, key=lambda t: TIER_SEVERITY[t])
    if FragilityTier.D1a_AT_RISK in tiers:
        return FragilityTier.D1a_AT_RISK
    return None


def aggregate_measure(measure: MAMeasure, result: Optional[MeasureResult]) -> MeasureAggregate:
    if result is None:
        return MeasureAggregate(measure=measure, status=AggregateStatus.INSUFFICIENT_DATA)

    queue = result.priority.result.queue if isinstance(result.priority, Scored) else None
    return MeasureAggregate(
        measure=measure,
        status=AggregateStatus.OK,
        tier=result.tier,
        pdc=result.coverage.pdc,
        priority_score=result.priority_score,
        queue=queue,
        urgent=isinstance(result.priority, Urgent),
        days_until_runout=result.supply.days_until_runout,
        medications_at_risk=sorted(
            med.drug_code for med in result.medications if med.tier not in _NOT_AT_RISK
        ),
    )


def aggregate_patient(
    patient_id: str,
    tracked_measures: list[MAMeasure],
    results: dict[MAMeasure, Optional[MeasureResult]],
) -> PatientAggregate:
    """
    Rebuild the patient summary from this run's measure results.
    A patient with tracked measures but no usable result is reported as
    ``unknown`` rather than dropped from triage.
    """
    measures = [aggregate_measure(m, results.get(m)) for m in sorted(tracked_measures, key=lambda m: m.value)]
    valid = [agg for agg in measures if agg.status == AggregateStatus.OK]
    pdc_by_measure = {agg.measure: agg.pdc for agg in measures}

    if not valid:
        return PatientAggregate(
            patient_id=patient_id,
            status=AggregateStatus.UNKNOWN,
            pdc_by_measure=pdc_by_measure,
            measures=measures,
        )

    scored = [agg for agg in valid if agg.priority_score is not None]
    top = max(scored, key=lambda agg: agg.priority_score) if scored else None
    runouts = [agg.days_until_runout for agg in valid if agg.days_until_runout is not None]
    pdcs = [agg.pdc for agg in valid if agg.pdc is not None]

    return PatientAggregate(
        patient_id=patient_id,
        status=AggregateStatus.OK,
        worst_tier=worst_tier([agg.tier for agg in valid if agg.tier is not None]),
        min_pdc=min(pdcs) if pdcs else None,
        max_priority_score=top.priority_score if top else None,
        queue=top.queue if top else None,
        urgent=any(agg.urgent for agg in valid),
        days_until_earliest_runout=min(runouts) if runouts else None,
        pdc_by_measure=pdc_by_measure,
        measures=measures,
    )
