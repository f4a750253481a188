"""
Step 7 - Outreach priority scoring.
Priority = tier base score + independently triggered bonuses, bucketed into a work queue.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from packages.shared.models import (
    ActiveTier,
    AdherenceConfig,
    Compliant,
    GapBudget,
    InsufficientHistory,
    NoActivePriority,
    PriorityBonuses,
    PriorityQueue,
    PriorityResult,
    Scored,
    SupplyState,
    Unsalvageable,
    Urgent,
)


def queue_for_score(total: int, config: AdherenceConfig) -> PriorityQueue:
    if total >= config.queue_critical_min:
        return PriorityQueue.CRITICAL
    if total >= config.queue_high_min:
        return PriorityQueue.HIGH
    if total >= config.queue_watch_min:
        return PriorityQueue.WATCH
    if total >= config.queue_medium_min:
        return PriorityQueue.MEDIUM
    return PriorityQueue.LOW


def is_q4(as_of: date, config: AdherenceConfig) -> bool:
    return as_of.month in config.q4_months


def is_new_patient(first_fill_date: Optional[date], as_of: date, config: AdherenceConfig) -> bool:
    if first_fill_date is None:
        return False
    return 0 <= (as_of - first_fill_date).days <= config.new_patient_window_days


def calculate_bonuses(
    days_until_runout: int,
    as_of: date,
    measure_count: int,
    first_fill_date: Optional[date],
    config: AdherenceConfig,
) -> PriorityBonuses:
    return PriorityBonuses(
        out_of_meds=config.bonus_out_of_meds if days_until_runout <= 0 else 0,
        q4=config.bonus_q4 if is_q4(as_of, config) else 0,
        multi_measure=config.bonus_multi_measure if measure_count >= config.multi_measure_min else 0,
        new_patient=config.bonus_new_patient if is_new_patient(first_fill_date, as_of, config) else 0,
    )


def build_priority_result(
    assessment: ActiveTier,
    bonuses: PriorityBonuses,
    config: AdherenceConfig,
) -> PriorityResult:
    base = config.base_scores[assessment.tier]
    total = base + bonuses.total()
    return PriorityResult(
        base_score=base,
        bonuses=bonuses,
        total=total,
        queue=queue_for_score(total, config),
    )


def score_priority(
    assessment: InsufficientHistory | Unsalvageable | Compliant | ActiveTier,
    gap_budget: GapBudget,
    supply: SupplyState,
    as_of: date,
    measure_count: int,
    first_fill_date: Optional[date],
    config: AdherenceConfig,
) -> Scored | Urgent | NoActivePriority:
    """
    D1a is flagged URGENT outside the numeric scale; T5 and COMPLIANT carry no
    active priority; a scope that needs no refill before period end is done.
    """
    if isinstance(assessment, InsufficientHistory):
        return Urgent()
    if isinstance(assessment, Unsalvageable):
        return NoActivePriority(reason="unsalvageable")
    if isinstance(assessment, Compliant):
        return NoActivePriority(reason="compliant")
    if gap_budget.remaining_refills_needed == 0:
        return NoActivePriority(reason="no_refills_needed")

    bonuses = calculate_bonuses(supply.days_until_runout, as_of, measure_count, first_fill_date, config)
    return Scored(result=build_priority_result(assessment, bonuses, config))
