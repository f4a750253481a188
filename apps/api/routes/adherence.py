"""
API routes: adherence evaluation, stored results and the outreach queue.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from apps.worker.lib.fhir_dispense import dispenses_to_fills
from apps.worker.lib.observation_adapter import AdherenceObservation, observations_for
from apps.worker.pipeline import evaluate_patient
from apps.worker.pipeline_persistence import load_current_results, load_queue, persist_evaluation
from packages.db.database import get_db
from packages.shared.errors import MissingPatientIdentity
from packages.shared.models import AdherenceConfig, FillRecord, PatientEvaluation, PriorityQueue

router = APIRouter(tags=["adherence"])


class EvaluateRequest(BaseModel):
    as_of: date
    fills: list[FillRecord] = Field(default_factory=list)
    dispenses: list[dict[str, Any]] = Field(default_factory=list)  # raw FHIR MedicationDispense
    config: dict[str, Any] = Field(default_factory=dict)
    enrollment_end: Optional[date] = None
    death_date: Optional[date] = None
    include_medication_level: bool = True
    persist: bool = False


class EvaluateResponse(BaseModel):
    evaluation: PatientEvaluation
    observations: list[AdherenceObservation]
    results_persisted: int = 0


def _build_config(overrides: dict[str, Any]) -> AdherenceConfig:
    base = AdherenceConfig.from_env()
    if not overrides:
        return base
    unknown = sorted(set(overrides) - set(AdherenceConfig.model_fields))
    if unknown:
        raise HTTPException(status_code=422, detail=f"Unknown config fields: {', '.join(unknown)}")
    try:
        return AdherenceConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from None


@router.post("/patients/{patient_id}/evaluate", response_model=EvaluateResponse)
def evaluate(patient_id: str, req: EvaluateRequest):
    """Evaluate one patient from the supplied fill history."""
    config = _build_config(req.config)

    fills = list(req.fills)
    input_warnings = []
    if req.dispenses:
        converted, input_warnings = dispenses_to_fills(req.dispenses, patient_id)
        fills.extend(converted)

    try:
        evaluation = evaluate_patient(
            patient_id,
            fills,
            req.as_of,
            config=config,
            enrollment_end=req.enrollment_end,
            death_date=req.death_date,
            include_medication_level=req.include_medication_level,
        )
    except MissingPatientIdentity as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None
    if input_warnings:
        evaluation = evaluation.model_copy(update={"warnings": [*input_warnings, *evaluation.warnings]})

    written = persist_evaluation(evaluation) if req.persist else 0
    return EvaluateResponse(
        evaluation=evaluation,
        observations=observations_for(evaluation),
        results_persisted=written,
    )


@router.get("/patients/{patient_id}/results")
def get_patient_results(patient_id: str, db: Session = Depends(get_db)):
    """Current stored results for a patient, measure and medication level."""
    results = load_current_results(db, patient_id)
    if not results:
        raise HTTPException(status_code=404, detail="No results for patient")
    return results


@router.get("/queue")
def get_queue(
    queue: Optional[PriorityQueue] = None,
    limit: int = Query(default=100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    """Outreach queue: urgent rows, then scored rows by score, then insufficient data."""
    return load_queue(db, queue=queue, limit=limit)
