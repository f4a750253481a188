"""
Persistence helpers for evaluation results.

Each (patient_id, scope, scope_code) key keeps its full history. Writing a new
result retires the current row with a guarded UPDATE and inserts the next
version in the same transaction; a writer that loses the race rolls back and
retries against the new current row.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from apps.worker.lib.observation_adapter import AdherenceObservation, observations_for
from packages.db.database import get_session
from packages.db.models import AdherenceResult
from packages.shared.errors import StaleResultError
from packages.shared.models import AggregateStatus, PatientEvaluation, PriorityQueue, ResultScope
from packages.shared.schema_validator import validate_observation

logger = logging.getLogger(__name__)

MAX_STORE_ATTEMPTS = 3


def _current_row(session: Session, patient_id: str, scope: str, scope_code: str) -> Optional[AdherenceResult]:
    return (
        session.query(AdherenceResult)
        .filter(AdherenceResult.patient_id == patient_id)
        .filter(AdherenceResult.scope == scope)
        .filter(AdherenceResult.scope_code == scope_code)
        .filter(AdherenceResult.is_current.is_(True))
        .order_by(AdherenceResult.version.desc())
        .first()
    )


def _write_current(
    session: Session,
    observation: AdherenceObservation,
    measurement_year: int,
    config_sha256: Optional[str],
) -> int:
    key = (observation.patient_id, observation.scope.value, observation.scope_code)
    current = _current_row(session, *key)
    next_version = 1

    if current is not None:
        expected_version = current.version
        rows_updated = (
            session.query(AdherenceResult)
            .filter(AdherenceResult.id == current.id)
            .filter(AdherenceResult.is_current.is_(True))
            .filter(AdherenceResult.version == expected_version)
            .update(
                {"is_current": False, "superseded_at": datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
        if rows_updated != 1:
            raise StaleResultError(f"Current result for {key} moved past version {expected_version}", key=key)
        next_version = expected_version + 1

    session.add(AdherenceResult(
        patient_id=observation.patient_id,
        scope=observation.scope.value,
        scope_code=observation.scope_code,
        measure=observation.measure.value,
        version=next_version,
        is_current=True,
        as_of=observation.as_of,
        measurement_year=measurement_year,
        status=observation.status.value,
        pdc=observation.pdc,
        priority_score=observation.priority_score,
        fragility_tier=observation.fragility_tier.value if observation.fragility_tier else None,
        queue=observation.queue.value if observation.queue else None,
        urgent=observation.urgent,
        payload_json=observation.model_dump(mode="json"),
        config_sha256=config_sha256,
    ))
    session.flush()
    return next_version


def store_result(
    observation: AdherenceObservation,
    measurement_year: int,
    config_sha256: Optional[str] = None,
    max_attempts: int = MAX_STORE_ATTEMPTS,
) -> int:
    """
    Store ``observation`` as the current result for its key.
    Returns the stored version. Raises StaleResultError after ``max_attempts``
    lost races.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            with get_session() as session:
                return _write_current(session, observation, measurement_year, config_sha256)
        except (StaleResultError, IntegrityError) as exc:
            logger.info(
                f"Lost race storing {observation.patient_id}/{observation.scope_code} "
                f"(attempt {attempt}/{max_attempts}): {exc.__class__.__name__}"
            )
    raise StaleResultError(
        f"Could not store result for {observation.patient_id}/{observation.scope_code} "
        f"after {max_attempts} attempts",
        key=(observation.patient_id, observation.scope.value, observation.scope_code),
    )


def persist_evaluation(evaluation: PatientEvaluation) -> int:
    """
    Store every measure and medication observation; returns the number written.
    Payloads are checked against the observation schema first and any
    mismatch is logged with the patient and key.
    """
    config_sha256 = evaluation.receipt.config_sha256 if evaluation.receipt else None
    written = 0
    for observation in observations_for(evaluation):
        is_valid, errors = validate_observation(observation.model_dump(mode="json"))
        if not is_valid:
            logger.warning(
                f"Observation {evaluation.patient_id}/{observation.scope_code} failed schema validation "
                f"with {len(errors)} errors: {'; '.join(errors[:10])}"
            )
        store_result(observation, evaluation.measurement_year, config_sha256)
        written += 1
    logger.info(f"Persisted {written} results for patient {evaluation.patient_id}")
    return written


def load_current_results(session: Session, patient_id: str) -> list[dict]:
    rows = (
        session.query(AdherenceResult)
        .filter(AdherenceResult.patient_id == patient_id)
        .filter(AdherenceResult.is_current.is_(True))
        .order_by(AdherenceResult.scope, AdherenceResult.measure, AdherenceResult.scope_code)
        .all()
    )
    return [_row_to_dict(row) for row in rows]


def load_queue(session: Session, queue: Optional[PriorityQueue] = None, limit: int = 100) -> list[dict]:
    """
    Current measure-level outreach queue. Urgent second-fill rows come first,
    then scored rows by score, then measures with insufficient data. Filtering
    by ``queue`` returns scored rows in that bucket only.
    """
    q = (
        session.query(AdherenceResult)
        .filter(AdherenceResult.is_current.is_(True))
        .filter(AdherenceResult.scope == ResultScope.MEASURE.value)
    )
    if queue is not None:
        q = q.filter(AdherenceResult.queue == queue.value)
    else:
        q = q.filter(or_(
            AdherenceResult.urgent.is_(True),
            AdherenceResult.priority_score.isnot(None),
            AdherenceResult.status == AggregateStatus.INSUFFICIENT_DATA.value,
        ))
    bucket = case(
        (AdherenceResult.urgent.is_(True), 0),
        (AdherenceResult.priority_score.isnot(None), 1),
        else_=2,
    )
    rows = (
        q.order_by(bucket, AdherenceResult.priority_score.desc(), AdherenceResult.patient_id, AdherenceResult.measure)
        .limit(limit)
        .all()
    )
    return [_row_to_dict(row) for row in rows]


def _row_to_dict(row: AdherenceResult) -> dict:
    return {
        "id": row.id,
        "patient_id": row.patient_id,
        "scope": row.scope,
        "scope_code": row.scope_code,
        "measure": row.measure,
        "version": row.version,
        "is_current": row.is_current,
        "as_of": row.as_of.isoformat() if row.as_of else None,
        "measurement_year": row.measurement_year,
        "status": row.status,
        "pdc": row.pdc,
        "priority_score": row.priority_score,
        "fragility_tier": row.fragility_tier,
        "queue": row.queue,
        "urgent": row.urgent,
        "observation": row.payload_json,
    }
