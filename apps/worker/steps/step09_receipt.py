"""
Step 9 - Evaluation receipt.
Hash inputs, config and outputs so a replay can prove it reproduced a run byte for byte.
"""
from __future__ import annotations

import hashlib
import json
from datetime import date

from packages.shared.models import (
    AdherenceConfig,
    EvaluationReceipt,
    FillRecord,
    MeasureResult,
    PatientAggregate,
    Warning,
)


def compute_inputs_hash(patient_id: str, fills: list[FillRecord], as_of: date) -> str:
    """Order-independent: the same fills in any order hash identically."""
    rows = sorted(f.model_dump_json() for f in fills)
    combined = "|".join([patient_id, as_of.isoformat(), *rows])
    return hashlib.sha256(combined.encode()).hexdigest()


def compute_outputs_hash(
    measures: list[MeasureResult],
    aggregate: PatientAggregate,
    warnings: list[Warning],
) -> str:
    payload = {
        "measures": [m.model_dump(mode="json") for m in measures],
        "aggregate": aggregate.model_dump(mode="json"),
        "warnings": [w.model_dump(mode="json") for w in warnings],
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode()).hexdigest()


def create_receipt(
    patient_id: str,
    fills: list[FillRecord],
    as_of: date,
    measurement_year: int,
    config: AdherenceConfig,
    measures: list[MeasureResult],
    aggregate: PatientAggregate,
    warnings: list[Warning],
) -> EvaluationReceipt:
    return EvaluationReceipt(
        as_of=as_of,
        measurement_year=measurement_year,
        config_sha256=config.fingerprint(),
        inputs_sha256=compute_inputs_hash(patient_id, fills, as_of),
        outputs_sha256=compute_outputs_hash(measures, aggregate, warnings),
        fills_received=len(fills),
        measures_evaluated=len(measures),
        medications_evaluated=sum(len(m.medications) for m in measures),
        warnings=len(warnings),
    )
