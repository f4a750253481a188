"""
Batch runner.
Evaluates many patients against one as-of date and (optionally) stores the
results as the new current observations.

    python -m apps.worker.runner dispenses.ndjson --as-of 2025-10-15 --persist
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from apps.worker.lib.fhir_dispense import dispenses_to_fills, extract_patient_id
from apps.worker.lib.measure_classifier import MeasureClassifier
from apps.worker.pipeline import evaluate_patient
from packages.shared.errors import MissingPatientIdentity
from packages.shared.models import AdherenceConfig, FillRecord, PatientEvaluation, Warning

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = max(1, int(os.getenv("RXTRIAGE_WORKERS", "4")))


class BatchSummary(BaseModel):
    as_of: date
    measurement_year: int
    patients_total: int = 0
    patients_evaluated: int = 0
    missing_identity: int = 0
    failed: list[str] = Field(default_factory=list)
    results_persisted: int = 0
    warnings: int = 0
    by_queue: dict[str, int] = Field(default_factory=dict)
    urgent: int = 0
    classifier_hits: int = 0
    classifier_misses: int = 0
    elapsed_seconds: float = 0.0


def evaluate_batch(
    patients: dict[str, list[FillRecord]],
    as_of: date,
    config: Optional[AdherenceConfig] = None,
    max_workers: int = DEFAULT_WORKERS,
    persist: bool = False,
    classifier: Optional[MeasureClassifier] = None,
) -> tuple[list[PatientEvaluation], BatchSummary]:
    """
    Fan patients out over a thread pool. Patients share nothing but the
    immutable config, the as-of date and this batch's classifier cache.
    Results come back sorted by patient id regardless of completion order.
    """
    config = config or AdherenceConfig()
    classifier = classifier or MeasureClassifier()
    summary = BatchSummary(as_of=as_of, measurement_year=config.year_for(as_of), patients_total=len(patients))
    evaluations: list[PatientEvaluation] = []
    started = time.monotonic()

    def _task(patient_id: str, fills: list[FillRecord]) -> tuple[PatientEvaluation, int]:
        evaluation = evaluate_patient(patient_id, fills, as_of, config=config, classifier=classifier)
        written = 0
        if persist:
            from apps.worker.pipeline_persistence import persist_evaluation
            written = persist_evaluation(evaluation)
        return evaluation, written

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_map = {
            executor.submit(_task, patient_id, fills): patient_id
            for patient_id, fills in patients.items()
        }
        for future in as_completed(future_map):
            patient_id = future_map[future]
            try:
                evaluation, written = future.result()
            except MissingPatientIdentity as exc:
                logger.warning(f"Skipping fill history without patient identity: {exc}")
                summary.missing_identity += 1
                continue
            except Exception as exc:
                logger.exception(f"Evaluation failed for patient {patient_id}: {exc}")
                summary.failed.append(patient_id)
                continue
            evaluations.append(evaluation)
            summary.results_persisted += written

    evaluations.sort(key=lambda e: e.patient_id)
    queues = Counter(e.aggregate.queue.value for e in evaluations if e.aggregate.queue is not None)

    summary.patients_evaluated = len(evaluations)
    summary.failed.sort()
    summary.warnings = sum(len(e.warnings) for e in evaluations)
    summary.by_queue = dict(sorted(queues.items()))
    summary.urgent = sum(1 for e in evaluations if e.aggregate.urgent)
    summary.classifier_hits = classifier.hits
    summary.classifier_misses = classifier.misses
    summary.elapsed_seconds = round(time.monotonic() - started, 3)
    classifier.clear()

    logger.info(
        f"Batch as of {as_of}: {summary.patients_evaluated}/{summary.patients_total} patients evaluated, "
        f"{summary.missing_identity} without identity, {len(summary.failed)} failed"
    )
    return evaluations, summary


# ── Input loading ──────────────────────────────────────────────────────────


def _iter_resources(payload: Any) -> Iterable[dict]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_resources(item)
    elif isinstance(payload, dict):
        if payload.get("resourceType") == "Bundle":
            for entry in payload.get("entry") or []:
                resource = entry.get("resource")
                if resource:
                    yield resource
        else:
            yield payload


def load_dispenses(path: Path) -> list[dict]:
    """Read a FHIR Bundle, a JSON array of resources or NDJSON."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".ndjson":
        payload = [json.loads(line) for line in text.splitlines() if line.strip()]
    else:
        payload = json.loads(text)
    return [r for r in _iter_resources(payload) if r.get("resourceType") == "MedicationDispense"]


def group_dispenses_by_patient(dispenses: list[dict]) -> tuple[dict[str, list[FillRecord]], list[Warning]]:
    """Dispenses without a Patient reference are kept under an empty id and rejected at evaluation."""
    by_patient: dict[str, list[dict]] = defaultdict(list)
    for dispense in dispenses:
        by_patient[extract_patient_id(dispense) or ""].append(dispense)

    patients: dict[str, list[FillRecord]] = {}
    warnings: list[Warning] = []
    for patient_id, rows in sorted(by_patient.items()):
        fills, skipped = dispenses_to_fills(rows, patient_id or None)
        patients[patient_id] = fills
        warnings.extend(skipped)
    return patients, warnings


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate medication adherence for a batch of patients.")
    parser.add_argument("input", type=Path, help="FHIR MedicationDispense Bundle, JSON array or NDJSON")
    parser.add_argument("--as-of", type=date.fromisoformat, default=date.today(), help="Evaluation date (YYYY-MM-DD)")
    parser.add_argument("--measurement-year", type=int, default=None)
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS)
    parser.add_argument("--persist", action="store_true", help="Store results as the current observations")
    parser.add_argument("--output", type=Path, default=None, help="Write evaluations as JSON to this path")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = _parse_args(argv)

    config = AdherenceConfig.from_env()
    if args.measurement_year is not None:
        config = config.model_copy(update={"measurement_year": args.measurement_year})

    if args.persist:
        from packages.db.database import init_db
        init_db()

    patients, input_warnings = group_dispenses_by_patient(load_dispenses(args.input))
    logger.info(f"Loaded {len(patients)} patients from {args.input} ({len(input_warnings)} dispenses skipped)")

    evaluations, summary = evaluate_batch(
        patients, args.as_of, config=config, max_workers=args.workers, persist=args.persist
    )
    summary.warnings += len(input_warnings)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(
            json.dumps([e.model_dump(mode="json") for e in evaluations], indent=2),
            encoding="utf-8",
        )
        logger.info(f"Wrote {len(evaluations)} evaluations to {args.output}")

    print(summary.model_dump_json(indent=2))
    return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
