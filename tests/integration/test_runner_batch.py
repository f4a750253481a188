"""
Integration tests for the batch runner.
"""
from __future__ import annotations

import json
import os
from datetime import date

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test_rxtriage.db")

from packages.db.database import engine, get_session, init_db
from packages.db.models import AdherenceResult, Base
from apps.worker.lib.fhir_dispense import RXNORM_SYSTEM
from apps.worker.runner import evaluate_batch, group_dispenses_by_patient, load_dispenses, main
from packages.shared.models import FillRecord

AS_OF = date(2025, 11, 15)


@pytest.fixture(autouse=True)
def setup_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


def _dispense(patient: str | None, code: str, when: str, days: int = 30) -> dict:
    resource = {
        "resourceType": "MedicationDispense",
        "status": "completed",
        "medicationCodeableConcept": {"coding": [{"system": RXNORM_SYSTEM, "code": code}]},
        "whenHandedOver": when,
        "daysSupply": {"value": days},
    }
    if patient:
        resource["subject"] = {"reference": f"Patient/{patient}"}
    return resource


def _patients() -> dict[str, list[FillRecord]]:
    return {
        "pat-b": [FillRecord(drug_code="6809", fill_date="2025-10-20", days_supply=30)],
        "pat-a": [
            FillRecord(drug_code="83367", fill_date="2025-01-01", days_supply=90),
            FillRecord(drug_code="83367", fill_date="2025-07-10", days_supply=90),
        ],
        "": [FillRecord(drug_code="310965", fill_date="2025-02-01", days_supply=30)],
    }


class TestEvaluateBatch:
    def test_batch_results_sorted_and_counted(self):
        evaluations, summary = evaluate_batch(_patients(), AS_OF, max_workers=3)
        assert [e.patient_id for e in evaluations] == ["pat-a", "pat-b"]
        assert summary.patients_total == 3
        assert summary.patients_evaluated == 2
        assert summary.missing_identity == 1
        assert summary.failed == []
        assert summary.urgent == 1
        assert summary.classifier_misses >= 2

    def test_batch_matches_single_worker(self):
        parallel, _ = evaluate_batch(_patients(), AS_OF, max_workers=4)
        serial, _ = evaluate_batch(_patients(), AS_OF, max_workers=1)
        assert [e.model_dump_json() for e in parallel] == [e.model_dump_json() for e in serial]

    def test_batch_persist(self):
        _, summary = evaluate_batch(_patients(), AS_OF, persist=True)
        assert summary.results_persisted == 4
        with get_session() as session:
            assert session.query(AdherenceResult).filter_by(is_current=True).count() == 4


class TestRunnerInput:
    def test_bundle_and_grouping(self, tmp_path):
        bundle = {
            "resourceType": "Bundle",
            "entry": [
                {"resource": _dispense("pat-1", "310965", "2025-01-05")},
                {"resource": _dispense("pat-2", "6809", "2025-03-01")},
                {"resource": {"resourceType": "Patient", "id": "pat-1"}},
                {"resource": _dispense(None, "83367", "2025-03-01")},
            ],
        }
        path = tmp_path / "bundle.json"
        path.write_text(json.dumps(bundle), encoding="utf-8")

        dispenses = load_dispenses(path)
        assert len(dispenses) == 3
        patients, warnings = group_dispenses_by_patient(dispenses)
        assert sorted(patients) == ["", "pat-1", "pat-2"]
        assert warnings == []

    def test_main_writes_output(self, tmp_path, capsys):
        path = tmp_path / "dispenses.ndjson"
        path.write_text(
            "\n".join(json.dumps(d) for d in [
                _dispense("pat-1", "310965", "2025-01-05", 90),
                _dispense("pat-1", "310965", "2025-04-05", 90),
            ]),
            encoding="utf-8",
        )
        output = tmp_path / "out" / "evaluations.json"
        exit_code = main([str(path), "--as-of", "2025-11-15", "--workers", "2", "--output", str(output)])
        assert exit_code == 0
        written = json.loads(output.read_text(encoding="utf-8"))
        assert [e["patient_id"] for e in written] == ["pat-1"]
        summary = json.loads(capsys.readouterr().out)
        assert summary["patients_evaluated"] == 1
