"""
Integration tests for the adherence API.
"""
from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient

# Setup test environment before imports
os.environ.setdefault("DATABASE_URL", "sqlite:///./data/test_rxtriage.db")

from packages.db.database import engine, init_db
from packages.db.models import Base
from apps.api.main import app


@pytest.fixture(autouse=True)
def setup_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    return TestClient(app)


def _evaluate_body(**overrides) -> dict:
    body = {
        "as_of": "2025-11-15",
        "fills": [
            {"drug_code": "83367", "fill_date": "2025-01-01", "days_supply": 90},
            {"drug_code": "83367", "fill_date": "2025-04-01", "days_supply": 90},
            {"drug_code": "83367", "fill_date": "2025-07-10", "days_supply": 90},
        ],
    }
    body.update(overrides)
    return body


class TestApiAdherence:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_evaluate_without_persist(self, client):
        resp = client.post("/patients/pat-1/evaluate", json=_evaluate_body())
        assert resp.status_code == 200
        data = resp.json()
        assert data["results_persisted"] == 0
        assert data["evaluation"]["aggregate"]["worst_tier"] == "F1_IMMINENT"
        assert data["evaluation"]["aggregate"]["max_priority_score"] == 155
        assert [o["scope"] for o in data["observations"]] == ["measure", "medication"]
        assert resp.headers["X-Request-Id"]

        # nothing stored
        assert client.get("/patients/pat-1/results").status_code == 404

    def test_evaluate_persist_then_read_back(self, client):
        resp = client.post("/patients/pat-1/evaluate", json=_evaluate_body(persist=True))
        assert resp.status_code == 200
        assert resp.json()["results_persisted"] == 2

        results = client.get("/patients/pat-1/results").json()
        assert {(r["scope"], r["scope_code"]) for r in results} == {("measure", "MAC"), ("medication", "83367")}
        assert all(r["is_current"] for r in results)

        queue = client.get("/queue").json()
        assert [(r["patient_id"], r["priority_score"], r["queue"]) for r in queue] == [("pat-1", 155, "CRITICAL")]
        assert client.get("/queue", params={"queue": "LOW"}).json() == []

    def test_reevaluation_keeps_one_current_row(self, client):
        client.post("/patients/pat-1/evaluate", json=_evaluate_body(persist=True))
        client.post("/patients/pat-1/evaluate", json=_evaluate_body(persist=True, as_of="2025-11-20"))
        results = client.get("/patients/pat-1/results").json()
        assert len(results) == 2
        assert all(r["version"] == 2 for r in results)
        assert all(r["as_of"] == "2025-11-20" for r in results)

    def test_config_overrides(self, client):
        resp = client.post("/patients/pat-1/evaluate", json=_evaluate_body(config={"bonus_q4": 0}))
        assert resp.status_code == 200
        assert resp.json()["evaluation"]["aggregate"]["max_priority_score"] == 130

    def test_unknown_config_field_rejected(self, client):
        resp = client.post("/patients/pat-1/evaluate", json=_evaluate_body(config={"bogus": 1}))
        assert resp.status_code == 422

    def test_invalid_config_value_rejected(self, client):
        resp = client.post("/patients/pat-1/evaluate", json=_evaluate_body(config={"pdc_target": 2}))
        assert resp.status_code == 422

    def test_evaluate_from_fhir_dispenses(self, client):
        dispense = {
            "resourceType": "MedicationDispense",
            "id": "md-1",
            "status": "completed",
            "subject": {"reference": "Patient/pat-9"},
            "medicationCodeableConcept": {
                "coding": [{"system": "http://www.nlm.nih.gov/research/umls/rxnorm", "code": "6809"}]
            },
            "whenHandedOver": "2025-10-20T09:00:00Z",
            "daysSupply": {"value": 30},
        }
        skipped = {"resourceType": "MedicationDispense", "id": "md-2", "status": "completed"}
        resp = client.post(
            "/patients/pat-9/evaluate",
            json={"as_of": "2025-11-15", "dispenses": [dispense, skipped]},
        )
        assert resp.status_code == 200
        evaluation = resp.json()["evaluation"]
        assert evaluation["aggregate"]["urgent"] is True
        assert evaluation["aggregate"]["worst_tier"] == "D1a_AT_RISK"
        assert [w["code"] for w in evaluation["warnings"]] == ["DISPENSE_SKIPPED"]

    def test_bad_fill_date_reported_as_warning(self, client):
        body = _evaluate_body()
        body["fills"].append({"drug_code": "83367", "fill_date": "yesterday", "days_supply": 30})
        resp = client.post("/patients/pat-1/evaluate", json=body)
        assert resp.status_code == 200
        evaluation = resp.json()["evaluation"]
        assert evaluation["aggregate"]["status"] == "unknown"
        assert {w["code"] for w in evaluation["warnings"]} == {"FILL_VALIDATION"}

    def test_queue_lists_urgent_and_insufficient_patients(self, client):
        client.post("/patients/pat-1/evaluate", json=_evaluate_body(persist=True))
        client.post("/patients/pat-2/evaluate", json={
            "as_of": "2025-11-15",
            "fills": [{"drug_code": "6809", "fill_date": "2025-10-20", "days_supply": 30}],
            "persist": True,
        })
        client.post("/patients/pat-3/evaluate", json={
            "as_of": "2025-11-15",
            "fills": [{"drug_code": "310965", "fill_date": "yesterday", "days_supply": 30}],
            "persist": True,
        })
        queue = client.get("/queue").json()
        assert [(r["patient_id"], r["urgent"], r["status"]) for r in queue] == [
            ("pat-2", True, "ok"),
            ("pat-1", False, "ok"),
            ("pat-3", False, "insufficient_data"),
        ]
