"""
FHIR MedicationDispense -> FillRecord adapter (input boundary).
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from packages.shared.models import FillRecord, FillStatus, Warning

logger = logging.getLogger(__name__)

RXNORM_SYSTEM = "http://www.nlm.nih.gov/research/umls/rxnorm"

_STATUS_MAP = {s.value: s for s in FillStatus}


def extract_medication_code(dispense: dict[str, Any]) -> Optional[str]:
    codings = (dispense.get("medicationCodeableConcept") or {}).get("coding") or []
    for coding in codings:
        if coding.get("system") == RXNORM_SYSTEM and coding.get("code"):
            return str(coding["code"])
    return None


def extract_display_name(dispense: dict[str, Any], fallback: str) -> str:
    concept = dispense.get("medicationCodeableConcept") or {}
    for coding in concept.get("coding") or []:
        if coding.get("system") == RXNORM_SYSTEM and coding.get("display"):
            return coding["display"]
    return concept.get("text") or fallback


def extract_days_supply(dispense: dict[str, Any]) -> Optional[int]:
    """Raw days supply; None when absent or not numeric (the engine applies the default)."""
    value = (dispense.get("daysSupply") or {}).get("value")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def extract_status(dispense: dict[str, Any]) -> FillStatus:
    return _STATUS_MAP.get(str(dispense.get("status", "")).lower(), FillStatus.UNKNOWN)


def extract_patient_id(dispense: dict[str, Any]) -> Optional[str]:
    ref = (dispense.get("subject") or {}).get("reference") or ""
    if ref.startswith("Patient/"):
        return ref.split("/", 1)[1] or None
    return None


def dispense_to_fill(dispense: dict[str, Any]) -> Optional[FillRecord]:
    code = extract_medication_code(dispense)
    when = dispense.get("whenHandedOver")
    if not code or not when:
        return None
    return FillRecord(
        drug_code=code,
        fill_date=when,
        days_supply=extract_days_supply(dispense),
        status=extract_status(dispense),
        display_name=extract_display_name(dispense, code),
        fill_id=dispense.get("id"),
    )


def dispenses_to_fills(
    dispenses: list[dict[str, Any]],
    patient_id: Optional[str] = None,
) -> tuple[list[FillRecord], list[Warning]]:
    """
    Convert a search result page of dispenses.
    Returns (fills, warnings); dispenses with no RxNorm code or no hand-over
    date are skipped with a warning.
    """
    fills: list[FillRecord] = []
    warnings: list[Warning] = []

    for dispense in dispenses:
        if dispense.get("resourceType", "MedicationDispense") != "MedicationDispense":
            continue
        fill = dispense_to_fill(dispense)
        if fill is None:
            warnings.append(Warning(
                code="DISPENSE_SKIPPED",
                message=f"MedicationDispense {dispense.get('id', '?')} has no RxNorm code or hand-over date",
                patient_id=patient_id or extract_patient_id(dispense),
            ))
            continue
        fills.append(fill)

    if warnings:
        logger.info(f"Skipped {len(warnings)} of {len(dispenses)} dispenses for patient {patient_id}")
    return fills, warnings
