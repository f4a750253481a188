"""
Error types raised by the adherence engine.

Only ``MissingPatientIdentity`` is fatal for a patient; everything else is
isolated to the medication or measure it concerns.
"""
from __future__ import annotations


class FillValidationError(ValueError):
    """A fill (or the period derived from fills) cannot be interpreted."""

    def __init__(self, message: str, drug_code: str | None = None):
        super().__init__(message)
        self.drug_code = drug_code


class MissingPatientIdentity(ValueError):
    """Structurally missing patient id; nothing can be attributed."""


class StaleResultError(RuntimeError):
    """The current stored result changed underneath a write."""

    def __init__(self, message: str, key: tuple[str, str, str] | None = None):
        super().__init__(message)
        self.key = key
