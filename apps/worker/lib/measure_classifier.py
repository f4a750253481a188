"""
RxNorm -> MA measure classification.

A ``MeasureClassifier`` is created per batch run and passed into the engine;
its lookup cache lives and dies with that run.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from packages.shared.models import FillRecord, MAMeasure

logger = logging.getLogger(__name__)

# Ingredient-level RxNorm codes. Production deployments pass a fuller
# RxClass-derived mapping via ``extra_codes``.
MA_RXNORM_CODES: dict[MAMeasure, frozenset[str]] = {
    MAMeasure.MAC: frozenset({
        "83367",   # Atorvastatin
        "36567",   # Simvastatin
        "301542",  # Rosuvastatin
        "42463",   # Pravastatin
        "6472",    # Lovastatin
        "41127",   # Fluvastatin
        "861634",  # Pitavastatin
    }),
    MAMeasure.MAD: frozenset({
        "6809",    # Metformin
        "4821",    # Glipizide
        "4815",    # Glyburide
        "593411",  # Sitagliptin
        "33738",   # Pioglitazone
        "25789",   # Glimepiride
        "614348",  # Saxagliptin
        "857974",  # Linagliptin
        "1368001", # Canagliflozin
        "1545653", # Empagliflozin
    }),
    MAMeasure.MAH: frozenset({
        "310965",  # Lisinopril
        "52175",   # Losartan
        "3827",    # Enalapril
        "69749",   # Valsartan
        "35296",   # Ramipril
        "29046",   # Benazepril
        "50166",   # Fosinopril
        "83515",   # Irbesartan
        "73494",   # Olmesartan
        "321064",  # Telmisartan
    }),
}


class MeasureClassifier:
    def __init__(self, extra_codes: Optional[dict[MAMeasure, set[str]]] = None):
        self._codes: dict[MAMeasure, frozenset[str]] = dict(MA_RXNORM_CODES)
        for measure, codes in (extra_codes or {}).items():
            self._codes[measure] = self._codes.get(measure, frozenset()) | frozenset(codes)
        self._cache: dict[str, Optional[MAMeasure]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def classify(self, drug_code: str) -> Optional[MAMeasure]:
        with self._lock:
            if drug_code in self._cache:
                self.hits += 1
                return self._cache[drug_code]
            self.misses += 1
            found: Optional[MAMeasure] = None
            for measure in MAMeasure:
                if drug_code in self._codes.get(measure, frozenset()):
                    found = measure
                    break
            self._cache[drug_code] = found
            return found

    def measure_for(self, fill: FillRecord) -> Optional[MAMeasure]:
        """An explicit measure on the fill wins over code lookup."""
        if fill.measure is not None:
            return fill.measure
        return self.classify(fill.drug_code)

    def clear(self) -> None:
        with self._lock:
            logger.debug(f"Dropping measure cache ({len(self._cache)} codes, {self.hits} hits)")
            self._cache.clear()
            self.hits = 0
            self.misses = 0
