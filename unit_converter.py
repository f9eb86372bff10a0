# unit_converter.py
# Lab unit conversion + default field validator.
#
# Canonical units used by every rule:
#   cholesterol (TC/LDL/HDL/non-HDL) mmol/L, triglycerides mmol/L,
#   apoB g/L, Lp(a) mg/dL, HbA1c %, glucose mmol/L, creatinine µmol/L
#
# Lp(a) mass↔molar is an estimate only (isoform dependent).

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from patient_profile import safe_float

logger = logging.getLogger(__name__)


CONVERSION_FACTORS: Dict[Tuple[str, str, str], Callable[[float], float]] = {
    ("cholesterol", "mg/dl", "mmol/l"): lambda v: v * 0.02586,
    ("cholesterol", "mmol/l", "mg/dl"): lambda v: v * 38.67,
    ("triglycerides", "mg/dl", "mmol/l"): lambda v: v * 0.01129,
    ("triglycerides", "mmol/l", "mg/dl"): lambda v: v * 88.57,
    ("glucose", "mg/dl", "mmol/l"): lambda v: v * 0.0555,
    ("glucose", "mmol/l", "mg/dl"): lambda v: v * 18.018,
    ("creatinine", "mg/dl", "umol/l"): lambda v: v * 88.4,
    ("creatinine", "umol/l", "mg/dl"): lambda v: v * 0.0113,
    ("apob", "mg/dl", "g/l"): lambda v: v * 0.01,
    ("apob", "g/l", "mg/dl"): lambda v: v * 100.0,
    ("lpa", "mg/dl", "nmol/l"): lambda v: v * 2.15,
    ("lpa", "nmol/l", "mg/dl"): lambda v: v * 0.465,
    ("hba1c", "%", "mmol/mol"): lambda v: (v - 2.15) * 10.929,
    ("hba1c", "mmol/mol", "%"): lambda v: v / 10.929 + 2.15,
}

# lipid field name -> analyte family
FIELD_ANALYTE = {
    "total_cholesterol": "cholesterol",
    "ldl": "cholesterol",
    "hdl": "cholesterol",
    "non_hdl": "cholesterol",
    "triglycerides": "triglycerides",
    "apob": "apob",
    "lpa": "lpa",
    "hba1c": "hba1c",
    "glucose": "glucose",
    "creatinine": "creatinine",
}

CANONICAL_UNIT = {
    "cholesterol": "mmol/L",
    "triglycerides": "mmol/L",
    "apob": "g/L",
    "lpa": "mg/dL",
    "hba1c": "%",
    "glucose": "mmol/L",
    "creatinine": "umol/L",
}

# Canonical-unit plausibility ranges (inclusive)
CANONICAL_RANGES = {
    "total_cholesterol": (1.0, 20.0),
    "ldl": (0.2, 15.0),
    "hdl": (0.1, 5.0),
    "non_hdl": (0.2, 18.0),
    "triglycerides": (0.1, 50.0),
    "apob": (0.1, 4.0),
    "lpa": (0.0, 500.0),
    "hba1c": (3.0, 20.0),
    "glucose": (1.0, 50.0),
    "creatinine": (10.0, 2000.0),
    "egfr": (1.0, 200.0),
    "sbp": (60.0, 260.0),
}


def _unit_key(unit: Any) -> str:
    return str(unit or "").strip().lower().replace("µ", "u").replace(" ", "")


def convert(value: Any, from_unit: str, to_unit: str, analyte: str) -> Dict[str, Any]:
    """Returns {value, unit, error}; never raises."""
    v = safe_float(value)
    if v is None:
        return {"value": None, "unit": None, "error": "Invalid input value: Not a number."}

    src, dst, kind = _unit_key(from_unit), _unit_key(to_unit), str(analyte or "").strip().lower()
    kind = FIELD_ANALYTE.get(kind, kind)
    if src == dst:
        return {"value": v, "unit": to_unit, "error": None}

    fn = CONVERSION_FACTORS.get((kind, src, dst))
    if fn is None:
        return {"value": None, "unit": None, "error": f"Unsupported conversion {from_unit} -> {to_unit} for {analyte}"}
    return {"value": fn(v), "unit": to_unit, "error": None}


def to_canonical(value: Any, unit: Optional[str], field_name: str) -> Optional[float]:
    """Convert one lab field to its canonical unit; None when not convertible."""
    analyte = FIELD_ANALYTE.get(field_name)
    if analyte is None or not unit:
        return safe_float(value)
    out = convert(value, unit, CANONICAL_UNIT[analyte], analyte)
    return out["value"]


# ----------------------------
# Default validator collaborator
# ----------------------------
class LabValidator:
    """
    validate(raw, field_type, unit) -> {isValid, normalizedValue, convertedValue?, warning?}
    Converts to canonical units first, then range-checks in canonical units.
    """

    def __init__(self, ranges: Optional[Dict[str, Tuple[float, float]]] = None):
        self.ranges = dict(CANONICAL_RANGES if ranges is None else ranges)

    def validate(self, raw: Any, field_type: str, unit: Optional[str] = None) -> Dict[str, Any]:
        v = safe_float(raw)
        if v is None:
            return {"isValid": False, "normalizedValue": None, "warning": f"{field_type}: not a number"}

        out: Dict[str, Any] = {"isValid": True, "normalizedValue": v}
        analyte = FIELD_ANALYTE.get(field_type)
        if analyte and unit and _unit_key(unit) != _unit_key(CANONICAL_UNIT[analyte]):
            conv = convert(v, unit, CANONICAL_UNIT[analyte], analyte)
            if conv["error"]:
                return {"isValid": False, "normalizedValue": None, "warning": conv["error"]}
            out["convertedValue"] = round(conv["value"], 3)
            out["normalizedValue"] = out["convertedValue"]

        lo_hi = self.ranges.get(field_type)
        if lo_hi is not None:
            lo, hi = lo_hi
            if not (lo <= out["normalizedValue"] <= hi):
                logger.debug("Out-of-range %s=%s", field_type, out["normalizedValue"])
                return {
                    "isValid": False,
                    "normalizedValue": out["normalizedValue"],
                    "warning": f"{field_type} out of range ({lo}-{hi} {CANONICAL_UNIT.get(analyte, '')})".strip(),
                }
        return out
