# patient_profile.py
# Immutable patient snapshot + the single condition lookup every rule uses.
#
# - Inputs are snake_case, lab values already in canonical units
#   (mmol/L for cholesterol/TG, g/L for apoB, mg/dL for Lp(a), % for HbA1c)
# - A condition holds if its label is in `conditions` OR a same-named field is truthy
# - Derived values: non-HDL, Friedewald LDL, TC/HDL ratio
# - Rule firings are recorded with add_trace() for auditability

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from lipid_config import LPA_ELEVATED_MGDL
from lipid_errors import ValidationError

_TRUTHY_STRINGS = {"true", "yes", "y", "1", "present"}


# ----------------------------
# Trace helper (auditable rules)
# ----------------------------
def add_trace(trace: Optional[List[Dict[str, Any]]], rule: str, value: Any = None, effect: str = "") -> None:
    if trace is None:
        return
    trace.append({"rule": rule, "value": value, "effect": effect})


# ----------------------------
# Numeric helpers
# ----------------------------
def safe_float(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def fmt_1dp(x):
    try:
        return round(float(x), 1)
    except (TypeError, ValueError):
        return x


def _truthy(v: Any) -> bool:
    if v is True:
        return True
    if isinstance(v, str):
        return v.strip().lower() in _TRUTHY_STRINGS
    return False


def _norm_label(label: Any) -> str:
    return str(label or "").strip().lower().replace(" ", "_").replace("-", "_")


def _normalize_sex(raw: Any) -> Optional[str]:
    t = str(raw or "").strip().lower()
    if t in ("m", "male", "man"):
        return "male"
    if t in ("f", "female", "woman"):
        return "female"
    return None


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_freeze(v) for v in value)
    return value


# ----------------------------
# Patient snapshot
# ----------------------------
@dataclass(frozen=True)
class PatientProfile:
    data: Mapping[str, Any]
    conditions: frozenset = field(default_factory=frozenset)

    def get(self, k, d=None):
        return self.data.get(k, d)

    def has(self, k):
        return k in self.data and self.data[k] is not None

    def num(self, k) -> Optional[float]:
        return safe_float(self.data.get(k))

    @property
    def age(self) -> float:
        return float(self.data["age"])

    @property
    def sex(self) -> str:
        return self.data["sex"]

    @property
    def ldl(self) -> Optional[float]:
        return self.num("ldl")

    @property
    def medications(self) -> tuple:
        return tuple(self.data.get("medications") or ())

    def to_dict(self) -> Dict[str, Any]:
        """Plain mutable copy (lists instead of tuples) for serialization / cache keys."""

        def thaw(v):
            if isinstance(v, Mapping):
                return {k: thaw(x) for k, x in v.items()}
            if isinstance(v, tuple):
                return [thaw(x) for x in v]
            return v

        return thaw(self.data)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PatientProfile":
        """
        Validate the required core (age, sex), derive missing lipid values,
        and freeze a deep copy. Raises ValidationError listing every bad field.
        """
        if raw is None:
            raise ValidationError({"patient": "Patient data is required"})

        d: Dict[str, Any] = copy.deepcopy(dict(raw))
        errors: Dict[str, str] = {}

        age = safe_float(d.get("age"))
        if d.get("age") is None:
            errors["age"] = "Age is required"
        elif age is None:
            errors["age"] = "Age must be numeric"
        elif age < 0 or age > 120:
            errors["age"] = "Age out of range (0-120)"

        sex = _normalize_sex(d.get("sex"))
        if d.get("sex") is None:
            errors["sex"] = "Sex is required"
        elif sex is None:
            errors["sex"] = "Sex must be male or female"

        if errors:
            raise ValidationError(errors)

        d["age"] = age
        d["sex"] = sex

        labels = d.get("conditions") or d.get("medical_conditions") or []
        if isinstance(labels, str):
            labels = [x for x in labels.split(",")]
        conditions = frozenset(_norm_label(x) for x in labels if _norm_label(x))
        d["conditions"] = sorted(conditions)

        meds = d.get("medications") or []
        if isinstance(meds, str):
            meds = [m for m in meds.split(",")]
        d["medications"] = [str(m).strip() for m in meds if str(m).strip()]

        tried = d.get("statins_tried") or []
        if isinstance(tried, str):
            tried = tried.split(",")
        d["statins_tried"] = sorted({str(s).strip().lower() for s in tried if str(s).strip()})

        _derive_lipids(d)
        return cls(data=_freeze(d), conditions=conditions)


def _derive_lipids(d: Dict[str, Any]) -> None:
    tc = safe_float(d.get("total_cholesterol"))
    hdl = safe_float(d.get("hdl"))
    tg = safe_float(d.get("triglycerides"))

    if safe_float(d.get("non_hdl")) is None and tc is not None and hdl is not None:
        d["non_hdl"] = round(tc - hdl, 2)

    if safe_float(d.get("ldl")) is None and tc is not None and hdl is not None:
        # Friedewald is invalid at TG >= 4.5 mmol/L
        if tg is not None and tg < 4.5:
            d["ldl"] = max(0.0, round(tc - hdl - tg / 2.2, 2))
            d["ldl_derived"] = "friedewald"
        elif safe_float(d.get("non_hdl")) is not None:
            d["ldl"] = round(float(d["non_hdl"]) * 0.8, 2)
            d["ldl_derived"] = "non_hdl_estimate"

    if safe_float(d.get("chol_ratio")) is None and tc is not None and hdl:
        d["chol_ratio"] = round(tc / hdl, 1)


# ----------------------------
# Single condition lookup
# ----------------------------
def has_condition(p: PatientProfile, *names: str) -> bool:
    """True if ANY of `names` is in the condition set or present as a truthy same-named field."""
    for name in names:
        key = _norm_label(name)
        if key in p.conditions or _truthy(p.get(key)):
            return True
    return False


def matched_conditions(p: PatientProfile, names: Iterable[str]) -> List[str]:
    return [n for n in names if has_condition(p, n)]


def has_diabetes(p: PatientProfile) -> bool:
    return has_condition(p, "diabetes", "type_2_diabetes", "type_1_diabetes", "t2dm")


def has_ckd(p: PatientProfile) -> bool:
    return has_condition(p, "ckd", "chronic_kidney_disease")


def lpa_elevated(p: PatientProfile, threshold: float = LPA_ELEVATED_MGDL) -> bool:
    lpa = p.num("lpa")
    return lpa is not None and lpa >= threshold
