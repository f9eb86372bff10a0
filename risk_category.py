# risk_category.py
# Risk Categorizer: numeric 10y risk fraction + clinical flags -> RiskCategory.
#
# Evaluation order (first override that fires wins):
#   1) clinical ASCVD             -> High
#   2) familial hypercholesterolemia -> VeryHigh
#   3) CKD / long-standing or complicated diabetes -> High
#   4) Lp(a) >= 50 mg/dL with risk in the 5-20% band -> bump one category
#   5) numeric thresholds <10% / <20% / <30% / else
#
# Overrides 1 and 3 are floors: a numeric risk that already sits higher
# keeps the higher category, so adding a clinical flag never lowers it.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lipid_config import (
    DIABETES_LONG_DURATION_YEARS,
    LPA_BUMP_MIN_RISK,
    RISK_CATEGORY_TABLE,
)
from patient_profile import (
    PatientProfile,
    add_trace,
    has_ckd,
    has_condition,
    has_diabetes,
    lpa_elevated,
    safe_float,
)

ASCVD_CONDITIONS = (
    "prev_mi",
    "stroke",
    "pvd",
    "previous_cardiovascular_event",
    "coronary_artery_disease",
    "carotid_stenosis",
    "peripheral_arterial_disease",
    "coronary_revascularization",
    "myocardial_infarction",
    "ascvd",
)

FH_CONDITIONS = ("familial_hypercholesterolemia", "fh")


@dataclass(frozen=True)
class RiskCategory:
    name: str
    rank: int
    threshold: float
    ldl: float
    non_hdl: float
    apob: float

    def __lt__(self, other: "RiskCategory") -> bool:
        return self.rank < other.rank

    def __le__(self, other: "RiskCategory") -> bool:
        return self.rank <= other.rank

    @property
    def label(self) -> str:
        return {"VeryHigh": "Very High Risk"}.get(self.name, f"{self.name} Risk")

    def default_targets(self) -> Dict[str, float]:
        return {"ldl": self.ldl, "non_hdl": self.non_hdl, "apob": self.apob}


def _build(name: str) -> RiskCategory:
    row = RISK_CATEGORY_TABLE[name]
    return RiskCategory(name=name, rank=row["rank"], threshold=row["threshold"],
                        ldl=row["ldl"], non_hdl=row["non_hdl"], apob=row["apob"])


LOW = _build("Low")
MODERATE = _build("Moderate")
HIGH = _build("High")
VERY_HIGH = _build("VeryHigh")
CATEGORIES = (LOW, MODERATE, HIGH, VERY_HIGH)
BY_NAME = {c.name: c for c in CATEGORIES}


def category_by_name(name: str) -> Optional[RiskCategory]:
    key = str(name or "").replace(" ", "").replace("_", "").lower()
    for c in CATEGORIES:
        if c.name.lower() == key or c.name.lower() + "risk" == key:
            return c
    return None


def has_ascvd(p: PatientProfile) -> bool:
    return has_condition(p, *ASCVD_CONDITIONS)


def has_fh(p: PatientProfile) -> bool:
    return has_condition(p, *FH_CONDITIONS)


def _clean_risk(risk: Any) -> float:
    v = safe_float(risk)
    if v is None:
        return 0.0
    return min(max(v, 0.0), 1.0)


def category_for_risk(risk: Any) -> RiskCategory:
    r = _clean_risk(risk)
    for c in CATEGORIES:
        if r < c.threshold:
            return c
    return VERY_HIGH


def categorize_risk(
    p: PatientProfile,
    risk: Any,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> RiskCategory:
    """Total + deterministic: missing/invalid risk counts as 0."""
    r = _clean_risk(risk)
    numeric = category_for_risk(r)

    if has_ascvd(p):
        add_trace(trace, "Category_ASCVD", True, f"Clinical ASCVD -> at least High (numeric {numeric.name})")
        floor = VERY_HIGH if has_fh(p) else HIGH
        return max(floor, numeric, key=lambda c: c.rank)

    if has_fh(p):
        add_trace(trace, "Category_FH", True, "Familial hypercholesterolemia -> VeryHigh")
        return VERY_HIGH

    duration = p.num("diabetes_duration")
    long_dm = has_diabetes(p) and duration is not None and duration >= DIABETES_LONG_DURATION_YEARS
    complicated_dm = has_diabetes(p) and has_condition(p, "diabetes_complications")
    if has_ckd(p) or long_dm or complicated_dm:
        why = "CKD" if has_ckd(p) else ("diabetes ≥15y" if long_dm else "diabetes with complications")
        add_trace(trace, "Category_CKD_DM", why, f"{why} -> at least High")
        return max(HIGH, numeric, key=lambda c: c.rank)

    if lpa_elevated(p) and r >= LPA_BUMP_MIN_RISK:
        if r < LOW.threshold:
            add_trace(trace, "Category_Lp(a)_bump", p.num("lpa"), "Elevated Lp(a), risk 5-10% -> Moderate")
            return MODERATE
        if r < MODERATE.threshold:
            add_trace(trace, "Category_Lp(a)_bump", p.num("lpa"), "Elevated Lp(a), risk 10-20% -> High")
            return HIGH

    add_trace(trace, "Category_numeric", round(r * 100, 1), f"10y risk -> {numeric.name}")
    return numeric
