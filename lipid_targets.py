# lipid_targets.py
# Lipid Target Resolver: (RiskCategory, patient flags) -> LipidTargets.
#
# Priority (ordered guard clauses, first match wins):
#   ASCVD > FH > diabetes + additional risk factors > High/VeryHigh > Moderate > Low
# ASCVD/FH branches tighten further on very-high-risk features / additional risk factors.

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from lipid_config import (
    LOW_FORCE_TREAT_LDL,
    MODERATE_FORCE_TREAT_LDL,
    TARGET_BUNDLES,
)
from patient_profile import (
    PatientProfile,
    add_trace,
    has_ckd,
    has_condition,
    has_diabetes,
    lpa_elevated,
)
from risk_category import HIGH, MODERATE, VERY_HIGH, RiskCategory, has_ascvd, has_fh

VASCULAR_BEDS = {
    "coronary": ("prev_mi", "coronary_artery_disease", "myocardial_infarction",
                 "acute_coronary_syndrome", "coronary_revascularization"),
    "cerebral": ("stroke", "tia", "carotid_stenosis", "cerebrovascular_disease"),
    "peripheral": ("pvd", "peripheral_arterial_disease", "peripheral_vascular_disease"),
}


@dataclass(frozen=True)
class LipidTargets:
    ldl: float
    non_hdl: float
    apob: float
    ldl_reduction: Optional[int]
    alternative_goal: bool = False
    source: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _bundle(key: str, reason: str, alternative_goal: bool = False) -> LipidTargets:
    b = TARGET_BUNDLES[key]
    return LipidTargets(
        ldl=b["ldl"],
        non_hdl=b["non_hdl"],
        apob=b["apob"],
        ldl_reduction=b["ldl_reduction"],
        alternative_goal=alternative_goal,
        source=key,
        reason=reason,
    )


# ----------------------------
# Feature checks
# ----------------------------
def affected_vascular_beds(p: PatientProfile) -> List[str]:
    return [bed for bed, names in VASCULAR_BEDS.items() if has_condition(p, *names)]


def very_high_risk_features(p: PatientProfile) -> List[str]:
    """Only meaningful alongside clinical ASCVD."""
    out: List[str] = []
    if len(affected_vascular_beds(p)) >= 2:
        out.append("Polyvascular disease (≥2 vascular beds)")
    if has_condition(p, "recurrent_acs", "recent_acs", "recurrent_cv_events"):
        out.append("Recent or recurrent acute coronary syndrome")
    if has_ascvd(p):
        if has_diabetes(p):
            out.append("ASCVD with diabetes")
        if has_ckd(p):
            out.append("ASCVD with chronic kidney disease")
        if has_fh(p):
            out.append("ASCVD with familial hypercholesterolemia")
        if lpa_elevated(p):
            out.append("ASCVD with elevated Lp(a)")
    return out


def additional_risk_factors(p: PatientProfile) -> List[str]:
    out: List[str] = []
    age = p.num("age")
    duration = p.num("diabetes_duration")
    egfr = p.num("egfr")
    acr = p.num("acr")

    if age is not None and age >= 40:
        out.append("Age ≥40")
    if duration is not None and duration > 15 and age is not None and age > 30:
        out.append("Diabetes duration >15 years (age >30)")
    if has_condition(p, "retinopathy", "nephropathy", "neuropathy", "microvascular_disease"):
        out.append("Microvascular disease")
    if (egfr is not None and egfr < 60) or (acr is not None and acr > 3):
        out.append("CKD markers (eGFR <60 or ACR >3)")
    if has_condition(p, "hypertension"):
        out.append("Hypertension")
    if has_condition(p, "nash", "masld", "nafld"):
        out.append("NASH / fatty liver disease")
    if lpa_elevated(p):
        out.append("Lp(a) ≥50 mg/dL")
    if has_condition(p, "family_history", "family_history_premature_cvd"):
        out.append("Family history of premature ASCVD")
    return out


# ----------------------------
# Decision table
# ----------------------------
def resolve_targets(
    category: RiskCategory,
    p: PatientProfile,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> LipidTargets:
    ldl = p.ldl

    if has_ascvd(p):
        features = very_high_risk_features(p)
        if features:
            add_trace(trace, "Targets_ASCVD_very_high", features, "LDL <1.4 mmol/L or ≥60% reduction")
            return _bundle("ascvd_very_high", "ASCVD with very-high-risk features: " + "; ".join(features))
        add_trace(trace, "Targets_ASCVD", True, "LDL <1.8 mmol/L or ≥50% reduction")
        return _bundle("ascvd", "Secondary prevention (clinical ASCVD)")

    if has_fh(p):
        extra = additional_risk_factors(p)
        if extra:
            add_trace(trace, "Targets_FH_additional", extra, "LDL <1.8 mmol/L")
            return _bundle("fh_additional", "Familial hypercholesterolemia with additional risk factors")
        add_trace(trace, "Targets_FH", True, "LDL <2.0 mmol/L or ≥50% reduction")
        return _bundle("fh", "Familial hypercholesterolemia")

    if has_diabetes(p):
        extra = additional_risk_factors(p)
        if extra:
            add_trace(trace, "Targets_DM", extra, "LDL <2.0 mmol/L or ≥50% reduction")
            return _bundle("diabetes", "Diabetes with additional risk factors")

    if category in (HIGH, VERY_HIGH):
        add_trace(trace, "Targets_high", category.name, "LDL <2.0 mmol/L or ≥50% reduction")
        return _bundle("high", f"{category.label}")

    if category == MODERATE:
        if ldl is not None and ldl >= MODERATE_FORCE_TREAT_LDL:
            add_trace(trace, "Targets_moderate_LDL", ldl, "LDL ≥3.5 -> High-risk targets")
            return _bundle("high", "Moderate risk with LDL ≥3.5 mmol/L")
        if lpa_elevated(p):
            add_trace(trace, "Targets_moderate_Lp(a)", p.num("lpa"), "Elevated Lp(a) -> High-risk targets")
            return _bundle("high", "Moderate risk with elevated Lp(a)")
        add_trace(trace, "Targets_moderate", True, "LDL <2.5 mmol/L or ≥30% reduction")
        return _bundle("moderate", "Moderate Risk")

    if ldl is not None and ldl >= LOW_FORCE_TREAT_LDL:
        add_trace(trace, "Targets_low_LDL", ldl, "LDL ≥5.0 -> treat (≥50% reduction)")
        return _bundle("low_treat", "Low risk with LDL ≥5.0 mmol/L")

    add_trace(trace, "Targets_low", ldl, "Pharmacotherapy generally not indicated; reference thresholds only")
    return _bundle("low_reference", "Low Risk (pharmacotherapy generally not indicated)", alternative_goal=True)


# ----------------------------
# Targets met
# ----------------------------
def assess_targets_met(p: PatientProfile, targets: LipidTargets) -> Dict[str, Any]:
    """
    Each target is True/False when the value is present, None when unassessed.
    overall: LDL met, OR at least half of the assessed targets met.
    """
    ldl = p.ldl
    non_hdl = p.num("non_hdl")
    apob = p.num("apob")

    out: Dict[str, Any] = {
        "ldl": None if ldl is None else ldl <= targets.ldl,
        "nonHdl": None if non_hdl is None else non_hdl <= targets.non_hdl,
        "apoB": None if apob is None else apob <= targets.apob,
        "overall": False,
        "percentAboveTarget": None,
    }

    if ldl is not None and targets.ldl:
        out["percentAboveTarget"] = (ldl - targets.ldl) / targets.ldl * 100.0

    assessed = [v for v in (out["ldl"], out["nonHdl"], out["apoB"]) if v is not None]
    if assessed:
        out["overall"] = bool(out["ldl"]) or (sum(1 for v in assessed if v) / len(assessed) >= 0.5)
    return out


def target_strictness(t: LipidTargets) -> float:
    """Lower LDL ceiling = stricter. Used for comparing bundles."""
    return -t.ldl
