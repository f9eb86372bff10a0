# risk_comparison.py
# Two-algorithm comparison + suggested-algorithm score.
#
# - "comprehensive" = the algorithm that models ethnicity and extra comorbidities (QRISK3-like)
# - "conventional"  = the classic risk-factor model (Framingham-like)
# - agreement buckets: |a-b| <= 3 high, <= 7.5 moderate, else low (thresholds from Settings)
# - agreement + differences are symmetric in (a, b); the suggestion is not

from __future__ import annotations

from typing import Any, Dict, List, Optional

from lipid_config import Settings
from patient_profile import PatientProfile, _norm_label, has_ckd, has_condition, safe_float
from risk_category import categorize_risk

DEFAULT_ETHNICITIES = {"", "white", "white_or_not_stated", "not_stated", "unknown", "other"}

# comorbidities only the comprehensive algorithm models (+2 each)
COMPREHENSIVE_ONLY_FACTORS = (
    "atrial_fibrillation",
    "chronic_kidney_disease",
    "rheumatoid_arthritis",
    "sle",
    "migraines",
    "severe_mental_illness",
    "atypical_antipsychotics",
    "regular_steroids",
)


def _pct(x: Any) -> float:
    v = safe_float(x)
    return 0.0 if v is None else v


def agreement_level(absolute_difference: float, settings: Optional[Settings] = None) -> str:
    s = settings or Settings()
    if absolute_difference <= s.agreement_high:
        return "high"
    if absolute_difference <= s.agreement_moderate:
        return "moderate"
    return "low"


def compare_risks(pct_a: Any, pct_b: Any, settings: Optional[Settings] = None) -> Dict[str, Any]:
    a, b = _pct(pct_a), _pct(pct_b)
    diff = abs(a - b)
    mean = (a + b) / 2.0
    rel = diff / mean * 100.0 if mean > 0 else 0.0
    return {
        "absoluteDifference": round(diff, 2),
        "relativeDifference": round(rel, 1),
        "agreementLevel": agreement_level(diff, settings),
    }


def non_default_ethnicity(p: PatientProfile) -> Optional[str]:
    eth = _norm_label(p.get("ethnicity"))
    return None if eth in DEFAULT_ETHNICITIES else eth


def explanatory_factors(p: PatientProfile, comprehensive: str, conventional: str) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []

    def add(factor: str, description: str, impact: str) -> None:
        out.append({"factor": factor, "description": description, "impact": impact})

    eth = non_default_ethnicity(p)
    if eth:
        add("ethnicity", f"{comprehensive} accounts for ethnicity ({eth}), while {conventional} does not.", "moderate")
    if has_condition(p, "atrial_fibrillation", "af"):
        add("atrial_fibrillation", f"{comprehensive} includes atrial fibrillation as a risk factor, {conventional} does not.", "high")
    if has_condition(p, "rheumatoid_arthritis", "ra"):
        add("rheumatoid_arthritis", f"{comprehensive} includes rheumatoid arthritis as a risk factor, {conventional} does not.", "moderate")
    if has_ckd(p):
        add("chronic_kidney_disease", f"{comprehensive} includes chronic kidney disease as a risk factor, {conventional} does not.", "high")
    if has_condition(p, "family_history", "family_history_premature_cvd"):
        add("family_history_weighting", f"{conventional} and {comprehensive} weight family history differently.", "moderate")

    add("development_population",
        f"{conventional} was developed in a US population, while {comprehensive} was developed in a UK population.",
        "moderate")

    if p.age < 40:
        add("age_modeling", f"{conventional} and {comprehensive} model younger ages differently.", "low")
    elif p.age > 65:
        add("age_modeling", f"{conventional} and {comprehensive} model older ages differently.", "moderate")

    if p.sex == "female":
        add("sex_modeling", f"{conventional} and {comprehensive} model female risk factors differently.", "moderate")
    return out


def suggest_algorithm(
    p: PatientProfile,
    comprehensive: str,
    comprehensive_pct: Any,
    conventional: str,
    conventional_pct: Any,
    agreement: str,
) -> Dict[str, Any]:
    """Score both algorithms; ties go to the comprehensive one."""
    score = {comprehensive: 0, conventional: 0}
    reasons: List[str] = []

    if p.age < 40:
        score[comprehensive] += 1
        reasons.append("Age <40: wider validated age range")
    elif p.age > 75:
        score[comprehensive] += 2
        reasons.append("Age >75: wider validated age range")

    if non_default_ethnicity(p):
        score[comprehensive] += 3
        reasons.append("Non-default ethnicity is modelled")

    for factor in COMPREHENSIVE_ONLY_FACTORS:
        if has_condition(p, factor):
            score[comprehensive] += 2
            reasons.append(f"Models {factor.replace('_', ' ')}")

    if has_condition(p, "south_asian"):
        score[conventional] += 1
        reasons.append("South Asian modifier applied to the conventional estimate")

    if agreement == "high":
        score[comprehensive] += 1
    elif agreement == "low":
        higher = comprehensive if _pct(comprehensive_pct) > _pct(conventional_pct) else conventional
        score[higher] += 2
        reasons.append(f"Low agreement: prefer the higher (more conservative) estimate from {higher}")

    chosen = comprehensive if score[comprehensive] >= score[conventional] else conventional
    rationale = (
        f"{comprehensive} is recommended because it accounts for more risk factors specific to this patient."
        if chosen == comprehensive
        else f"{conventional} is recommended for this patient based on their specific risk profile."
    )
    return {"algorithm": chosen, "scores": score, "reasons": reasons, "rationale": rationale}


def _summary(comprehensive: str, comp_pct: float, conventional: str, conv_pct: float, cmp: Dict[str, Any], same_cat: bool) -> str:
    head = (f"{conventional} ({conv_pct}%) and {comprehensive} ({comp_pct}%) show {cmp['agreementLevel']} agreement "
            f"with an absolute difference of {cmp['absoluteDifference']:.1f}%.")
    if same_cat:
        return head + " Both algorithms agree on risk category."
    return head + " The algorithms suggest different risk categories, so clinical judgment is important."


CLINICAL_NOTE = {
    "high": "Either algorithm can be used confidently for risk assessment in this patient.",
    "moderate": "Prefer the more comprehensive algorithm, but verify against the conventional estimate.",
    "low": ("Significant differences between algorithms; consider factors captured by neither and use clinical "
            "judgment. When in doubt, the higher risk estimate may be preferable for treatment decisions."),
}


def build_comparison(
    p: PatientProfile,
    comprehensive: str,
    comprehensive_pct: Any,
    conventional: str,
    conventional_pct: Any,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    comp, conv = _pct(comprehensive_pct), _pct(conventional_pct)
    cmp = compare_risks(comp, conv, settings)
    cat_comp = categorize_risk(p, comp / 100.0)
    cat_conv = categorize_risk(p, conv / 100.0)
    same_cat = cat_comp == cat_conv

    suggestion = suggest_algorithm(p, comprehensive, comp, conventional, conv, cmp["agreementLevel"])
    cmp.update({
        "categoryAgreement": same_cat,
        "categories": {comprehensive: cat_comp.name, conventional: cat_conv.name},
        "explanatoryFactors": explanatory_factors(p, comprehensive, conventional),
        "suggestedAlgorithm": suggestion["algorithm"],
        "suggestion": suggestion,
        "summary": _summary(comprehensive, comp, conventional, conv, cmp, same_cat),
        "clinicalNote": CLINICAL_NOTE[cmp["agreementLevel"]],
    })
    return cmp
