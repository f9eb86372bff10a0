# pcsk9_eligibility.py
# Coverage Eligibility Engine (PCSK9 inhibitors, BC PharmaCare Special Authority rules).
#
# Strict order:
#   1) exclusions (early exit): age <18, pregnancy/breastfeeding, secondary causes
#   2) base requirement: confirmed FH OR confirmed ASCVD
#   3) additional requirements, tracked independently:
#        LDL ≥1.8 | high-intensity statin ≥3 mo (or documented intolerance to ≥2 statins) | ezetimibe ≥3 mo
#   4) extreme-high-risk override: stricter target annotation only, never grants eligibility
#   5) eligible = base AND (all three additional OR intolerance + LDL + ezetimibe)
#
# Any unexpected failure -> ineligible + "manual review required" (never propagates).

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from lipid_config import (
    COVERAGE_MAX_HBA1C,
    COVERAGE_MIN_AGE,
    COVERAGE_MIN_LDL,
    COVERAGE_MIN_STATINS_TRIED,
    COVERAGE_MIN_THERAPY_MONTHS,
    COVERAGE_RECENT_EVENT_MONTHS,
    FH_LDL_FEMALE,
    FH_LDL_MALE,
    FH_MIN_DLCN_SCORE,
    SEQUESTRANT_MAX_TG,
)
from lipid_errors import EligibilityEvaluationError
from lipid_targets import affected_vascular_beds
from patient_profile import (
    PatientProfile,
    add_trace,
    has_ckd,
    has_condition,
    has_diabetes,
    lpa_elevated,
    safe_float,
)
from risk_category import has_fh
from therapy_state import TherapyState

logger = logging.getLogger(__name__)


# ----------------------------
# Criterion text
# ----------------------------
BASE_FH = ("Patient diagnosed with heterozygous familial hypercholesterolemia (HeFH) "
           "confirmed by genetic testing OR clinical criteria")
BASE_ASCVD = ("Patient diagnosed with atherosclerotic cardiovascular disease (ASCVD), defined as history of "
              "myocardial infarction, coronary revascularization, stroke, TIA, or symptomatic peripheral arterial disease")
REQ_LDL = "LDL-C ≥ 1.8 mmol/L (≥ 70 mg/dL) despite maximally tolerated statin therapy AND ezetimibe"
REQ_STATIN = "Patient is currently on maximally tolerated high-intensity statin therapy for ≥ 3 months"
REQ_EZETIMIBE = "Patient is currently on ezetimibe 10 mg daily for ≥ 3 months in addition to statin therapy"
REQ_INTOLERANCE = ("For statin intolerance: documented inability to tolerate at least two different statins "
                   "at the lowest daily starting dose (supported by CK levels if muscle symptoms present)")

EXCL_PREGNANCY = "Pregnancy or breastfeeding"
EXCL_SECONDARY = ("Secondary causes of hyperlipidemia (e.g., untreated hypothyroidism, uncontrolled diabetes, "
                  "obstructive liver disease)")
EXCL_AGE = "Age < 18 years"

EXTREME_HIGH_RISK_TARGET = "1.4 mmol/L or ≥ 60% reduction from baseline"

DOCUMENTATION_REQUIRED = (
    "Baseline and current lipid profile (within last 30 days)",
    "Documentation of statin therapy (including doses tried and reasons for intolerance if applicable)",
    "Documentation of ezetimibe therapy",
    "Documentation of FH diagnosis (if applicable)",
    "Documentation of ASCVD events (if applicable)",
)

RENEWAL_CRITERIA = (
    "Documented LDL-C reduction of ≥ 10% from baseline after 3 months of therapy",
    "Continued adherence to background lipid-lowering therapy (statin and/or ezetimibe)",
    "Renewal recommended every 12 months with documentation of continued clinical benefit and adherence",
)

MANUAL_REVIEW = "Manual review required"

# the PharmaCare list names events and procedures; a bare "coronary_artery_disease"
# label raises the risk category (risk_category.ASCVD_CONDITIONS) but does not qualify here
COVERAGE_ASCVD_CONDITIONS = (
    "prev_mi", "myocardial_infarction", "acute_coronary_syndrome",
    "stroke", "tia", "transient_ischemic_attack",
    "pvd", "peripheral_arterial_disease", "peripheral_vascular_disease",
    "coronary_revascularization", "pci", "cabg",
    "carotid_stenosis", "symptomatic_carotid_disease",
    "previous_cardiovascular_event", "ascvd",
)

FH_CAUSAL_GENES = ("LDLR", "APOB", "PCSK9")

# label -> name fragments found in a medication list
DYSLIPIDEMIA_MEDICATIONS = {
    "corticosteroids": ("corticosteroid", "prednisone", "prednisolone", "methylprednisolone", "dexamethasone", "hydrocortisone"),
    "anabolic_steroids": ("anabolic_steroid", "nandrolone", "oxandrolone", "stanozolol"),
    "cyclosporine": ("cyclosporine", "ciclosporin"),
    "antiretrovirals": ("antiretroviral", "ritonavir", "lopinavir", "efavirenz", "atazanavir", "darunavir"),
    "second_generation_antipsychotics": ("second_generation_antipsychotic", "olanzapine", "clozapine", "quetiapine", "risperidone"),
}


@dataclass
class EligibilityAssessment:
    eligible: bool = False
    met_criteria: List[str] = field(default_factory=list)
    unmet_criteria: List[str] = field(default_factory=list)
    exclusions: List[str] = field(default_factory=list)
    special_considerations: List[str] = field(default_factory=list)
    target_ldl_override: Optional[str] = None
    recommendations: List[str] = field(default_factory=list)
    steps_to_eligibility: List[str] = field(default_factory=list)
    alternative_options: List[str] = field(default_factory=list)
    documentation_required: List[str] = field(default_factory=lambda: list(DOCUMENTATION_REQUIRED))
    documentation_provided: List[str] = field(default_factory=list)
    renewal_criteria: List[str] = field(default_factory=list)
    manual_review: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible": self.eligible,
            "metCriteria": list(self.met_criteria),
            "unmetCriteria": list(self.unmet_criteria),
            "exclusions": list(self.exclusions),
            "specialConsiderations": list(self.special_considerations),
            "targetLdlOverride": self.target_ldl_override,
            "recommendations": list(self.recommendations),
            "stepsToEligibility": list(self.steps_to_eligibility),
            "alternativeOptions": list(self.alternative_options),
            "documentation": {"required": list(self.documentation_required), "provided": list(self.documentation_provided)},
            "renewalCriteria": list(self.renewal_criteria),
            "manualReview": self.manual_review,
            "error": self.error,
        }


# ----------------------------
# Rule helpers
# ----------------------------
def _months_since(raw: Any, today: date) -> int:
    if isinstance(raw, datetime):
        d = raw.date()
    elif isinstance(raw, date):
        d = raw
    else:
        try:
            d = date.fromisoformat(str(raw).strip()[:10])
        except ValueError as e:
            raise EligibilityEvaluationError(f"Unparseable event date: {raw!r}", {"value": str(raw)}) from e
    return (today.year - d.year) * 12 + (today.month - d.month)


def secondary_dyslipidemia_causes(p: PatientProfile) -> List[str]:
    causes: List[str] = []
    if has_condition(p, "hypothyroidism") and not has_condition(p, "treated_hypothyroidism"):
        causes.append("Untreated hypothyroidism")

    hba1c = p.num("hba1c")
    if has_diabetes(p) and hba1c is not None and hba1c > COVERAGE_MAX_HBA1C:
        causes.append("Uncontrolled diabetes")

    if has_condition(p, "obstructive_liver_disease", "cholestatic_liver_disease"):
        causes.append("Obstructive liver disease")

    if has_condition(p, "nephrotic_syndrome"):
        causes.append("Nephrotic syndrome")

    meds = [str(m).lower().replace(" ", "_").replace("-", "_") for m in p.medications]
    for label, fragments in DYSLIPIDEMIA_MEDICATIONS.items():
        if has_condition(p, label) or any(f in m for m in meds for f in fragments):
            causes.append(f"Medication-induced ({label.replace('_', ' ')})")
    return causes


def has_confirmed_fh(p: PatientProfile) -> bool:
    if not has_fh(p):
        return False
    ldl = p.ldl
    dlcn = p.num("dlcn_score")
    very_high_ldl = ldl is not None and (
        (p.sex == "male" and ldl > FH_LDL_MALE) or (p.sex == "female" and ldl > FH_LDL_FEMALE)
    )
    gene = str(p.get("fh_gene") or "").strip().upper()
    return (
        has_condition(p, "fh_genetic_testing")
        or (dlcn is not None and dlcn >= FH_MIN_DLCN_SCORE)
        or (very_high_ldl and has_condition(p, "fh_family_history"))
        or gene in FH_CAUSAL_GENES
    )


def has_confirmed_ascvd(p: PatientProfile) -> bool:
    return has_condition(p, *COVERAGE_ASCVD_CONDITIONS)


def extreme_high_risk_reasons(p: PatientProfile, today: date) -> List[str]:
    reasons: List[str] = []

    recent = has_condition(p, "recent_acs", "recent_mi")
    for key in ("acs_date", "mi_date"):
        if not recent and p.get(key):
            recent = _months_since(p.get(key), today) <= COVERAGE_RECENT_EVENT_MONTHS
    if recent:
        reasons.append("Recent ACS/MI within 12 months")

    if has_condition(p, "recurrent_cv_events", "recurrent_acs"):
        reasons.append("Recurrent CV events despite therapy")

    if len(affected_vascular_beds(p)) >= 2:
        reasons.append("Polyvascular disease (≥2 vascular beds)")

    if has_confirmed_ascvd(p):
        if has_diabetes(p):
            reasons.append("ASCVD with diabetes")
        if has_ckd(p):
            reasons.append("ASCVD with chronic kidney disease")
        if has_confirmed_fh(p):
            reasons.append("ASCVD with familial hypercholesterolemia")
        if lpa_elevated(p):
            reasons.append("ASCVD with elevated Lp(a)")
    return reasons


def _alternative_options(p: PatientProfile, therapy: Optional[TherapyState]) -> List[str]:
    out: List[str] = []
    if therapy is None or therapy.statin_intensity != "high":
        out.append("Optimize statin therapy to high-intensity if tolerated")
    if therapy is None or not therapy.has_ezetimibe:
        out.append("Add ezetimibe 10 mg daily to current statin therapy")
    out.append("Consider bempedoic acid if eligible (not covered by BC PharmaCare)")
    tg = p.num("triglycerides")
    if tg is not None and tg < SEQUESTRANT_MAX_TG:
        out.append("Consider bile acid sequestrants if triglycerides remain < 3.0 mmol/L")
    out.append("Optimize lifestyle interventions (Mediterranean diet, increased physical activity, weight management)")
    return out


# ----------------------------
# Engine
# ----------------------------
def assess_pcsk9_eligibility(
    p: PatientProfile,
    therapy: Optional[TherapyState],
    today: Optional[date] = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> EligibilityAssessment:
    try:
        return _evaluate(p, therapy, today or date.today(), trace)
    except Exception as e:
        logger.exception("PCSK9 eligibility evaluation failed")
        add_trace(trace, "Eligibility_error", str(e), MANUAL_REVIEW)
        return EligibilityAssessment(
            eligible=False,
            recommendations=["An error occurred during eligibility evaluation. " + MANUAL_REVIEW + "."],
            manual_review=True,
            error=str(e),
        )


def _evaluate(
    p: PatientProfile,
    therapy: Optional[TherapyState],
    today: date,
    trace: Optional[List[Dict[str, Any]]],
) -> EligibilityAssessment:
    r = EligibilityAssessment()

    # 1) exclusions
    if p.age < COVERAGE_MIN_AGE:
        r.exclusions.append(EXCL_AGE)
        r.recommendations.append("Patient is under age 18 - not eligible for PCSK9 inhibitor coverage")
        add_trace(trace, "Eligibility_exclusion", "age", EXCL_AGE)
        return r

    if has_condition(p, "pregnancy", "pregnant", "breastfeeding"):
        r.exclusions.append(EXCL_PREGNANCY)
        r.recommendations.append("PCSK9 inhibitors contraindicated during pregnancy/breastfeeding")
        add_trace(trace, "Eligibility_exclusion", "pregnancy", EXCL_PREGNANCY)
        return r

    causes = secondary_dyslipidemia_causes(p)
    if causes:
        r.exclusions.append(EXCL_SECONDARY)
        r.recommendations.append("Treat underlying secondary causes of dyslipidemia first: " + ", ".join(causes))
        add_trace(trace, "Eligibility_exclusion", causes, EXCL_SECONDARY)
        return r

    # 2) base requirement
    fh = has_confirmed_fh(p)
    ascvd = has_confirmed_ascvd(p)
    for ok, text, doc in ((fh, BASE_FH, "FH diagnosis documentation"), (ascvd, BASE_ASCVD, "ASCVD event documentation")):
        if ok:
            r.met_criteria.append(text)
            r.documentation_provided.append(doc)
    add_trace(trace, "Eligibility_base", {"fh": fh, "ascvd": ascvd}, "base met" if (fh or ascvd) else "base not met")

    if not (fh or ascvd):
        r.unmet_criteria.extend([BASE_FH, BASE_ASCVD])
        r.recommendations.append("Patient does not meet base eligibility criteria (requires FH or ASCVD diagnosis)")
        r.recommendations.append("Patient does not qualify for PCSK9 inhibitor coverage under BC PharmaCare criteria")
        r.alternative_options = _alternative_options(p, therapy)
        return r

    # 3) additional requirements
    state = therapy or TherapyState()
    ldl = p.ldl
    ldl_met = ldl is not None and ldl >= COVERAGE_MIN_LDL
    if ldl_met:
        r.met_criteria.append(REQ_LDL)
        r.documentation_provided.append("Current lipid profile")
    else:
        r.unmet_criteria.append(REQ_LDL)
        if ldl is None:
            r.recommendations.append("Recent LDL-C measurement required for eligibility assessment")
            r.steps_to_eligibility.append("Obtain a current lipid profile")
        else:
            r.recommendations.append(
                f"Current LDL-C is {ldl} mmol/L, below the required threshold of 1.8 mmol/L for coverage"
            )

    statin_months = safe_float(p.get("statin_duration"))
    high_statin_met = False
    intolerance_met = False
    if state.statin_intensity == "high":
        high_statin_met = statin_months is not None and statin_months >= COVERAGE_MIN_THERAPY_MONTHS
        if high_statin_met:
            r.met_criteria.append(REQ_STATIN)
            r.documentation_provided.append("High-intensity statin therapy ≥ 3 months")
        else:
            r.recommendations.append("High-intensity statin must be used for at least 3 months before PCSK9 inhibitor eligibility")
            r.steps_to_eligibility.append("Complete ≥3 months of high-intensity statin therapy")
    elif has_condition(p, "statin_intolerance"):
        # a list of distinct statin names; from_dict splits a comma-separated string
        tried = p.get("statins_tried") or ()
        if not isinstance(tried, (list, tuple)):
            tried = ()
        intolerance_met = has_condition(p, "statin_intolerance_documented") and len(tried) >= COVERAGE_MIN_STATINS_TRIED
        if intolerance_met:
            r.met_criteria.append(REQ_INTOLERANCE)
            r.documentation_provided.append("Documented statin intolerance to multiple statins")
        else:
            r.recommendations.append("Documentation of intolerance to at least two different statins required")
            r.steps_to_eligibility.append("Document intolerance to ≥2 different statins")
    else:
        r.recommendations.append("Patient must be on high-intensity statin or have documented statin intolerance")
        r.steps_to_eligibility.append("Titrate to a high-intensity statin (or document intolerance to ≥2 statins)")
    if not (high_statin_met or intolerance_met):
        r.unmet_criteria.append(REQ_STATIN)

    ezetimibe_months = safe_float(p.get("ezetimibe_duration"))
    ezetimibe_met = False
    if state.has_ezetimibe:
        ezetimibe_met = ezetimibe_months is not None and ezetimibe_months >= COVERAGE_MIN_THERAPY_MONTHS
        if ezetimibe_met:
            r.met_criteria.append(REQ_EZETIMIBE)
            r.documentation_provided.append("Ezetimibe therapy ≥ 3 months")
        else:
            r.recommendations.append("Ezetimibe must be used for at least 3 months before PCSK9 inhibitor eligibility")
            r.steps_to_eligibility.append("Complete ≥3 months of ezetimibe 10 mg daily")
    else:
        r.recommendations.append("Patient must be on ezetimibe 10 mg daily in addition to statin therapy")
        r.steps_to_eligibility.append("Add ezetimibe 10 mg daily for ≥3 months")
    if not ezetimibe_met:
        r.unmet_criteria.append(REQ_EZETIMIBE)

    add_trace(
        trace,
        "Eligibility_additional",
        {"ldl": ldl_met, "highStatin": high_statin_met, "intolerance": intolerance_met, "ezetimibe": ezetimibe_met},
        "",
    )

    # 4) extreme high risk (annotation only)
    reasons = extreme_high_risk_reasons(p, today)
    if reasons:
        r.special_considerations.append("Patient meets criteria for extreme high-risk: " + ", ".join(reasons))
        r.target_ldl_override = EXTREME_HIGH_RISK_TARGET
        add_trace(trace, "Eligibility_extreme_high_risk", reasons, f"Target {EXTREME_HIGH_RISK_TARGET}")

    # 5) decision
    standard = ldl_met and high_statin_met and ezetimibe_met
    alternate = intolerance_met and ldl_met and ezetimibe_met
    r.eligible = standard or alternate
    add_trace(trace, "Eligibility_decision", r.eligible, "standard path" if standard else ("intolerance path" if alternate else "not eligible"))

    if r.eligible:
        r.steps_to_eligibility = []
        r.recommendations = [
            "Patient meets BC PharmaCare Special Authority criteria for PCSK9 inhibitor coverage",
            "Complete Special Authority Request Form and submit required documentation",
        ]
        if r.target_ldl_override:
            r.recommendations.append(f"Recommend target LDL-C of {r.target_ldl_override} for this extreme high-risk patient")
        else:
            r.recommendations.append("Recommend target LDL-C of <1.8 mmol/L or ≥50% reduction from baseline")
        r.recommendations.append("For renewal, document ≥10% LDL-C reduction after 3 months of therapy")
        r.renewal_criteria = list(RENEWAL_CRITERIA)
        return r

    r.recommendations.append("Patient has qualifying diagnosis but does not meet all criteria for coverage at this time")
    if not ldl_met:
        r.recommendations.append("Optimize current therapy to see if LDL-C rises to qualifying threshold of ≥1.8 mmol/L")
    r.alternative_options = _alternative_options(p, therapy)
    return r
