# intensification.py
# Treatment Intensification Engine.
#
# On-therapy table keyed on (statin tier, ezetimibe, PCSK9), ordered guard clauses:
#   targets met                 -> maintain
#   PCSK9 (any tier)            -> maximize_all_therapy
#   none                        -> start_statin
#   low                         -> increase_statin
#   moderate, no ezetimibe      -> add_ezetimibe
#   moderate + ezetimibe        -> increase_to_high_intensity
#   high, no ezetimibe          -> add_ezetimibe_to_high
#   high + ezetimibe            -> coverage check -> consider_pcsk9 | maximize_current_therapy
#   anything else               -> review_therapy
#
# Not on any lipid-lowering therapy -> initial path (risk category + % above LDL target).

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from lipid_targets import LipidTargets
from patient_profile import PatientProfile, add_trace, fmt_1dp, has_condition, lpa_elevated
from pcsk9_eligibility import EligibilityAssessment
from risk_category import HIGH, LOW, MODERATE, VERY_HIGH, RiskCategory, has_ascvd, has_fh
from therapy_state import TherapyState

LIFESTYLE_TRIAL_MAX_PCT_ABOVE = 20.0

STATIN_HIGH_MEDS = ["Atorvastatin 40-80 mg daily", "Rosuvastatin 20-40 mg daily"]
STATIN_MODERATE_MEDS = ["Atorvastatin 10-20 mg daily", "Rosuvastatin 5-10 mg daily", "Simvastatin 20-40 mg daily"]
EZETIMIBE_MEDS = ["Ezetimibe 10 mg daily"]
PCSK9_MEDS = ["Evolocumab 140 mg SC every 2 weeks", "Alirocumab 75-150 mg SC every 2 weeks"]
ADJUNCT_MEDS = ["Bempedoic acid 180 mg daily", "Colesevelam 3.75 g daily"]

EligibilityCheck = Callable[[], EligibilityAssessment]


def _rec(code: str, message: str, next_steps: List[str], medications: Optional[List[str]] = None, **extra) -> Dict[str, Any]:
    out = {
        "recommendation": code,
        "message": message,
        "nextSteps": list(next_steps),
        "medications": list(medications or []),
    }
    out.update(extra)
    return out


def _ldl_phrase(p: PatientProfile, targets: LipidTargets) -> str:
    ldl = p.ldl
    if ldl is None:
        return f"LDL target <{targets.ldl} mmol/L"
    return f"LDL {fmt_1dp(ldl)} mmol/L vs target <{targets.ldl} mmol/L"


# ----------------------------
# Initial path (no lipid-lowering therapy)
# ----------------------------
def initial_recommendation(
    p: PatientProfile,
    category: RiskCategory,
    targets: LipidTargets,
    targets_met: Dict[str, Any],
    trace: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    if p.ldl is None:
        add_trace(trace, "Initial_no_LDL", None, "Obtain lipid profile")
        return _rec(
            "obtain_lipids",
            "No LDL-C available; a fasting or non-fasting lipid profile is needed before a treatment decision.",
            ["Order lipid profile (TC, HDL, TG, LDL-C, non-HDL-C)", "Consider apoB and one-time Lp(a)"],
        )

    if targets_met.get("overall"):
        add_trace(trace, "Initial_targets_met", True, "Lifestyle")
        return _rec(
            "lifestyle",
            f"Lipid targets met without therapy ({_ldl_phrase(p, targets)}). Continue healthy lifestyle.",
            ["Reinforce lifestyle measures", "Reassess lipids and global risk in 1-5 years"],
        )

    if targets.alternative_goal:
        add_trace(trace, "Initial_alternative_goal", category.name, "Pharmacotherapy generally not indicated")
        return _rec(
            "lifestyle",
            "Low risk: pharmacotherapy generally not indicated. Lifestyle modification; "
            f"reference threshold LDL <{targets.ldl} mmol/L.",
            ["Heart-healthy diet and regular physical activity", "Reassess global risk every 3-5 years"],
            pharmacotherapy=False,
        )

    pct = targets_met.get("percentAboveTarget")
    if category in (LOW, MODERATE) and pct is not None and pct < LIFESTYLE_TRIAL_MAX_PCT_ABOVE:
        add_trace(trace, "Initial_lifestyle_trial", fmt_1dp(pct), "Within 20% of target -> lifestyle trial first")
        return _rec(
            "lifestyle_primary",
            f"LDL is {fmt_1dp(pct)}% above target ({_ldl_phrase(p, targets)}). "
            "Trial of intensive lifestyle modification first.",
            ["Intensive lifestyle modification for 3-6 months", "Repeat lipid profile in 3-6 months",
             "Start moderate-intensity statin if target still not met"],
        )

    high = category in (HIGH, VERY_HIGH) or (targets.ldl_reduction or 0) >= 50
    if high:
        add_trace(trace, "Initial_statin_high", category.name, "Start high-intensity statin")
        return _rec(
            "statin_high",
            f"Start high-intensity statin ({_ldl_phrase(p, targets)}).",
            ["Start high-intensity statin", "Repeat lipids in 6-8 weeks", "Add ezetimibe if target not met"],
            STATIN_HIGH_MEDS,
        )

    add_trace(trace, "Initial_statin_moderate", category.name, "Start moderate-intensity statin")
    return _rec(
        "statin_moderate",
        f"Start moderate-intensity statin ({_ldl_phrase(p, targets)}).",
        ["Start moderate-intensity statin", "Repeat lipids in 6-8 weeks", "Titrate if target not met"],
        STATIN_MODERATE_MEDS,
    )


# ----------------------------
# On-therapy decision table
# ----------------------------
def recommend_intensification(
    p: PatientProfile,
    category: RiskCategory,
    targets: LipidTargets,
    therapy: Optional[TherapyState],
    targets_met: Dict[str, Any],
    eligibility: Optional[EligibilityCheck] = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    `eligibility` is only called in the high + ezetimibe branch; its result is
    attached as `pcsk9Eligibility`.
    """
    if therapy is None or not therapy.on_therapy:
        return initial_recommendation(p, category, targets, targets_met, trace)

    tier = therapy.statin_intensity
    eze = therapy.has_ezetimibe
    where = _ldl_phrase(p, targets)

    if targets_met.get("overall"):
        add_trace(trace, "Intensify_maintain", tier, "Targets met on current therapy")
        return _rec(
            "maintain",
            f"Targets met on current therapy ({where}). Continue current regimen.",
            ["Continue current therapy", "Monitor adherence", "Repeat lipids in 6-12 months"],
        )

    if therapy.has_pcsk9:
        add_trace(trace, "Intensify_pcsk9_present", tier, "Maximize all therapy")
        return _rec(
            "maximize_all_therapy",
            f"On PCSK9 inhibitor with targets not met ({where}). Maximize adherence and background therapy.",
            ["Confirm adherence and injection technique", "Ensure maximally tolerated statin and ezetimibe",
             "Refer to lipid specialist"],
        )

    if tier == "none":
        add_trace(trace, "Intensify_start_statin", sorted(therapy.other_agents), "Start statin")
        meds = STATIN_HIGH_MEDS if category in (HIGH, VERY_HIGH) else STATIN_MODERATE_MEDS
        return _rec(
            "start_statin",
            f"No statin in current regimen ({where}). Start statin therapy.",
            ["Start statin at risk-appropriate intensity", "Repeat lipids in 6-8 weeks"],
            meds,
        )

    if tier == "low":
        add_trace(trace, "Intensify_increase_statin", tier, "Increase statin intensity")
        return _rec(
            "increase_statin",
            f"On low-intensity statin ({where}). Increase statin intensity.",
            ["Increase to moderate- or high-intensity statin", "Repeat lipids in 6-8 weeks"],
            STATIN_MODERATE_MEDS + STATIN_HIGH_MEDS,
        )

    if tier == "moderate" and not eze:
        add_trace(trace, "Intensify_add_ezetimibe", tier, "Add ezetimibe")
        return _rec(
            "add_ezetimibe",
            f"On moderate-intensity statin ({where}). Add ezetimibe or increase statin intensity.",
            ["Add ezetimibe 10 mg daily", "Alternatively increase to high-intensity statin", "Repeat lipids in 6-8 weeks"],
            EZETIMIBE_MEDS,
        )

    if tier == "moderate" and eze:
        add_trace(trace, "Intensify_increase_to_high", tier, "Increase to high-intensity statin")
        return _rec(
            "increase_to_high_intensity",
            f"On moderate-intensity statin + ezetimibe ({where}). Increase to high-intensity statin.",
            ["Increase to high-intensity statin if tolerated", "Repeat lipids in 6-8 weeks"],
            STATIN_HIGH_MEDS,
        )

    if tier == "high" and not eze:
        add_trace(trace, "Intensify_add_ezetimibe_to_high", tier, "Add ezetimibe")
        return _rec(
            "add_ezetimibe_to_high",
            f"On high-intensity statin ({where}). Add ezetimibe.",
            ["Add ezetimibe 10 mg daily", "Repeat lipids in 6-8 weeks"],
            EZETIMIBE_MEDS,
        )

    if tier == "high" and eze:
        assessment = eligibility() if eligibility is not None else None
        add_trace(
            trace,
            "Intensify_pcsk9_check",
            None if assessment is None else assessment.eligible,
            "Coverage eligibility evaluated" if assessment is not None else "No coverage check available",
        )
        if assessment is not None and assessment.eligible:
            return _rec(
                "consider_pcsk9",
                f"Targets not met on high-intensity statin + ezetimibe ({where}). "
                "Meets PCSK9 inhibitor coverage criteria.",
                ["Submit Special Authority request", "Start PCSK9 inhibitor once approved",
                 "Repeat lipids 3 months after starting to document ≥10% reduction"],
                PCSK9_MEDS,
                eligibilityChecked=True,
                pcsk9Eligibility=assessment.to_dict(),
            )
        steps = ["Reinforce adherence to statin + ezetimibe", "Consider adjunct non-statin therapy"]
        if assessment is not None:
            steps.extend(assessment.steps_to_eligibility)
        return _rec(
            "maximize_current_therapy",
            f"Targets not met on high-intensity statin + ezetimibe ({where}). "
            "Not currently eligible for PCSK9 coverage; maximize current therapy and consider adjuncts.",
            steps,
            ADJUNCT_MEDS,
            eligibilityChecked=assessment is not None,
            pcsk9Eligibility=None if assessment is None else assessment.to_dict(),
        )

    add_trace(trace, "Intensify_review", tier, "Review therapy")
    return _rec("review_therapy", f"Unrecognized therapy combination ({where}). Review current regimen.",
                ["Review medication list and adherence"])


# ----------------------------
# Alternative option groups
# ----------------------------
def alternative_options(
    p: PatientProfile,
    category: RiskCategory,
    therapy: Optional[TherapyState],
) -> List[Dict[str, Any]]:
    state = therapy or TherapyState()
    groups: List[Dict[str, Any]] = []

    standard = []
    if state.statin_intensity != "high":
        standard.append("High-intensity statin (atorvastatin 40-80 mg or rosuvastatin 20-40 mg)")
    if not state.has_ezetimibe:
        standard.append("Ezetimibe 10 mg daily")
    if standard:
        groups.append({"name": "Standard Approach", "options": standard})

    if has_condition(p, "statin_intolerance"):
        groups.append({
            "name": "Statin Intolerance",
            "options": [
                "Rechallenge with a different statin at low dose or alternate-day dosing",
                "Ezetimibe monotherapy",
                "Bempedoic acid 180 mg daily",
            ],
        })

    additional = ["Bempedoic acid 180 mg daily", "Bile acid sequestrant (colesevelam 3.75 g daily)"]
    tg = p.num("triglycerides")
    if tg is not None and tg >= 2.3:
        additional.append("Icosapent ethyl 2 g twice daily (triglycerides 1.5-5.6 mmol/L on statin)")
    groups.append({"name": "Additional LDL Lowering", "options": additional})

    if category == VERY_HIGH or has_ascvd(p) or has_fh(p) or lpa_elevated(p):
        groups.append({
            "name": "Very High-Risk Options",
            "options": [
                "PCSK9 inhibitor (evolocumab or alirocumab), subject to coverage",
                "Inclisiran 284 mg SC at 0, 3 months then every 6 months",
                "Lipoprotein apheresis (homozygous FH or refractory cases; specialist referral)",
            ],
        })

    groups.append({
        "name": "Lifestyle Optimization",
        "options": [
            "Mediterranean or portfolio diet",
            "≥150 minutes/week moderate-intensity physical activity",
            "Weight management and smoking cessation",
        ],
    })
    return groups
