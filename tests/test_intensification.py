import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from intensification import (
    ADJUNCT_MEDS,
    PCSK9_MEDS,
    STATIN_HIGH_MEDS,
    STATIN_MODERATE_MEDS,
    alternative_options,
    recommend_intensification,
)
from lipid_pipeline import evaluate
from lipid_targets import assess_targets_met, resolve_targets
from patient_profile import PatientProfile
from pcsk9_eligibility import EligibilityAssessment
from risk_category import HIGH, LOW, MODERATE, VERY_HIGH
from therapy_state import TherapyState

TODAY = date(2026, 10, 16)

NOT_MET = {"ldl": False, "nonHdl": None, "apoB": None, "overall": False, "percentAboveTarget": 30.0}
MET = {"ldl": True, "nonHdl": None, "apoB": None, "overall": True, "percentAboveTarget": -10.0}


class CountingCheck:
    def __init__(self, eligible: bool):
        self.calls = 0
        self.result = EligibilityAssessment(
            eligible=eligible,
            steps_to_eligibility=[] if eligible else ["Add ezetimibe 10 mg daily for ≥3 months"],
        )

    def __call__(self) -> EligibilityAssessment:
        self.calls += 1
        return self.result


def _p(**extra) -> PatientProfile:
    return PatientProfile.from_dict({"age": 62, "sex": "male", "ldl": 2.6, **extra})


def _on(tier="none", eze=False, pcsk9=False, other=()):
    return TherapyState(statin_intensity=tier, has_ezetimibe=eze, has_pcsk9=pcsk9, other_agents=frozenset(other))


def _run(therapy, met=NOT_MET, check=None, category=HIGH):
    p = _p()
    return recommend_intensification(p, category, resolve_targets(category, p), therapy, met, eligibility=check)


# ----------------------------
# On-therapy table
# ----------------------------
def test_targets_met_maintains_regardless_of_regimen():
    check = CountingCheck(True)
    for therapy in (_on("low"), _on("high", True), _on("moderate", pcsk9=True)):
        assert _run(therapy, MET, check)["recommendation"] == "maintain"
    assert check.calls == 0


def test_pcsk9_present_maximizes_all_therapy():
    for tier in ("none", "low", "moderate", "high"):
        assert _run(_on(tier, pcsk9=True))["recommendation"] == "maximize_all_therapy"


def test_no_statin_but_other_agent_starts_statin():
    rec = _run(_on("none", other={"fenofibrate"}))
    assert rec["recommendation"] == "start_statin"
    assert rec["medications"] == STATIN_HIGH_MEDS

    moderate = _run(_on("none", eze=True), category=MODERATE)
    assert moderate["medications"] == STATIN_MODERATE_MEDS


def test_statin_ladder():
    assert _run(_on("low"))["recommendation"] == "increase_statin"
    assert _run(_on("low", True))["recommendation"] == "increase_statin"
    assert _run(_on("moderate"))["recommendation"] == "add_ezetimibe"
    assert _run(_on("moderate", True))["recommendation"] == "increase_to_high_intensity"
    assert _run(_on("high"))["recommendation"] == "add_ezetimibe_to_high"


def test_high_plus_ezetimibe_consults_coverage_exactly_once():
    eligible = CountingCheck(True)
    rec = _run(_on("high", True), check=eligible)
    assert eligible.calls == 1
    assert rec["recommendation"] == "consider_pcsk9"
    assert rec["medications"] == PCSK9_MEDS
    assert rec["eligibilityChecked"] is True
    assert rec["pcsk9Eligibility"]["eligible"] is True

    ineligible = CountingCheck(False)
    rec = _run(_on("high", True), check=ineligible)
    assert ineligible.calls == 1
    assert rec["recommendation"] == "maximize_current_therapy"
    assert rec["medications"] == ADJUNCT_MEDS
    assert "Add ezetimibe 10 mg daily for ≥3 months" in rec["nextSteps"]


def test_coverage_only_consulted_in_high_plus_ezetimibe_branch():
    check = CountingCheck(True)
    for therapy in (_on("low"), _on("moderate"), _on("moderate", True), _on("high"), _on("none", other={"niacin"})):
        _run(therapy, check=check)
    assert check.calls == 0


def test_missing_coverage_check_is_never_consider_pcsk9():
    rec = _run(_on("high", True), check=None)
    assert rec["recommendation"] == "maximize_current_therapy"
    assert rec["eligibilityChecked"] is False


def test_unknown_tier_falls_back_to_review():
    assert _run(_on("extreme"))["recommendation"] == "review_therapy"


# ----------------------------
# Initial path
# ----------------------------
def _initial(category, **extra):
    p = _p(**extra)
    targets = resolve_targets(category, p)
    return recommend_intensification(p, category, targets, TherapyState(), assess_targets_met(p, targets))


def test_initial_without_ldl_asks_for_lipids():
    p = PatientProfile.from_dict({"age": 50, "sex": "female"})
    targets = resolve_targets(MODERATE, p)
    rec = recommend_intensification(p, MODERATE, targets, None, assess_targets_met(p, targets))
    assert rec["recommendation"] == "obtain_lipids"


def test_initial_alternative_goal_has_no_medications():
    rec = _initial(LOW, ldl=4.0)
    assert rec["recommendation"] == "lifestyle"
    assert rec["pharmacotherapy"] is False
    assert rec["medications"] == []


def test_initial_close_to_target_tries_lifestyle_first():
    rec = _initial(MODERATE, ldl=2.8)
    assert rec["recommendation"] == "lifestyle_primary"
    assert rec["medications"] == []


def test_initial_statin_intensity():
    assert _initial(HIGH, ldl=3.0)["recommendation"] == "statin_high"
    assert _initial(VERY_HIGH, ldl=2.1)["recommendation"] == "statin_high"
    assert _initial(MODERATE, ldl=3.2)["recommendation"] == "statin_moderate"
    # LDL ≥5.0 at low risk carries a 50% reduction goal
    assert _initial(LOW, ldl=5.5)["recommendation"] == "statin_high"


def test_initial_targets_met():
    assert _initial(MODERATE, ldl=2.0)["recommendation"] == "lifestyle"


# ----------------------------
# Full pipeline scenarios
# ----------------------------
def test_ascvd_on_maximal_oral_therapy_is_offered_pcsk9():
    p = PatientProfile.from_dict({
        "age": 64,
        "sex": "male",
        "ldl": 2.2,
        "conditions": ["prev_mi"],
        "medications": ["Atorvastatin 80 mg", "Ezetimibe 10 mg"],
        "statin_duration": 6,
        "ezetimibe_duration": 6,
    })
    b = evaluate(p, {"tenYearRiskPercent": 15.0}, today=TODAY, algorithm="qrisk3")
    assert b["riskCategory"] == "High"
    assert b["targets"]["ldl"] == 1.8
    assert b["targetsMet"]["overall"] is False
    assert b["recommendation"]["recommendation"] == "consider_pcsk9"
    assert b["pcsk9Eligibility"]["eligible"] is True


def test_low_risk_primary_prevention_gets_lifestyle_only():
    p = PatientProfile.from_dict({"age": 45, "sex": "female", "ldl": 3.0})
    b = evaluate(p, {"tenYearRiskPercent": 5.0}, today=TODAY)
    assert b["riskCategory"] == "Low"
    assert b["targets"]["alternative_goal"] is True
    assert b["recommendation"]["recommendation"] == "lifestyle"
    assert b["recommendation"]["medications"] == []


# ----------------------------
# Alternative option groups
# ----------------------------
def _names(groups):
    return [g["name"] for g in groups]


def test_alternative_option_groups():
    plain = alternative_options(_p(), MODERATE, TherapyState())
    assert _names(plain) == ["Standard Approach", "Additional LDL Lowering", "Lifestyle Optimization"]

    maxed = alternative_options(_p(conditions=["prev_mi", "statin_intolerance"]), HIGH, _on("high", True))
    assert _names(maxed) == ["Statin Intolerance", "Additional LDL Lowering", "Very High-Risk Options",
                            "Lifestyle Optimization"]

    high_tg = alternative_options(_p(triglycerides=2.8), MODERATE, None)
    extra = next(g for g in high_tg if g["name"] == "Additional LDL Lowering")
    assert any("Icosapent" in o for o in extra["options"])
