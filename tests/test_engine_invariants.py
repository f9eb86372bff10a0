import random
import sys
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lipid_output_adapter import to_output_contract
from lipid_pipeline import evaluate
from patient_profile import PatientProfile
from pcsk9_eligibility import assess_pcsk9_eligibility
from risk_category import BY_NAME
from therapy_state import classify_therapy

TODAY = date(2026, 10, 16)

BASE = {
    "age": 60,
    "sex": "male",
    "total_cholesterol": 5.4,
    "hdl": 1.2,
    "triglycerides": 1.6,
    "sbp": 130,
}

CONDITIONS = ["diabetes", "ckd", "hypertension", "prev_mi", "stroke", "pvd", "fh", "fh_genetic_testing",
              "statin_intolerance", "family_history", "smoker"]
MEDICATIONS = ["atorvastatin 80 mg", "rosuvastatin 10 mg", "pravastatin 20 mg", "ezetimibe 10 mg",
               "evolocumab 140 mg", "fenofibrate 145 mg", "metformin 1000 mg", "ramipril 10 mg"]

RECOMMENDATION_CODES = {
    "obtain_lipids", "lifestyle", "lifestyle_primary", "statin_high", "statin_moderate", "maintain",
    "maximize_all_therapy", "start_statin", "increase_statin", "add_ezetimibe", "increase_to_high_intensity",
    "add_ezetimibe_to_high", "consider_pcsk9", "maximize_current_therapy", "review_therapy",
}


def _required_schema_assertions(out: dict) -> None:
    top_keys = {
        "version",
        "tenYearRiskPercent",
        "riskCategory",
        "targets",
        "currentValues",
        "targetsMet",
        "therapy",
        "recommendation",
        "pcsk9Eligibility",
        "alternativeOptions",
        "trace",
    }
    assert top_keys.issubset(set(out.keys()))

    assert out["riskCategory"] in BY_NAME
    for k in ("ldl", "non_hdl", "apob", "ldl_reduction", "alternative_goal"):
        assert k in out["targets"]
    assert 0.0 <= out["therapy"]["estimatedLdlReduction"] <= 0.90
    assert out["recommendation"]["recommendation"] in RECOMMENDATION_CODES
    assert isinstance(out["recommendation"]["nextSteps"], list)
    assert isinstance(out["pcsk9Eligibility"]["eligible"], bool)
    assert isinstance(out["trace"], list) and out["trace"]


def _random_profile(rng: random.Random) -> dict:
    d = dict(BASE)
    d.update(
        {
            "age": rng.randint(18, 90),
            "sex": rng.choice(["M", "F"]),
            "total_cholesterol": round(rng.uniform(3.0, 9.0), 1),
            "hdl": round(rng.uniform(0.7, 2.2), 1),
            "triglycerides": round(rng.uniform(0.6, 6.0), 1),
            "conditions": rng.sample(CONDITIONS, rng.randint(0, 4)),
            "medications": rng.sample(MEDICATIONS, rng.randint(0, 3)),
            "statin_duration": rng.randint(0, 24),
            "ezetimibe_duration": rng.randint(0, 24),
        }
    )
    if rng.random() < 0.5:
        d["apob"] = round(rng.uniform(0.4, 1.8), 2)
    if rng.random() < 0.5:
        d["lpa"] = rng.randint(5, 250)
    if rng.random() < 0.2:
        d["acs_date"] = rng.choice(["2026-02-01", "2023-05-20"])
    return d


def test_schema_no_drift_property_style_randomized():
    rng = random.Random(7)
    for _ in range(80):
        d = _random_profile(rng)
        out = evaluate(PatientProfile.from_dict(d), {"tenYearRiskPercent": rng.uniform(0, 45)}, today=TODAY)
        _required_schema_assertions(out)
        assert to_output_contract(out)["markdown"]


def test_pipeline_is_total_on_sparse_input():
    for data, risk in (
        ({"age": 40, "sex": "F"}, None),
        ({"age": 40, "sex": "F", "medications": ["unknown pill"]}, {}),
        ({"age": 95, "sex": "M", "ldl": 0.5}, {"tenYearRiskPercent": "n/a"}),
    ):
        _required_schema_assertions(evaluate(PatientProfile.from_dict(data), risk, today=TODAY))


def test_deterministic_for_identical_input():
    rng = random.Random(99)
    for _ in range(20):
        d = _random_profile(rng)
        risk = {"tenYearRiskPercent": rng.uniform(0, 40)}
        a = evaluate(PatientProfile.from_dict(d), risk, today=TODAY)
        b = evaluate(PatientProfile.from_dict(d), risk, today=TODAY)
        assert a == b


def test_adding_ascvd_or_fh_never_lowers_category_or_loosens_target():
    rng = random.Random(17)
    for _ in range(150):
        d = _random_profile(rng)
        risk = {"tenYearRiskPercent": rng.uniform(0, 40)}
        before = evaluate(PatientProfile.from_dict(d), risk, today=TODAY)
        for extra in ("prev_mi", "familial_hypercholesterolemia"):
            after = evaluate(PatientProfile.from_dict({**d, "conditions": list(d["conditions"]) + [extra]}),
                             risk, today=TODAY)
            assert BY_NAME[after["riskCategory"]].rank >= BY_NAME[before["riskCategory"]].rank
            assert after["targets"]["ldl"] <= before["targets"]["ldl"]


def test_exclusions_always_remove_eligibility():
    rng = random.Random(23)
    for _ in range(150):
        d = _random_profile(rng)
        for extra in ({"conditions": list(d["conditions"]) + ["pregnancy"], "sex": "F"},
                      {"conditions": list(d["conditions"]) + ["hypothyroidism"]},
                      {"age": rng.randint(1, 17)}):
            p = PatientProfile.from_dict({**d, **extra})
            r = assess_pcsk9_eligibility(p, classify_therapy(p.medications), today=TODAY)
            assert r.eligible is False
            assert r.exclusions
