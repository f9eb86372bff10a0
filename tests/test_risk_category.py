import random
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from patient_profile import PatientProfile
from risk_category import (
    HIGH,
    LOW,
    MODERATE,
    VERY_HIGH,
    categorize_risk,
    category_by_name,
    category_for_risk,
)


BASE = {"age": 55, "sex": "male", "ldl": 3.0}


def _p(**extra) -> PatientProfile:
    return PatientProfile.from_dict({**BASE, **extra})


def test_numeric_thresholds():
    cases = [
        (0.0, LOW),
        (0.05, LOW),
        (0.0999, LOW),
        (0.10, MODERATE),
        (0.199, MODERATE),
        (0.20, HIGH),
        (0.2999, HIGH),
        (0.30, VERY_HIGH),
        (0.95, VERY_HIGH),
    ]
    for risk, expected in cases:
        assert categorize_risk(_p(), risk) == expected, risk


def test_missing_or_invalid_risk_counts_as_zero():
    for bad in (None, "abc", float("nan"), -0.2):
        assert categorize_risk(_p(), bad) == LOW
    assert category_for_risk(None) == LOW


def test_ascvd_via_condition_list_or_boolean_field():
    assert categorize_risk(_p(conditions=["prev_mi"]), 0.02) == HIGH
    assert categorize_risk(_p(stroke=True), 0.02) == HIGH
    assert categorize_risk(_p(conditions="Peripheral Arterial Disease"), 0.02) == HIGH


def test_ascvd_is_a_floor_not_a_ceiling():
    assert categorize_risk(_p(conditions=["prev_mi"]), 0.35) == VERY_HIGH
    assert categorize_risk(_p(conditions=["prev_mi", "familial_hypercholesterolemia"]), 0.02) == VERY_HIGH


def test_fh_is_very_high():
    assert categorize_risk(_p(conditions=["familial_hypercholesterolemia"]), 0.0) == VERY_HIGH
    assert categorize_risk(_p(fh=True), 0.01) == VERY_HIGH


def test_ckd_and_diabetes_overrides():
    assert categorize_risk(_p(conditions=["ckd"]), 0.03) == HIGH
    assert categorize_risk(_p(conditions=["diabetes"], diabetes_duration=15), 0.03) == HIGH
    assert categorize_risk(_p(conditions=["diabetes", "diabetes_complications"]), 0.03) == HIGH
    # short-duration uncomplicated diabetes falls through to the numbers
    assert categorize_risk(_p(conditions=["diabetes"], diabetes_duration=5), 0.03) == LOW
    assert categorize_risk(_p(conditions=["ckd"]), 0.32) == VERY_HIGH


def test_lpa_bump_only_inside_5_to_20_band():
    assert categorize_risk(_p(lpa=60), 0.04) == LOW
    assert categorize_risk(_p(lpa=60), 0.07) == MODERATE
    assert categorize_risk(_p(lpa=60), 0.15) == HIGH
    assert categorize_risk(_p(lpa=60), 0.25) == HIGH
    assert categorize_risk(_p(lpa=40), 0.07) == LOW


def test_trace_records_the_firing_rule():
    trace = []
    categorize_risk(_p(conditions=["prev_mi"]), 0.05, trace)
    assert trace[0]["rule"] == "Category_ASCVD"


def test_category_by_name_accepts_labels():
    assert category_by_name("VeryHigh") == VERY_HIGH
    assert category_by_name("Very High Risk") == VERY_HIGH
    assert category_by_name("moderate") == MODERATE
    assert category_by_name("nonsense") is None


def test_total_and_deterministic_property_style():
    rng = random.Random(11)
    labels = ["diabetes", "ckd", "hypertension", "prev_mi", "stroke", "familial_hypercholesterolemia", "smoker"]
    for _ in range(300):
        d = {
            "age": rng.randint(20, 90),
            "sex": rng.choice(["M", "F"]),
            "conditions": rng.sample(labels, rng.randint(0, 3)),
            "diabetes_duration": rng.choice([None, rng.randint(0, 30)]),
            "lpa": rng.choice([None, rng.randint(5, 200)]),
        }
        risk = rng.choice([None, rng.uniform(0, 0.5)])
        p = PatientProfile.from_dict(d)
        first = categorize_risk(p, risk)
        assert first in (LOW, MODERATE, HIGH, VERY_HIGH)
        assert categorize_risk(PatientProfile.from_dict(d), risk) == first
