import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ui_components import build_patient_from_state, render_risk_category_bar

FORM = {
    "age": 64,
    "sex": "male",
    "sbp": 138,
    "qrisk3_percent": 24.1,
    "framingham_percent": 19.5,
    "ethnicity": "south_asian",
    "smoker": True,
    "total_cholesterol": 4.6,
    "ldl": 2.2,
    "hdl": 0.0,
    "egfr": 52.0,
    "acr": 4.1,
    "medications_text": "atorvastatin 80 mg, ezetimibe 10 mg",
    "statins_tried_text": "atorvastatin, rosuvastatin ,",
    "statin_duration": 6.0,
    "ezetimibe_duration": 0.0,
    "conditions": ["prev_mi", "statin_intolerance"],
}


def test_form_state_passes_every_engine_field():
    out = build_patient_from_state(FORM)
    assert out["smoker"] is True
    assert out["egfr"] == 52.0
    assert out["acr"] == 4.1
    assert out["statins_tried"] == ["atorvastatin", "rosuvastatin"]
    assert out["medications"] == ["atorvastatin 80 mg", "ezetimibe 10 mg"]
    assert out["ethnicity"] == "south_asian"
    assert out["conditions"] == ["prev_mi", "statin_intolerance"]


def test_zero_lab_means_not_entered_but_zero_risk_is_kept():
    out = build_patient_from_state({**FORM, "qrisk3_percent": 0.0, "framingham_percent": None})
    assert "hdl" not in out
    assert "ezetimibe_duration" not in out
    assert out["qrisk3_percent"] == 0.0
    assert "framingham_percent" not in out


def test_sparse_state():
    out = build_patient_from_state({"age": 50, "sex": "female"})
    assert out == {"age": 50, "sex": "female", "conditions": [], "medications": []}


def test_category_bar_marks_active_segment():
    html = render_risk_category_bar("High", "QRISK3")
    assert "Risk category: High Risk" in html
    assert "(QRISK3)" in html
    assert "Not categorized" in render_risk_category_bar("nonsense")
