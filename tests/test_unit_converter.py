import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from unit_converter import CONVERSION_FACTORS, LabValidator, convert, to_canonical


def test_cholesterol_mgdl_to_mmol():
    out = convert(120, "mg/dL", "mmol/L", "ldl")
    assert out["error"] is None
    assert out["value"] == pytest.approx(3.103, abs=0.001)
    assert out["unit"] == "mmol/L"


def test_round_trips_stay_within_half_a_percent():
    for (analyte, src, dst) in CONVERSION_FACTORS:
        back = CONVERSION_FACTORS.get((analyte, dst, src))
        if back is None:
            continue
        v = 7.3
        there = convert(v, src, dst, analyte)["value"]
        assert back(there) == pytest.approx(v, rel=0.005), (analyte, src, dst)


def test_same_unit_is_identity_and_unit_spelling_is_loose():
    assert convert(3.2, "mmol/L", "mmol/l", "cholesterol")["value"] == 3.2
    assert convert(5, "µmol/L", "mg/dL", "creatinine")["value"] == pytest.approx(0.0565)


def test_convert_reports_errors_instead_of_raising():
    assert convert("abc", "mg/dL", "mmol/L", "ldl")["error"].startswith("Invalid input value")
    bad = convert(3.0, "mg/dL", "g/L", "cholesterol")
    assert bad["value"] is None
    assert "Unsupported conversion" in bad["error"]


def test_to_canonical():
    assert to_canonical(120, "mg/dL", "ldl") == pytest.approx(3.103, abs=0.001)
    assert to_canonical(120, "nmol/L", "lpa") == pytest.approx(55.8)
    assert to_canonical("3.1", None, "ldl") == 3.1
    assert to_canonical(78, "mL/min", "egfr") == 78.0


def test_lab_validator_converts_then_range_checks():
    v = LabValidator()
    ok = v.validate(120, "ldl", "mg/dL")
    assert ok["isValid"] is True
    assert ok["convertedValue"] == 3.103
    assert ok["normalizedValue"] == 3.103

    # 120 read as mmol/L is implausible
    assert v.validate(120, "ldl")["isValid"] is False
    assert v.validate("x", "ldl")["isValid"] is False
    assert v.validate(300, "sbp")["isValid"] is False
    assert v.validate(6.4, "hba1c", "%")["normalizedValue"] == 6.4
    assert v.validate(50, "hba1c", "mmol/mol")["normalizedValue"] == pytest.approx(6.725, abs=0.001)
    assert v.validate(3.0, "ldl", "g/L")["isValid"] is False


def test_lab_validator_accepts_custom_ranges():
    v = LabValidator({"ldl": (0.0, 1.0)})
    assert v.validate(2.0, "ldl")["isValid"] is False
    assert v.validate(300, "sbp")["isValid"] is True
