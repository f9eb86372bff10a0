# smartphrase_ingest/parser.py
import re
from typing import Any, Dict, List, Optional, Tuple

# Values above these are assumed to be mg/dL when no unit is written
MGDL_GUESS_ABOVE = {
    "total_cholesterol": 25.0,
    "ldl": 20.0,
    "hdl": 5.0,
    "triglycerides": 20.0,
}

UNIT_PATTERNS = (
    (r"\bmmol\s*/\s*mol\b", "mmol/mol"),
    (r"\bmmol\s*/\s*l\b", "mmol/L"),
    (r"\bnmol\s*/\s*l\b", "nmol/L"),
    (r"\bmg\s*/\s*dl\b", "mg/dL"),
    (r"\bg\s*/\s*l\b", "g/L"),
    (r"%", "%"),
)


def _norm(s: str) -> str:
    return (s or "").strip()


def _to_float(s: str) -> Optional[float]:
    if not s:
        return None
    m = re.search(r"-?\d+(?:\.\d+)?", s.replace(",", ""))
    return float(m.group(0)) if m else None


def _to_int(s: str) -> Optional[int]:
    v = _to_float(s)
    return int(round(v)) if v is not None else None


def _yesno(s: str) -> Optional[bool]:
    if s is None:
        return None
    t = _norm(str(s)).lower()
    if t.startswith("yes"):
        return True
    if t.startswith("no"):
        return False
    return None


def _unit_in(s: str) -> Optional[str]:
    for rx, unit in UNIT_PATTERNS:
        if re.search(rx, s or "", re.IGNORECASE):
            return unit
    return None


def _line_value(text: str, label_regex: str) -> Optional[str]:
    """
    Extracts 'Label: value' lines (case-insensitive, multiline).
    label_regex should be regex-safe (e.g., r"ApoB", r"Lp\\(a\\)").
    """
    pat = re.compile(rf"^\s*{label_regex}\s*:\s*(.+?)\s*$", re.IGNORECASE | re.MULTILINE)
    m = pat.search(text or "")
    return _norm(m.group(1)) if m else None


def _find_line_near(text: str, label_patterns) -> Optional[str]:
    """First line matching any label pattern that also carries a number."""
    for ln in (text or "").splitlines():
        for lp in label_patterns:
            rx = re.compile(lp, re.IGNORECASE) if isinstance(lp, str) else lp
            if rx.search(ln) and _to_float(rx.split(ln, 1)[-1]) is not None:
                return rx.split(ln, 1)[-1]
    return None


def _find_lab(text: str, labels: List[str], near: List[str]) -> Tuple[Optional[float], Optional[str]]:
    """
    Lab values appear as:
      - "LDL Cholesterol: 3.2 mmol/L"
      - "LDL-C 124 mg/dL"
    Return (value, unit) where unit is None when not written.
    """
    rhs = None
    for lab in labels:
        rhs = _line_value(text, lab)
        if rhs:
            break
    if not rhs:
        rhs = _find_line_near(text, near)
    if not rhs:
        return (None, None)
    return (_to_float(rhs), _unit_in(rhs))


LAB_LABELS = {
    "total_cholesterol": ([r"Total Cholesterol", r"Cholesterol,\s*Total"], [r"\bTotal\s+Cholesterol\b", r"\bCHOL\b"]),
    "hdl": ([r"HDL(?:-C)?(?:\s+Cholesterol)?"], [r"\bHDL\b"]),
    "ldl": ([r"LDL(?:-C)?(?:\s+Cholesterol|\s+Calculated|\s+Calc)?", r"LDL-C"], [r"\bLDL(?:-C)?\b"]),
    "triglycerides": ([r"Triglycerides?", r"TG"], [r"\bTriglycerides?\b", r"\bTRIG\b"]),
    "non_hdl": ([r"Non-HDL(?:-C)?(?:\s+Cholesterol)?"], [r"\bNon-HDL\b"]),
    "apob": ([r"ApoB", r"Apolipoprotein B"], [r"\bApoB\b"]),
    "lpa": ([r"Lp\(a\)", r"Lipoprotein\s*\(a\)", r"LPA"], [r"\bLp\(a\)", r"\bLipoprotein\s*\(a\)", r"\bLPA\b"]),
    "hba1c": ([r"HbA1c", r"A1c"], [r"\bA1c\b"]),
    "egfr": ([r"eGFR"], [r"\beGFR\b"]),
    "acr": ([r"ACR", r"Urine albumin[- ]creatinine ratio"], [r"\bACR\b"]),
}

CONDITION_KEYWORDS = {
    "prev_mi": [r"\bmyocardial infarction\b", r"\bprior MI\b", r"\bh/o MI\b", r"\bNSTEMI\b", r"\bSTEMI\b"],
    "stroke": [r"\bstroke\b", r"\bCVA\b"],
    "tia": [r"\bTIA\b", r"\btransient ischemic attack\b"],
    "pvd": [r"\bPAD\b", r"\bperipheral (?:arterial|vascular) disease\b"],
    "coronary_revascularization": [r"\bPCI\b", r"\bCABG\b", r"\bstent\b"],
    "coronary_artery_disease": [r"\bCAD\b", r"\bcoronary artery disease\b"],
    "carotid_stenosis": [r"\bcarotid stenosis\b"],
    "familial_hypercholesterolemia": [r"\bfamilial hypercholesterol(?:a)?emia\b", r"\bHeFH\b", r"\bFH\b"],
    "diabetes": [r"\bdiabetes\b", r"\bT2DM\b", r"\bDM2\b"],
    "chronic_kidney_disease": [r"\bCKD\b", r"\bchronic kidney disease\b"],
    "hypertension": [r"\bhypertension\b", r"\bHTN\b"],
    "atrial_fibrillation": [r"\batrial fibrillation\b", r"\bAFib\b"],
    "rheumatoid_arthritis": [r"\brheumatoid arthritis\b"],
    "hypothyroidism": [r"\bhypothyroidism\b"],
    "statin_intolerance": [r"\bstatin intoleran(?:ce|t)\b"],
    "pregnancy": [r"\bpregnan(?:t|cy)\b"],
}

RISK_SCORE_LABELS = {
    "qrisk3_percent": [r"QRISK3?(?:\s+10-year risk)?", r"QRISK"],
    "framingham_percent": [r"Framingham(?:\s+Risk Score)?(?:\s+10-year risk)?", r"FRS"],
}


def _split_list(rhs: str) -> List[str]:
    return [x.strip() for x in re.split(r"[;,\n]|\s+\band\b\s+", rhs or "") if x.strip()]


def parse_medications(text: str) -> List[str]:
    """'Medications: atorvastatin 80 mg, ezetimibe 10 mg' (also 'Meds:' / 'Current medications:')."""
    rhs = (
        _line_value(text, r"Current medications")
        or _line_value(text, r"Medications")
        or _line_value(text, r"Meds")
        or _line_value(text, r"Lipid therapy")
    )
    return _split_list(rhs) if rhs else []


def parse_conditions(text: str) -> List[str]:
    """Keyword scan over the whole note; negated lines ('no', 'denies') are skipped."""
    found = []
    for ln in (text or "").splitlines():
        low = ln.lower()
        if re.search(r"\b(no|denies|negative for|without)\b", low):
            continue
        for label, pats in CONDITION_KEYWORDS.items():
            if label in found:
                continue
            if any(re.search(p, ln, re.IGNORECASE) for p in pats):
                found.append(label)
    return found


def _months(s: Optional[str]) -> Optional[float]:
    if not s:
        return None
    v = _to_float(s)
    if v is None:
        return None
    if re.search(r"\b(years?|yrs?)\b", s, re.IGNORECASE):
        return v * 12
    if re.search(r"\b(weeks?|wks?)\b", s, re.IGNORECASE):
        return round(v / 4.345, 1)
    return v


def parse_smartphrase(text: str) -> Dict[str, Any]:
    """
    Best-effort extraction from pasted chart text (SmartPhrase output, lab blocks, problem list).
    Returns snake_case keys used by the Streamlit app for auto-fill.

    Keys:
      age, sex, sbp, smoker
      total_cholesterol, hdl, ldl, triglycerides, non_hdl, apob, lpa, hba1c, egfr, acr
      <lab>_unit when a unit was written or can be inferred
      medications, conditions, statin_duration, ezetimibe_duration
      qrisk3_percent, framingham_percent
    """
    t = text or ""
    out: Dict[str, Any] = {}

    # ---------- Demographics ----------
    age = _line_value(t, r"Age")
    if age:
        out["age"] = _to_int(age)

    sex = _line_value(t, r"Clinically relevant sex") or _line_value(t, r"Sex")
    if sex:
        s = _norm(sex).lower()
        if "female" in s or s == "f":
            out["sex"] = "female"
        elif "male" in s or s == "m":
            out["sex"] = "male"

    eth = _line_value(t, r"Ethnicity")
    if eth:
        out["ethnicity"] = eth.lower().replace(" ", "_")

    sbp = _line_value(t, r"Systolic Blood Pressure") or _line_value(t, r"Blood pressure(?:\s*\(most recent\))?")
    if sbp:
        m2 = re.search(r"(\d{2,3})\s*/\s*(\d{2,3})", sbp)
        out["sbp"] = int(m2.group(1)) if m2 else _to_int(sbp)

    sm = _line_value(t, r"Tobacco smoker") or _line_value(t, r"Smoking status")
    sm_bool = _yesno(sm) if sm is not None else None
    if sm_bool is not None:
        out["smoker"] = sm_bool
    elif sm:
        s = _norm(sm).lower()
        if "current" in s:
            out["smoker"] = True
        elif "never" in s or "former" in s:
            out["smoker"] = False

    # ---------- Labs ----------
    for field, (labels, near) in LAB_LABELS.items():
        val, unit = _find_lab(t, labels, near)
        if val is None:
            continue
        out[field] = val
        guess = MGDL_GUESS_ABOVE.get(field)
        if unit is None and guess is not None:
            unit = "mg/dL" if val > guess else "mmol/L"
        if unit and unit != "%":
            out[f"{field}_unit"] = unit

    # ---------- Risk scores ----------
    for key, labels in RISK_SCORE_LABELS.items():
        for lab in labels:
            rhs = _line_value(t, lab)
            if rhs and _to_float(rhs) is not None:
                out[key] = _to_float(rhs)
                break

    # ---------- Therapy ----------
    meds = parse_medications(t)
    if meds:
        out["medications"] = meds

    for key, lab in (("statin_duration", r"Statin duration"), ("ezetimibe_duration", r"Ezetimibe duration")):
        months = _months(_line_value(t, lab))
        if months is not None:
            out[key] = months

    conditions = parse_conditions(t)
    if conditions:
        out["conditions"] = conditions

    return out
