# app.py
# ============================================================
# LIPID ENGINE — Streamlit app with:
# - Textbox parsing (labs in mmol/L or mg/dL, medications, problem list, QRISK3 / Framingham %)
# - Robust sex / age extraction (57M, Sex: Male, 62 yo)
# - "Fail loudly" flags when data missing / conflicting
# - Review form in canonical units (mmol/L, g/L, mg/dL for Lp(a))
# - Runs both reported risk scores through the orchestrator and renders
#   category, targets, therapy, PCSK9 coverage, comparison, interventions
# ============================================================

from __future__ import annotations

import asyncio
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple

import streamlit as st

from collaborators import InMemoryCache, LoggingNotifier, ReportedRiskAlgorithm
from lipid_config import VERSION, Settings, configure_logging
from lipid_errors import AlgorithmError, ValidationError
from lipid_output_adapter import to_output_contract
from lipid_pipeline import render_quick_text
from patient_profile import safe_float
from risk_orchestrator import RiskOrchestrator
from smartphrase_ingest.parser import parse_smartphrase
from ui_components import LAB_FIELDS, build_patient_from_state, render_risk_category_bar
from unit_converter import to_canonical

configure_logging()

CONDITION_CHOICES = [
    "prev_mi", "stroke", "tia", "pvd", "coronary_revascularization", "coronary_artery_disease",
    "carotid_stenosis", "familial_hypercholesterolemia", "diabetes", "chronic_kidney_disease",
    "hypertension", "atrial_fibrillation", "rheumatoid_arthritis", "recent_acs", "recurrent_cv_events",
    "statin_intolerance", "statin_intolerance_documented", "hypothyroidism", "pregnancy",
]


# ============================================================
# Styling
# ============================================================

st.set_page_config(page_title="Lipid Engine", layout="wide")

st.markdown(
    """
<style>
html, body, [class*="css"] {
  font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Inter, "Helvetica Neue", Arial, sans-serif;
  color: #111827;
}
.smallcaps { font-variant: all-small-caps; letter-spacing: 0.06em; color: rgba(17,24,39,0.72); }
.card { background: #ffffff; border: 1px solid rgba(17,24,39,0.12); border-radius: 16px; padding: 16px; }
.muted { color: rgba(17,24,39,0.65); font-size: 0.92rem; }
.badge { display: inline-block; padding: 2px 10px; border-radius: 999px; border: 1px solid rgba(17,24,39,0.14);
         font-size: 0.82rem; margin-right: 6px; }
.badge-warn { background: rgba(245,158,11,0.10); border-color: rgba(245,158,11,0.25); }
.badge-bad { background: rgba(239,68,68,0.10); border-color: rgba(239,68,68,0.25); }
.badge-ok { background: rgba(16,185,129,0.10); border-color: rgba(16,185,129,0.25); }
pre { white-space: pre-wrap !important; word-wrap: break-word !important; }
</style>
""",
    unsafe_allow_html=True,
)

# ============================================================
# Parsing helpers
# ============================================================

@dataclass
class ParseReport:
    extracted: Dict[str, Any]
    warnings: list[str]
    conflicts: list[str]


def _first_int(pattern: str, text: str) -> Optional[int]:
    m = re.search(pattern, text, flags=re.I)
    if not m:
        return None
    try:
        return int(float(m.group(1)))
    except ValueError:
        return None


def extract_sex(raw: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (sex, warning)
      sex: "male" | "female" | None
      warning: None if clean; otherwise reason (missing/conflict)
    """
    if not raw or not raw.strip():
        return None, "Sex not detected (empty text)"

    t = raw.lower()
    hits = [val for _, val in re.findall(r"\b(sex|gender)\s*[:=]\s*(male|female|m|f|man|woman)\b", t)]
    hits += re.findall(r"\b\d{1,3}\s*([mf])\b", t)
    if re.search(r"\b(male|man)\b", t):
        hits.append("male")
    if re.search(r"\b(female|woman)\b", t):
        hits.append("female")

    norm = {"male" if h in ("m", "male", "man") else "female" for h in hits}
    if not norm:
        return None, "Sex not detected"
    if len(norm) > 1:
        return None, "Sex conflict detected (both male and female found)"
    return norm.pop(), None


def extract_age(raw: str) -> Tuple[Optional[int], Optional[str]]:
    if not raw or not raw.strip():
        return None, "Age not detected (empty text)"

    age = _first_int(r"\bage\s*[:=]\s*(\d{1,3})\b", raw)
    if age is None:
        age = _first_int(r"\b(\d{1,3})\s*(?:yo|y/o|yr|yrs|year|years)\b", raw)
    if age is None:
        age = _first_int(r"\b(\d{1,3})\s*(?:m|f)\b", raw)
    if age is None:
        return None, "Age not detected"
    if age < 18 or age > 100:
        return age, "Age looks unusual — please verify"
    return age, None


def parse_text_block(raw: str) -> ParseReport:
    extracted: Dict[str, Any] = parse_smartphrase(raw)
    warnings: list[str] = []
    conflicts: list[str] = []

    sex, sex_warn = extract_sex(raw)
    if extracted.get("sex") is None:
        extracted["sex"] = sex
    if sex_warn:
        (conflicts if "conflict" in sex_warn.lower() else warnings).append(sex_warn)

    if extracted.get("age") is None:
        age, age_warn = extract_age(raw)
        extracted["age"] = age
        if age_warn:
            warnings.append(age_warn)

    # canonical units for the review form
    for f in LAB_FIELDS:
        if extracted.get(f) is not None:
            unit = extracted.pop(f"{f}_unit", None)
            extracted[f] = to_canonical(extracted[f], unit, f)

    if extracted.get("hba1c") is not None and extracted["hba1c"] >= 6.5:
        conds = extracted.setdefault("conditions", [])
        if "diabetes" not in conds:
            conds.append("diabetes")

    for key, label in [
        ("ldl", "LDL"),
        ("hdl", "HDL"),
        ("total_cholesterol", "Total cholesterol"),
        ("medications", "Medication list"),
        ("qrisk3_percent", "QRISK3 10-year risk"),
        ("framingham_percent", "Framingham 10-year risk"),
    ]:
        if extracted.get(key) is None:
            warnings.append(f"{label} not detected")

    return ParseReport(extracted=extracted, warnings=warnings, conflicts=conflicts)


def run_orchestrator(raw_patient: Dict[str, Any]) -> Dict[str, Any]:
    settings = Settings.from_env()
    if "engine_cache" not in st.session_state:
        st.session_state["engine_cache"] = InMemoryCache(settings.cache_ttl_seconds)
    orch = RiskOrchestrator(
        comprehensive=ReportedRiskAlgorithm("QRISK3", "qrisk3_percent", comprehensive=True),
        conventional=ReportedRiskAlgorithm("Framingham", "framingham_percent"),
        cache=st.session_state["engine_cache"],
        notifier=LoggingNotifier(),
        settings=settings,
    )
    return asyncio.run(orch.evaluate(raw_patient))


# ============================================================
# UI
# ============================================================

st.markdown(
    f"""
<div class="card">
  <div style="display:flex;justify-content:space-between;align-items:center;gap:12px;">
    <div>
      <div class="smallcaps">LIPID ENGINE</div>
      <div style="font-size:1.35rem;font-weight:700;margin-top:4px;">Dyslipidemia — parse → review → evaluate</div>
      <div class="muted" style="margin-top:4px;">Paste labs, medications and reported QRISK3 / Framingham scores.</div>
    </div>
    <div style="text-align:right;">
      <span class="badge">{VERSION['engine']}</span>
    </div>
  </div>
</div>
""",
    unsafe_allow_html=True,
)

left, right = st.columns([1.1, 0.9], gap="large")

with left:
    st.markdown('<div class="smallcaps">Input</div>', unsafe_allow_html=True)

    default_example = """Age: 64
Sex: Male
Total Cholesterol: 4.6 mmol/L
HDL Cholesterol: 1.1 mmol/L
LDL Cholesterol: 2.2 mmol/L
Triglycerides: 1.7 mmol/L
Blood pressure: 138/82
Medications: atorvastatin 80 mg, ezetimibe 10 mg
Statin duration: 6 months
Ezetimibe duration: 4 months
Problem list: prior MI 2019, hypertension
QRISK3: 24.1%
Framingham: 19.5%
"""

    raw_text = st.text_area("Paste note / SmartPhrase block", value=st.session_state.get("raw_text", default_example),
                            height=300, key="raw_text")

    if st.button("Parse textbox", type="primary", use_container_width=True):
        report = parse_text_block(raw_text)
        st.session_state["parse_report"] = asdict(report)
        for k, v in report.extracted.items():
            st.session_state[k] = v
        st.session_state["medications_text"] = ", ".join(report.extracted.get("medications") or [])

    pr = st.session_state.get("parse_report")
    if pr:
        for c in pr.get("conflicts", []):
            st.markdown(f'- <span class="badge badge-bad">{c}</span>', unsafe_allow_html=True)
        for w in pr.get("warnings", []):
            st.markdown(f'- <span class="badge badge-warn">{w}</span>', unsafe_allow_html=True)
        if not pr.get("warnings") and not pr.get("conflicts"):
            st.markdown('<span class="badge badge-ok">Parse looks clean</span>', unsafe_allow_html=True)
        with st.expander("View extracted dictionary"):
            st.json(pr.get("extracted", {}))

with right:
    st.markdown('<div class="smallcaps">Review & Run</div>', unsafe_allow_html=True)
    ss = st.session_state

    with st.form("review_form"):
        c1, c2 = st.columns(2)
        with c1:
            age = st.number_input("Age", 0, 120, value=int(ss.get("age") or 55), step=1)
            sex = st.radio("Sex", ["male", "female"], horizontal=True, index=1 if ss.get("sex") == "female" else 0)
            sbp = st.number_input("SBP (mmHg)", 0, 260, value=int(ss.get("sbp") or 0), step=1)
            # blank (None) = not reported; 0.0 is a real score
            qrisk = st.number_input("QRISK3 10-year risk (%)", 0.0, 100.0, value=safe_float(ss.get("qrisk3_percent")),
                                    step=0.1, placeholder="not reported")
            frs = st.number_input("Framingham 10-year risk (%)", 0.0, 100.0, value=safe_float(ss.get("framingham_percent")),
                                  step=0.1, placeholder="not reported")
            ethnicity = st.text_input("Ethnicity", value=ss.get("ethnicity") or "")
            smoker = st.checkbox("Current smoker", value=bool(ss.get("smoker")))
        with c2:
            tc = st.number_input("Total cholesterol (mmol/L)", 0.0, 20.0, value=float(ss.get("total_cholesterol") or 0.0), step=0.1)
            ldl = st.number_input("LDL (mmol/L)", 0.0, 15.0, value=float(ss.get("ldl") or 0.0), step=0.1)
            hdl = st.number_input("HDL (mmol/L)", 0.0, 5.0, value=float(ss.get("hdl") or 0.0), step=0.1)
            tg = st.number_input("Triglycerides (mmol/L)", 0.0, 50.0, value=float(ss.get("triglycerides") or 0.0), step=0.1)
            apob = st.number_input("ApoB (g/L)", 0.0, 4.0, value=float(ss.get("apob") or 0.0), step=0.01)
            lpa = st.number_input("Lp(a) (mg/dL)", 0.0, 500.0, value=float(ss.get("lpa") or 0.0), step=1.0)
            hba1c = st.number_input("HbA1c (%)", 0.0, 20.0, value=float(ss.get("hba1c") or 0.0), step=0.1)
            egfr = st.number_input("eGFR (mL/min/1.73m²)", 0.0, 200.0, value=float(ss.get("egfr") or 0.0), step=1.0)
            acr = st.number_input("Urine ACR (mg/mmol)", 0.0, 300.0, value=float(ss.get("acr") or 0.0), step=0.1)

        meds = st.text_input("Medications (comma-separated)", value=ss.get("medications_text") or "")
        tried = st.text_input("Statins tried, intolerant (comma-separated)", value=ss.get("statins_tried_text") or "")
        d1, d2 = st.columns(2)
        with d1:
            statin_m = st.number_input("Months on current statin", 0.0, 600.0, value=float(ss.get("statin_duration") or 0.0), step=1.0)
        with d2:
            eze_m = st.number_input("Months on ezetimibe", 0.0, 600.0, value=float(ss.get("ezetimibe_duration") or 0.0), step=1.0)
        conditions = st.multiselect("Conditions", CONDITION_CHOICES,
                                    default=[c for c in (ss.get("conditions") or []) if c in CONDITION_CHOICES])

        submitted = st.form_submit_button("Run evaluation", type="primary", use_container_width=True)

    if submitted:
        ss.update({
            "age": int(age), "sex": sex, "sbp": sbp, "qrisk3_percent": qrisk, "framingham_percent": frs,
            "ethnicity": ethnicity.strip().lower().replace(" ", "_"), "smoker": smoker,
            "total_cholesterol": tc, "ldl": ldl, "hdl": hdl, "triglycerides": tg, "apob": apob, "lpa": lpa,
            "hba1c": hba1c, "egfr": egfr, "acr": acr,
            "medications_text": meds, "statins_tried_text": tried,
            "statin_duration": statin_m, "ezetimibe_duration": eze_m,
            "conditions": conditions,
        })
        try:
            result = run_orchestrator(build_patient_from_state(ss))
            ss["last_result"] = result
            ss.pop("last_error", None)
        except ValidationError as e:
            ss["last_error"] = "Input problems: " + "; ".join(f"{k}: {v}" for k, v in e.field_errors.items())
        except AlgorithmError as e:
            ss["last_error"] = f"No risk estimate available ({e.message}). Enter QRISK3 and/or Framingham %."

# ============================================================
# Output area
# ============================================================

st.markdown('<div class="smallcaps">Output</div>', unsafe_allow_html=True)

if st.session_state.get("last_error"):
    st.error(st.session_state["last_error"])

result = st.session_state.get("last_result")
if result:
    combined = result["combined"]
    driver = result["algorithms"][combined["drivingAlgorithm"]]["result"]
    contract = to_output_contract(result)

    st.markdown(render_risk_category_bar(combined["riskCategory"], combined["reason"]), unsafe_allow_html=True)
    st.markdown("#### Clinical summary")
    st.code(render_quick_text(driver))

    if result["comparison"] is not None:
        cmp = result["comparison"]
        st.markdown("#### Algorithm comparison")
        st.markdown(f"{cmp['summary']}  \n{cmp['clinicalNote']}  \nSuggested: **{cmp['suggestedAlgorithm']}**")
        for f in cmp["explanatoryFactors"]:
            st.markdown(f"- {f['description']} ({f['impact']} impact)")
    else:
        failed = [n for n, b in result["algorithms"].items() if not b["success"]]
        st.info(f"Comparison unavailable ({', '.join(failed)} not computed).")

    elig = combined["pcsk9Eligibility"]
    st.markdown("#### PCSK9 coverage")
    st.markdown("**Eligible**" if elig["eligible"] else "**Not eligible**")
    for label, key in [("Met", "metCriteria"), ("Unmet", "unmetCriteria"), ("Exclusions", "exclusions"),
                       ("Steps to eligibility", "stepsToEligibility"), ("Alternatives", "alternativeOptions")]:
        if elig.get(key):
            st.markdown(f"*{label}*")
            for x in elig[key]:
                st.markdown(f"- {x}")

    ivs = combined.get("interventions") or {}
    if ivs.get("scenarios"):
        st.markdown("#### Projected effect of interventions")
        rows = ivs["scenarios"] + ([ivs["combined"]] if ivs.get("combined") else [])
        st.table([
            {"Scenario": r["type"], "Projected risk %": r["projectedRiskPercent"], "ARR": r["absoluteRiskReduction"],
             "RRR %": r["relativeRiskReduction"], "NNT": r["numberNeededToTreat"]}
            for r in rows
        ])

    with st.expander("Action summary (markdown)"):
        st.code(contract["markdown"])
    with st.expander("Debug: rule trace"):
        st.json(driver["trace"])
    with st.expander("Debug: raw engine result"):
        st.write(result)
else:
    st.markdown('<div class="muted">Parse the textbox and click <b>Run evaluation</b> to generate output.</div>',
                unsafe_allow_html=True)
