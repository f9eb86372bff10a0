# ui_components.py

from typing import Any, Dict, List, Mapping

from risk_category import CATEGORIES, category_by_name

LAB_FIELDS = ["total_cholesterol", "ldl", "hdl", "triglycerides", "apob", "lpa", "hba1c", "egfr", "acr"]

# a 0 in these form boxes means "not entered"
BLANK_WHEN_ZERO = LAB_FIELDS + ["sbp", "statin_duration", "ezetimibe_duration"]

# reported scores keep a genuine 0.0%; only None is blank
REPORTED_RISK_FIELDS = ["qrisk3_percent", "framingham_percent"]


def split_names(text: Any) -> List[str]:
    return [x.strip() for x in str(text or "").split(",") if x.strip()]


def build_patient_from_state(state: Mapping[str, Any]) -> Dict[str, Any]:
    """Review-form state -> raw patient dict for the orchestrator."""
    out: Dict[str, Any] = {
        "age": state.get("age"),
        "sex": state.get("sex"),
        "conditions": list(state.get("conditions") or []),
        "medications": split_names(state.get("medications_text")),
    }
    for k in BLANK_WHEN_ZERO:
        v = state.get(k)
        if v not in (None, 0, 0.0):
            out[k] = v
    for k in REPORTED_RISK_FIELDS:
        if state.get(k) is not None:
            out[k] = state[k]
    if state.get("smoker") is not None:
        out["smoker"] = bool(state["smoker"])
    tried = split_names(state.get("statins_tried_text"))
    if tried:
        out["statins_tried"] = tried
    if state.get("ethnicity"):
        out["ethnicity"] = state["ethnicity"]
    return out


def render_risk_category_bar(category: str, basis: str | None = None) -> str:
    """
    4-step risk category bar (Low → Very High).
    Unknown names render with no active segment.
    """
    active = category_by_name(category)

    labels = {
        "Low": "<10% 10-year risk",
        "Moderate": "10–19.9%",
        "High": "20–29.9% or clinical override",
        "VeryHigh": "≥30%, FH or ASCVD + features",
    }

    segs = []
    for c in CATEGORIES:
        on = active is not None and c.name == active.name
        segs.append(f"""
        <div style="
            flex:1;
            padding:10px 10px;
            border:1px solid rgba(31,41,55,0.18);
            border-radius:12px;
            background:{'rgba(31,41,55,0.06)' if on else '#fff'};
            font-weight:{'800' if on else '600'};
            text-align:center;
            font-size:0.88rem;
        ">
          {c.label}
          <div style="font-weight:600; font-size:0.78rem; color:rgba(31,41,55,0.70); margin-top:2px;">
            {labels[c.name]}
          </div>
        </div>
        """)

    title = active.label if active is not None else "Not categorized"
    sub = f" <span style='font-weight:700; color:rgba(31,41,55,0.70)'>({basis})</span>" if basis else ""
    return f"""
    <div style="margin-top:8px; margin-bottom:10px;">
      <div style="font-weight:900; font-size:1.0rem; margin-bottom:6px;">
        Risk category: {title}{sub}
      </div>
      <div style="display:flex; gap:8px;">
        {''.join(segs)}
      </div>
    </div>
    """
