# lipid_output_adapter.py
# Output adapter: converts an orchestrator result (or a single pipeline bundle) into a UI/API contract.
# Stable short trigger codes, grouped plan items, one markdown block.

from typing import Any, Dict, List, Mapping, Optional

TITLE = "LIPID ENGINE — ACTION SUMMARY"


def _fmt_num(x: Optional[float], unit: str = "", dp: int = 0) -> Optional[str]:
    if x is None:
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return str(x)
    if dp == 0:
        v = int(round(v))
    else:
        v = round(v, dp)
    return f"{v} {unit}".strip() if unit else f"{v}"


def _fmt_pct(x: Optional[float]) -> Optional[str]:
    if x is None:
        return None
    try:
        return f"{round(float(x), 1)}%"
    except (TypeError, ValueError):
        return None


def _trigger(code: str, label: str, value: Optional[str] = None, detail: Optional[str] = None, severity: str = "moderate") -> Dict[str, Any]:
    out = {"code": code, "label": label, "severity": severity}
    if value is not None:
        out["value"] = value
    if detail is not None:
        out["detail"] = detail
    return out


def _plan_item(kind: str, text: str, timing: Optional[str] = None, priority: Optional[int] = None) -> Dict[str, Any]:
    out = {"kind": kind, "text": text}
    if timing is not None:
        out["timing"] = timing
    if priority is not None:
        out["priority"] = priority
    return out


MED_CODES = {
    "start_statin", "increase_statin", "add_ezetimibe", "increase_to_high_intensity", "add_ezetimibe_to_high",
    "consider_pcsk9", "maximize_current_therapy", "maximize_all_therapy", "statin_high", "statin_moderate",
}


def _unwrap(result: Mapping[str, Any]) -> Dict[str, Any]:
    """Accepts an orchestrator result or a bare pipeline bundle."""
    if "combined" in result and "algorithms" in result:
        driver = result["combined"]["drivingAlgorithm"]
        bundle = dict(result["algorithms"][driver]["result"])
        bundle["interventions"] = result["combined"].get("interventions")
        return bundle
    return dict(result)


def _triggers(b: Mapping[str, Any]) -> List[Dict[str, Any]]:
    cur = b.get("currentValues", {})
    t = b.get("targets", {})
    th = b.get("therapy", {})
    elig = b.get("pcsk9Eligibility", {})
    out: List[Dict[str, Any]] = []

    cat = b.get("riskCategory")
    if cat in ("High", "VeryHigh"):
        out.append(_trigger("RISK_HIGH", b.get("riskCategoryLabel", cat), _fmt_pct(b.get("tenYearRiskPercent")),
                            t.get("reason"), "high"))
    elif cat == "Moderate":
        out.append(_trigger("RISK_MOD", "Moderate Risk", _fmt_pct(b.get("tenYearRiskPercent")), t.get("reason"), "moderate"))

    ldl = cur.get("ldl")
    if ldl is not None and t.get("ldl") is not None and ldl > t["ldl"] and not t.get("alternative_goal"):
        pct = b.get("targetsMet", {}).get("percentAboveTarget")
        sev = "high" if pct is not None and pct >= 50 else "moderate"
        out.append(_trigger("LDL_ABOVE", "LDL-C above target", _fmt_num(ldl, "mmol/L", 1),
                            f"Target <{t['ldl']} mmol/L", sev))

    apob = cur.get("apoB")
    if apob is not None and t.get("apob") is not None and apob > t["apob"]:
        out.append(_trigger("APOB_ABOVE", "ApoB above target", _fmt_num(apob, "g/L", 2), f"Target <{t['apob']} g/L"))

    lpa = cur.get("lpa")
    if lpa is not None and lpa >= 50:
        out.append(_trigger("LPA_ELEV", "Lp(a) elevated", _fmt_num(lpa, "mg/dL"), "Genetic risk enhancer.", "moderate"))

    if elig.get("targetLdlOverride"):
        out.append(_trigger("EXTREME_RISK", "Extreme high risk", None, elig["targetLdlOverride"], "high"))

    if elig.get("exclusions"):
        out.append(_trigger("PCSK9_EXCL", "PCSK9 coverage exclusion", None, "; ".join(elig["exclusions"]), "low"))
    elif elig.get("eligible"):
        out.append(_trigger("PCSK9_ELIG", "Meets PCSK9 coverage criteria", None, None, "moderate"))

    if th.get("unrecognized"):
        out.append(_trigger("MED_UNKNOWN", "Unrecognized medications", ", ".join(th["unrecognized"][:3]),
                            "Not included in therapy estimate.", "low"))

    if not out:
        out.append(_trigger("NO_MAJOR", "No major triggers detected", None, "Based on provided inputs.", "low"))
    return out[:6]


def _plan(b: Mapping[str, Any]) -> List[Dict[str, Any]]:
    rec = b.get("recommendation", {})
    code = rec.get("recommendation")
    items: List[Dict[str, Any]] = []

    kind = "med" if code in MED_CODES else "lifestyle"
    items.append(_plan_item(kind, rec.get("message", ""), "now", 1))
    for med in rec.get("medications", [])[:3]:
        items.append(_plan_item("med", med, None, 2))
    for step in rec.get("nextSteps", []):
        low = step.lower()
        if "repeat" in low or "order" in low or "obtain" in low or "lipid" in low:
            items.append(_plan_item("test", step, "6–12 weeks" if "week" not in low else None, 1))
        elif "reassess" in low or "monitor" in low or "refer" in low:
            items.append(_plan_item("followup", step, None, 2))
        else:
            items.append(_plan_item("lifestyle" if kind == "lifestyle" else "med", step, None, 2))
    return items


def to_output_contract(result: Mapping[str, Any]) -> Dict[str, Any]:
    """
    CamelCase contract for UI/API consumers.
    Safe on partial bundles: missing sections fall back to empty values.
    """
    b = _unwrap(result)
    t = b.get("targets", {})
    cur = b.get("currentValues", {})
    triggers = _triggers(b)
    plan_items = _plan(b)

    goal = f" or ≥{t['ldl_reduction']}% reduction" if t.get("ldl_reduction") else ""
    targets = [
        {"marker": "LDL-C", "current": _fmt_num(cur.get("ldl"), "mmol/L", 1),
         "target": f"<{t.get('ldl')} mmol/L{goal}", "why": "Primary treatment target."},
        {"marker": "Non-HDL-C", "current": _fmt_num(cur.get("nonHdl"), "mmol/L", 1),
         "target": f"<{t.get('non_hdl')} mmol/L", "why": "Alternate target; includes remnant particles."},
        {"marker": "ApoB", "current": _fmt_num(cur.get("apoB"), "g/L", 2),
         "target": f"<{t.get('apob')} g/L", "why": "Best proxy for atherogenic particle number."},
    ]

    grouped_plan = {
        "meds": [p for p in plan_items if p["kind"] == "med"],
        "tests": [p for p in plan_items if p["kind"] == "test"],
        "lifestyle": [p for p in plan_items if p["kind"] == "lifestyle"],
        "followup": [p for p in plan_items if p["kind"] == "followup"],
    }

    summary_line = f"Risk category: {b.get('riskCategoryLabel', b.get('riskCategory', '—'))}."
    if b.get("algorithm"):
        summary_line += f" Driven by {b['algorithm']} ({_fmt_pct(b.get('tenYearRiskPercent'))} 10-year)."

    elig = b.get("pcsk9Eligibility", {})
    coverage_line = (
        "PCSK9 coverage: eligible." if elig.get("eligible")
        else "PCSK9 coverage: " + ("excluded." if elig.get("exclusions") else "not eligible at this time.")
    )

    markdown = (
        f"{TITLE}\n"
        f"{summary_line}\n\n"
        "Triggers:\n"
        + "\n".join(f"- {x['label']}{': ' + x['value'] if x.get('value') else ''}" for x in triggers)
        + "\n\nTargets:\n"
        + "\n".join(f"- {x['marker']}: {x['current'] or '—'} → {x['target']}" for x in targets)
        + "\n\nPlan:\n"
        + "\n".join(f"- {p['text']}{' (' + p['timing'] + ')' if p.get('timing') else ''}" for p in plan_items)
        + f"\n\n{coverage_line}"
    )

    return {
        "title": TITLE,
        "riskCategory": b.get("riskCategory"),
        "summaryLine": summary_line,
        "triggers": triggers,
        "targets": targets,
        "plan": grouped_plan,
        "coverageLine": coverage_line,
        "interventions": b.get("interventions"),
        "markdown": markdown,
    }
