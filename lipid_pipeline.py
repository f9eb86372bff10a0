# lipid_pipeline.py
# One full evaluation for one risk estimate:
#   categorize -> targets -> therapy state -> coverage eligibility -> intensification -> bundle
#
# Pure and synchronous. The orchestrator runs this once per algorithm result.

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from intensification import alternative_options, recommend_intensification
from lipid_config import VERSION
from lipid_targets import assess_targets_met, resolve_targets
from patient_profile import PatientProfile, add_trace, fmt_1dp, safe_float
from pcsk9_eligibility import assess_pcsk9_eligibility
from risk_category import categorize_risk
from therapy_state import MedicationTaxonomy, classify_therapy, estimated_baseline_ldl


def risk_fraction(risk_result: Optional[Mapping[str, Any]]) -> float:
    """tenYearRiskPercent (0-100) -> fraction; missing counts as 0."""
    if not risk_result:
        return 0.0
    pct = safe_float(risk_result.get("tenYearRiskPercent"))
    return 0.0 if pct is None else pct / 100.0


def current_values(p: PatientProfile) -> Dict[str, Optional[float]]:
    return {
        "ldl": p.ldl,
        "nonHdl": p.num("non_hdl"),
        "apoB": p.num("apob"),
        "lpa": p.num("lpa"),
        "hdl": p.num("hdl"),
        "totalCholesterol": p.num("total_cholesterol"),
        "triglycerides": p.num("triglycerides"),
        "ldlDerived": p.get("ldl_derived"),
    }


def evaluate(
    p: PatientProfile,
    risk_result: Optional[Mapping[str, Any]] = None,
    taxonomy: Optional[MedicationTaxonomy] = None,
    today: Optional[date] = None,
    algorithm: str = "",
) -> Dict[str, Any]:
    trace: List[Dict[str, Any]] = []
    risk = risk_fraction(risk_result)
    add_trace(trace, "Risk_input", round(risk * 100, 2), f"{algorithm or 'risk'} 10y estimate")

    category = categorize_risk(p, risk, trace)
    targets = resolve_targets(category, p, trace)
    met = assess_targets_met(p, targets)
    add_trace(trace, "Targets_met", met["overall"], f"LDL met={met['ldl']} nonHDL met={met['nonHdl']} apoB met={met['apoB']}")

    therapy = classify_therapy(p.medications, taxonomy, trace)
    eligibility = assess_pcsk9_eligibility(p, therapy, today, trace)
    recommendation = recommend_intensification(
        p, category, targets, therapy, met, eligibility=lambda: eligibility, trace=trace
    )

    return {
        "version": dict(VERSION),
        "algorithm": algorithm,
        "tenYearRiskPercent": round(risk * 100, 2),
        "riskFactorBreakdown": dict((risk_result or {}).get("riskFactorBreakdown") or {}),
        "riskCategory": category.name,
        "riskCategoryLabel": category.label,
        "targets": targets.to_dict(),
        "currentValues": current_values(p),
        "targetsMet": met,
        "therapy": therapy.to_dict(),
        "estimatedBaselineLdl": estimated_baseline_ldl(p, therapy),
        "recommendation": recommendation,
        "pcsk9Eligibility": eligibility.to_dict(),
        "alternativeOptions": alternative_options(p, category, therapy),
        "trace": trace,
    }


def render_quick_text(bundle: Mapping[str, Any]) -> str:
    t = bundle["targets"]
    cur = bundle["currentValues"]
    met = bundle["targetsMet"]
    th = bundle["therapy"]
    rec = bundle["recommendation"]
    elig = bundle["pcsk9Eligibility"]

    lines = []
    lines.append(f"LIPID ENGINE {bundle['version']['engine']} - Quick Reference")
    head = f"Risk category: {bundle['riskCategoryLabel']}"
    if bundle.get("algorithm"):
        head += f" ({bundle['algorithm']} {fmt_1dp(bundle['tenYearRiskPercent'])}% 10-year)"
    lines.append(head)
    if t.get("reason"):
        lines.append(f"Basis: {t['reason']}")
    lines.append("")

    lines.append("Targets")
    goal = f" or ≥{t['ldl_reduction']}% reduction" if t.get("ldl_reduction") else ""
    tag = " (reference only)" if t.get("alternative_goal") else ""
    ldl_now = f"{fmt_1dp(cur['ldl'])} mmol/L" if cur.get("ldl") is not None else "not measured"
    lines.append(f"• LDL-C: {ldl_now} → target <{t['ldl']} mmol/L{goal}{tag}")
    if cur.get("nonHdl") is not None:
        lines.append(f"• Non-HDL-C: {fmt_1dp(cur['nonHdl'])} mmol/L → target <{t['non_hdl']} mmol/L")
    if cur.get("apoB") is not None:
        lines.append(f"• ApoB: {cur['apoB']} g/L → target <{t['apob']} g/L")
    lines.append(f"Targets met: {'yes' if met.get('overall') else 'no'}")
    lines.append("")

    regimen = [f"{th['statinIntensity']}-intensity statin"] if th["statinIntensity"] != "none" else ["no statin"]
    if th["hasEzetimibe"]:
        regimen.append("ezetimibe")
    if th["hasPCSK9"]:
        regimen.append("PCSK9 inhibitor")
    regimen.extend(th["otherAgents"])
    lines.append(f"Current therapy: {', '.join(regimen)} (est. LDL reduction {round(th['estimatedLdlReduction'] * 100)}%)")
    if bundle.get("estimatedBaselineLdl") is not None and th["estimatedLdlReduction"] > 0:
        lines.append(f"Estimated untreated LDL-C: {bundle['estimatedBaselineLdl']} mmol/L")

    lines.append(f"Recommendation: {rec['message']}")
    if rec.get("nextSteps"):
        lines.append("Next: " + " / ".join(rec["nextSteps"]))

    status = "eligible" if elig["eligible"] else ("excluded" if elig["exclusions"] else "not eligible")
    lines.append(f"PCSK9 coverage: {status}")
    if elig.get("targetLdlOverride"):
        lines.append(f"Extreme high risk: target {elig['targetLdlOverride']}")
    return "\n".join(lines)
