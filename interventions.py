# interventions.py
# Intervention Effect Simulator: baseline 10y risk % -> projected risk under hypothetical changes.
#
#   statin   RRR = (LDL reduction fraction x 3.5 mmol/L assumed baseline) x 20% per mmol/L
#   BP       RRR = (SBP drop mmHg / 10) x 20%
#   smoking  RRR = 35% flat
# Each RRR is clamped to [0, 1]. Combined scenarios multiply remaining risk.
# NNT = 100 / ARR points, halves rounded up; None when ARR is ~0.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from lipid_config import (
    ASSUMED_BASELINE_LDL,
    BP_REGIMEN_SBP_DROP,
    NNT_MIN_ARR,
    RRR_PER_10_MMHG,
    RRR_PER_MMOL_LDL,
    SMOKING_CESSATION_RRR,
    STATIN_INTENSITY_LDL_PCT,
)
from lipid_errors import ValidationError
from patient_profile import safe_float


@dataclass(frozen=True)
class InterventionScenario:
    type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    baseline_risk_percent: float = 0.0
    projected_risk_percent: float = 0.0
    absolute_risk_reduction: float = 0.0
    relative_risk_reduction: float = 0.0
    number_needed_to_treat: Optional[int] = None
    remaining_fraction: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "parameters": dict(self.parameters),
            "baselineRiskPercent": self.baseline_risk_percent,
            "projectedRiskPercent": self.projected_risk_percent,
            "absoluteRiskReduction": self.absolute_risk_reduction,
            "relativeRiskReduction": self.relative_risk_reduction,
            "numberNeededToTreat": self.number_needed_to_treat,
        }


def _clamp01(x: float) -> float:
    return min(max(x, 0.0), 1.0)


def _baseline(baseline_percent: Any) -> float:
    v = safe_float(baseline_percent)
    if v is None:
        raise ValidationError({"baselineRiskPercent": "Baseline risk must be numeric"})
    if v < 0 or v > 100:
        raise ValidationError({"baselineRiskPercent": "Baseline risk out of range (0-100)"})
    return v


def _scenario(kind: str, params: Dict[str, Any], baseline: float, remaining: float) -> InterventionScenario:
    projected = baseline * remaining
    arr = baseline - projected
    nnt = int(math.floor(100.0 / arr + 0.5)) if arr > NNT_MIN_ARR else None
    return InterventionScenario(
        type=kind,
        parameters=params,
        baseline_risk_percent=round(baseline, 2),
        projected_risk_percent=round(projected, 2),
        absolute_risk_reduction=round(arr, 2),
        relative_risk_reduction=round((1.0 - remaining) * 100.0, 1),
        number_needed_to_treat=nnt,
        remaining_fraction=remaining,
    )


# ----------------------------
# Relative risk reductions
# ----------------------------
def statin_rrr(ldl_reduction_pct: float) -> float:
    return _clamp01(ldl_reduction_pct / 100.0 * ASSUMED_BASELINE_LDL * RRR_PER_MMOL_LDL)


def bp_rrr(sbp_reduction_mmhg: float) -> float:
    return _clamp01(sbp_reduction_mmhg / 10.0 * RRR_PER_10_MMHG)


def _statin_pct(statin: Union[str, float, int]) -> float:
    if isinstance(statin, str):
        key = statin.strip().lower()
        if key not in STATIN_INTENSITY_LDL_PCT:
            raise ValidationError({"statin": f"Unknown statin intensity: {statin}"})
        return float(STATIN_INTENSITY_LDL_PCT[key])
    v = safe_float(statin)
    if v is None or v < 0:
        raise ValidationError({"statin": "LDL reduction percent must be a non-negative number"})
    return v


def _sbp_drop(bp: Union[str, float, int]) -> float:
    if isinstance(bp, str):
        key = bp.strip().lower()
        if key not in BP_REGIMEN_SBP_DROP:
            raise ValidationError({"bp": f"Unknown BP regimen: {bp}"})
        return float(BP_REGIMEN_SBP_DROP[key])
    v = safe_float(bp)
    if v is None or v < 0:
        raise ValidationError({"bp": "SBP reduction must be a non-negative number"})
    return v


# ----------------------------
# Scenarios
# ----------------------------
def statin_scenario(baseline_percent: Any, statin: Union[str, float, int] = "high") -> InterventionScenario:
    """`statin` is an intensity name (high/moderate/low) or an LDL reduction percent."""
    b = _baseline(baseline_percent)
    pct = _statin_pct(statin)
    params = {"ldlReductionPercent": pct, "assumedBaselineLdl": ASSUMED_BASELINE_LDL}
    if isinstance(statin, str):
        params["intensity"] = statin.strip().lower()
    return _scenario("statin", params, b, 1.0 - statin_rrr(pct))


def bp_scenario(baseline_percent: Any, bp: Union[str, float, int] = "single") -> InterventionScenario:
    """`bp` is a regimen name (single/dual/triple) or an SBP drop in mmHg."""
    b = _baseline(baseline_percent)
    drop = _sbp_drop(bp)
    params = {"sbpReductionMmHg": drop}
    if isinstance(bp, str):
        params["regimen"] = bp.strip().lower()
    return _scenario("bp", params, b, 1.0 - bp_rrr(drop))


def smoking_cessation_scenario(baseline_percent: Any) -> InterventionScenario:
    b = _baseline(baseline_percent)
    return _scenario("smoking_cessation", {"relativeReduction": SMOKING_CESSATION_RRR}, b,
                     1.0 - _clamp01(SMOKING_CESSATION_RRR))


def combined_scenario(baseline_percent: Any, scenarios: List[InterventionScenario]) -> InterventionScenario:
    """Sequential composition: remaining risk fractions multiply."""
    b = _baseline(baseline_percent)
    remaining = 1.0
    for s in scenarios:
        remaining *= s.remaining_fraction
    return _scenario("combined", {"components": [s.type for s in scenarios]}, b, remaining)


def simulate_interventions(
    baseline_percent: Any,
    statin: Optional[Union[str, float, int]] = None,
    bp: Optional[Union[str, float, int]] = None,
    smoking: bool = False,
) -> Dict[str, Any]:
    scenarios: List[InterventionScenario] = []
    if statin is not None:
        scenarios.append(statin_scenario(baseline_percent, statin))
    if bp is not None:
        scenarios.append(bp_scenario(baseline_percent, bp))
    if smoking:
        scenarios.append(smoking_cessation_scenario(baseline_percent))

    combined = combined_scenario(baseline_percent, scenarios) if len(scenarios) > 1 else None
    return {
        "baselineRiskPercent": round(_baseline(baseline_percent), 2),
        "scenarios": [s.to_dict() for s in scenarios],
        "combined": None if combined is None else combined.to_dict(),
    }
