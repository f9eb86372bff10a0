# lipid_config.py
# Clinical constant tables + runtime settings for the lipid engine.
#
# Sources:
# - Risk categories / targets: CCS 2021 dyslipidemia guideline
# - Coverage rules: BC PharmaCare Special Authority (PCSK9 inhibitors)
# - Intervention effects: CTT meta-analysis (~20% RRR per 1 mmol/L LDL),
#   BPLTTC (~20% RRR per 10 mmHg SBP), smoking cessation cohort data

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

VERSION = {
    "engine": "lipid-engine v1.0",
    "riskCategories": "CCS 2021 (Low <10%, Moderate 10-19.9%, High 20-29.9%, Very high ≥30%)",
    "targets": "CCS 2021 secondary/primary prevention targets",
    "therapyModel": "Sequential remaining-fraction LDL model (statin → ezetimibe → PCSK9 → other)",
    "coverage": "BC PharmaCare Special Authority (PCSK9 inhibitors, 2023)",
}


# ----------------------------
# Risk categories (fraction thresholds + default target bundle, mmol/L and g/L)
# ----------------------------
RISK_CATEGORY_TABLE: Dict[str, Dict[str, Any]] = {
    "Low": {"rank": 0, "threshold": 0.10, "ldl": 3.5, "non_hdl": 4.2, "apob": 1.05},
    "Moderate": {"rank": 1, "threshold": 0.20, "ldl": 2.5, "non_hdl": 3.2, "apob": 0.85},
    "High": {"rank": 2, "threshold": 0.30, "ldl": 2.0, "non_hdl": 2.6, "apob": 0.70},
    "VeryHigh": {"rank": 3, "threshold": float("inf"), "ldl": 1.8, "non_hdl": 2.4, "apob": 0.65},
}

LPA_ELEVATED_MGDL = 50.0
LPA_BUMP_MIN_RISK = 0.05
DIABETES_LONG_DURATION_YEARS = 15


# ----------------------------
# Target bundles (ldl, % reduction, non-HDL, apoB)
# ----------------------------
TARGET_BUNDLES: Dict[str, Dict[str, Any]] = {
    "ascvd": {"ldl": 1.8, "ldl_reduction": 50, "non_hdl": 2.4, "apob": 0.70},
    "ascvd_very_high": {"ldl": 1.4, "ldl_reduction": 60, "non_hdl": 2.0, "apob": 0.65},
    "fh": {"ldl": 2.0, "ldl_reduction": 50, "non_hdl": 2.6, "apob": 0.80},
    "fh_additional": {"ldl": 1.8, "ldl_reduction": 50, "non_hdl": 2.4, "apob": 0.70},
    "diabetes": {"ldl": 2.0, "ldl_reduction": 50, "non_hdl": 2.6, "apob": 0.80},
    "high": {"ldl": 2.0, "ldl_reduction": 50, "non_hdl": 2.6, "apob": 0.80},
    "moderate": {"ldl": 2.5, "ldl_reduction": 30, "non_hdl": 3.2, "apob": 0.90},
    "low_treat": {"ldl": 2.5, "ldl_reduction": 50, "non_hdl": 3.2, "apob": 0.90},
    "low_reference": {"ldl": 3.5, "ldl_reduction": None, "non_hdl": 4.2, "apob": 1.05},
}

MODERATE_FORCE_TREAT_LDL = 3.5
LOW_FORCE_TREAT_LDL = 5.0


# ----------------------------
# Therapy model (fraction of LDL remaining)
# ----------------------------
STATIN_REMAINING = {"none": 1.0, "low": 0.80, "moderate": 0.65, "high": 0.50}
EZETIMIBE_REMAINING = 0.76
PCSK9_REMAINING = 0.40
OTHER_AGENT_REMAINING = {
    "bempedoic_acid": 0.82,
    "bile_acid_sequestrant": 0.82,
    "niacin": 0.83,
    "fibrate": 0.93,
    "omega3": 1.0,
}
MAX_LDL_REDUCTION = 0.90


# ----------------------------
# Coverage thresholds
# ----------------------------
COVERAGE_MIN_AGE = 18
COVERAGE_MIN_LDL = 1.8
COVERAGE_MIN_THERAPY_MONTHS = 3
COVERAGE_MIN_STATINS_TRIED = 2
COVERAGE_MAX_HBA1C = 8.5
COVERAGE_RECENT_EVENT_MONTHS = 12
FH_MIN_DLCN_SCORE = 6
FH_LDL_MALE = 5.0
FH_LDL_FEMALE = 4.5
SEQUESTRANT_MAX_TG = 3.0


# ----------------------------
# Intervention model
# ----------------------------
ASSUMED_BASELINE_LDL = 3.5
RRR_PER_MMOL_LDL = 0.20
RRR_PER_10_MMHG = 0.20
SMOKING_CESSATION_RRR = 0.35
STATIN_INTENSITY_LDL_PCT = {"high": 50, "moderate": 30, "low": 20}
BP_REGIMEN_SBP_DROP = {"single": 10, "dual": 20, "triple": 30}
NNT_MIN_ARR = 0.01


# ----------------------------
# Runtime settings
# ----------------------------
def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    log_level: str = "INFO"
    use_cache: bool = True
    cache_ttl_seconds: float = 3600.0
    agreement_high: float = 3.0
    agreement_moderate: float = 7.5

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            log_level=os.getenv("LIPID_LOG_LEVEL", "INFO").upper(),
            use_cache=_env_bool("LIPID_USE_CACHE", True),
            cache_ttl_seconds=_env_float("LIPID_CACHE_TTL_SECONDS", 3600.0),
            agreement_high=_env_float("LIPID_AGREEMENT_HIGH", 3.0),
            agreement_moderate=_env_float("LIPID_AGREEMENT_MODERATE", 7.5),
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Root logging setup for the app / CLI entry points. Library modules only call getLogger."""
    lvl = (level or Settings.from_env().log_level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, lvl, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
