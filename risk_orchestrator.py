# risk_orchestrator.py
# Multi-algorithm orchestrator: validate -> fan out (one pipeline per algorithm) -> fan in -> compare -> synthesize.
#
# - Both algorithms run as independent asyncio tasks joined with gather(return_exceptions=True);
#   no state crosses between branches.
# - One branch failing keeps the other result and marks comparisonStatus "unavailable".
# - Both failing raises AlgorithmError.
# - Cache keys: lipid_<algorithm>_<sha256 of the sorted-JSON normalized profile + reference date>.
# - Collaborators are injected; nothing here is a module-level singleton.

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

from collaborators import Cache, Notifier, RiskAlgorithm, Validator
from interventions import simulate_interventions
from lipid_config import Settings
from lipid_errors import AlgorithmError, ConfigurationError, ValidationError
from lipid_pipeline import evaluate as run_pipeline
from patient_profile import PatientProfile, has_condition
from risk_category import BY_NAME
from risk_comparison import build_comparison
from therapy_state import MedicationTaxonomy
from unit_converter import FIELD_ANALYTE, LabValidator

logger = logging.getLogger(__name__)

EVENT_COMPLETE = "evaluation:complete"
EVENT_FAILED = "evaluation:failed"
EVENT_CACHE_HIT = "evaluation:cacheHit"

VALIDATED_FIELDS = tuple(FIELD_ANALYTE) + ("egfr", "sbp")


def cache_key(algorithm: str, profile: Mapping[str, Any], today: Optional[date] = None) -> str:
    payload = {"profile": profile, "today": (today or date.today()).isoformat()}
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"lipid_{algorithm}_{digest}"


class RiskOrchestrator:
    def __init__(
        self,
        comprehensive: RiskAlgorithm,
        conventional: RiskAlgorithm,
        cache: Optional[Cache] = None,
        notifier: Optional[Notifier] = None,
        validator: Optional[Validator] = None,
        taxonomy: Optional[MedicationTaxonomy] = None,
        settings: Optional[Settings] = None,
        today: Optional[date] = None,
    ):
        if comprehensive.name == conventional.name:
            raise ConfigurationError("Algorithms must have distinct names", {"name": comprehensive.name})
        self.comprehensive = comprehensive
        self.conventional = conventional
        self.cache = cache
        self.notifier = notifier
        self.validator = validator if validator is not None else LabValidator()
        self.taxonomy = taxonomy
        self.settings = settings or Settings.from_env()
        self.today = today

    # ----------------------------
    # Input
    # ----------------------------
    def normalize(self, raw: Mapping[str, Any]) -> PatientProfile:
        """Validator pass over lab fields, then the profile's own required-field checks. All errors reported together."""
        if raw is None:
            raise ValidationError({"patient": "Patient data is required"})
        data = dict(raw)
        errors: Dict[str, str] = {}

        for name in VALIDATED_FIELDS:
            if data.get(name) is None:
                continue
            unit = data.get(f"{name}_unit")
            res = self.validator.validate(data[name], name, unit)
            if not res.get("isValid"):
                errors[name] = res.get("warning") or "Invalid value"
                continue
            data[name] = res.get("normalizedValue")
            if unit is not None and "convertedValue" in res:
                data.pop(f"{name}_unit", None)

        try:
            profile = PatientProfile.from_dict(data)
        except ValidationError as e:
            errors.update(e.field_errors)
            raise ValidationError(errors) from e
        if errors:
            raise ValidationError(errors)
        return profile

    # ----------------------------
    # Branches
    # ----------------------------
    def _notify(self, event: str, payload: Mapping[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.emit(event, payload)
        except Exception:
            logger.warning("Notifier failed on %s", event, exc_info=True)

    async def _run_branch(self, algo: RiskAlgorithm, profile: PatientProfile, key: str) -> Dict[str, Any]:
        use_cache = self.cache is not None and self.settings.use_cache
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit for %s", algo.name)
                self._notify(EVENT_CACHE_HIT, {"algorithm": algo.name, "cacheKey": key})
                return cached
            logger.debug("Cache miss for %s", algo.name)

        try:
            result = await algo.compute_risk(profile.to_dict())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise AlgorithmError(algo.name, str(e) or type(e).__name__) from e
        if not result or not result.get("success"):
            raise AlgorithmError(algo.name, str((result or {}).get("error") or "calculation failed"))

        bundle = run_pipeline(profile, result, self.taxonomy, self.today, algorithm=algo.name)
        if use_cache:
            self.cache.set(key, bundle, self.settings.cache_ttl_seconds)
        return bundle

    # ----------------------------
    # Public API
    # ----------------------------
    async def evaluate(self, raw_patient: Mapping[str, Any]) -> Dict[str, Any]:
        profile = self.normalize(raw_patient)
        plain = profile.to_dict()
        algos = (self.comprehensive, self.conventional)
        keys = {a.name: cache_key(a.name, plain, self.today) for a in algos}
        logger.debug("Evaluating with %s", [a.name for a in algos])

        tasks = [asyncio.create_task(self._run_branch(a, profile, keys[a.name])) for a in algos]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        branches: Dict[str, Dict[str, Any]] = {}
        ok: List[Tuple[RiskAlgorithm, Dict[str, Any]]] = []
        for algo, out in zip(algos, outcomes):
            if isinstance(out, BaseException):
                err = out if isinstance(out, AlgorithmError) else AlgorithmError(algo.name, repr(out))
                logger.warning("Risk algorithm %s failed: %s", algo.name, err.message)
                branches[algo.name] = {"success": False, "error": err.message, "code": err.code}
            else:
                branches[algo.name] = {"success": True, "result": out}
                ok.append((algo, out))

        if not ok:
            self._notify(EVENT_FAILED, {"algorithms": [a.name for a in algos], "errors": branches})
            raise AlgorithmError(
                "+".join(a.name for a in algos),
                "; ".join(b["error"] for b in branches.values()),
            )
        if len(ok) < len(algos):
            failed = [n for n, b in branches.items() if not b["success"]]
            self._notify(EVENT_FAILED, {"algorithms": failed, "partial": True})

        comparison = None
        if len(ok) == len(algos):
            comparison = build_comparison(
                profile,
                self.comprehensive.name,
                branches[self.comprehensive.name]["result"]["tenYearRiskPercent"],
                self.conventional.name,
                branches[self.conventional.name]["result"]["tenYearRiskPercent"],
                self.settings,
            )

        combined = self._synthesize(profile, ok, comparison)
        out = {
            "success": True,
            "algorithms": branches,
            "comparison": comparison,
            "comparisonStatus": "available" if comparison is not None else "unavailable",
            "combined": combined,
            "cacheKey": keys,
        }
        self._notify(EVENT_COMPLETE, {"algorithms": [a.name for a, _ in ok], "comparisonStatus": out["comparisonStatus"]})
        logger.debug("Evaluation complete (%s)", out["comparisonStatus"])
        return out

    def _synthesize(
        self,
        profile: PatientProfile,
        ok: List[Tuple[RiskAlgorithm, Dict[str, Any]]],
        comparison: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Higher risk category drives; equal categories resolve to the suggested algorithm."""
        if len(ok) == 1:
            algo, bundle = ok[0]
            reason = f"Only {algo.name} available"
        else:
            suggested = comparison["suggestedAlgorithm"] if comparison else ok[0][0].name
            ranked = sorted(
                ok,
                key=lambda ab: (BY_NAME[ab[1]["riskCategory"]].rank, ab[0].name == suggested),
                reverse=True,
            )
            algo, bundle = ranked[0]
            other = ranked[1][1]
            if bundle["riskCategory"] == other["riskCategory"]:
                reason = f"Same risk category; {algo.name} suggested for this patient"
            else:
                reason = f"{algo.name} yields the higher risk category"

        baseline = bundle["tenYearRiskPercent"]
        return {
            "drivingAlgorithm": algo.name,
            "reason": reason,
            "tenYearRiskPercent": baseline,
            "riskCategory": bundle["riskCategory"],
            "targets": bundle["targets"],
            "targetsMet": bundle["targetsMet"],
            "recommendation": bundle["recommendation"],
            "pcsk9Eligibility": bundle["pcsk9Eligibility"],
            "interventions": self._default_interventions(profile, bundle),
        }

    def _default_interventions(self, profile: PatientProfile, bundle: Mapping[str, Any]) -> Dict[str, Any]:
        statin = None if bundle["therapy"]["statinIntensity"] == "high" else "high"
        sbp = profile.num("sbp")
        bp = "single" if (sbp is not None and sbp >= 130) or has_condition(profile, "hypertension") else None
        smoking = has_condition(profile, "smoker", "smoking", "current_smoker")
        return simulate_interventions(bundle["tenYearRiskPercent"], statin=statin, bp=bp, smoking=smoking)

    def simulate_interventions(self, baseline_percent: Any, statin=None, bp=None, smoking: bool = False) -> Dict[str, Any]:
        return simulate_interventions(baseline_percent, statin=statin, bp=bp, smoking=smoking)
