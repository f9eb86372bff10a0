import asyncio
import sys
from datetime import date
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from collaborators import InMemoryCache, ReportedRiskAlgorithm
from lipid_config import Settings
from lipid_errors import AlgorithmError, ConfigurationError, ValidationError
from risk_orchestrator import (
    EVENT_CACHE_HIT,
    EVENT_COMPLETE,
    EVENT_FAILED,
    RiskOrchestrator,
    cache_key,
)

TODAY = date(2026, 10, 16)

PATIENT = {"age": 58, "sex": "male", "ldl": 3.4, "hdl": 1.1, "sbp": 128}


class FakeAlgo:
    def __init__(self, name, pct=10.0, comprehensive=False, error=None, raises=None):
        self.name = name
        self.comprehensive = comprehensive
        self.pct = pct
        self.error = error
        self.raises = raises
        self.calls = 0

    async def compute_risk(self, profile):
        self.calls += 1
        await asyncio.sleep(0)
        if self.raises is not None:
            raise self.raises
        if self.error:
            return {"success": False, "error": self.error}
        return {"success": True, "tenYearRiskPercent": self.pct, "riskFactorBreakdown": {"age": profile["age"]}}


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def emit(self, event, payload):
        self.events.append((event, dict(payload)))

    def names(self):
        return [e for e, _ in self.events]


class BrokenNotifier:
    def emit(self, event, payload):
        raise RuntimeError("notifier down")


def _orch(comp, conv, **kw):
    kw.setdefault("settings", Settings())
    return RiskOrchestrator(comp, conv, today=TODAY, **kw)


def _run(orch, patient=None):
    return asyncio.run(orch.evaluate(dict(PATIENT if patient is None else patient)))


# ----------------------------
# Fan-out / fan-in
# ----------------------------
def test_both_algorithms_succeed():
    notifier = RecordingNotifier()
    out = _run(_orch(FakeAlgo("QRISK3", 22.0, True), FakeAlgo("Framingham", 12.0), notifier=notifier))
    assert out["success"] is True
    assert out["comparisonStatus"] == "available"
    assert out["algorithms"]["QRISK3"]["result"]["riskCategory"] == "High"
    assert out["algorithms"]["Framingham"]["result"]["riskCategory"] == "Moderate"
    assert out["comparison"]["absoluteDifference"] == 10.0
    assert out["combined"]["drivingAlgorithm"] == "QRISK3"
    assert out["combined"]["tenYearRiskPercent"] == 22.0
    assert set(out["cacheKey"]) == {"QRISK3", "Framingham"}
    assert notifier.names() == [EVENT_COMPLETE]


def test_one_failure_keeps_the_other_result():
    notifier = RecordingNotifier()
    out = _run(_orch(FakeAlgo("QRISK3", 15.0, True), FakeAlgo("Framingham", error="missing HDL"), notifier=notifier))
    assert out["comparison"] is None
    assert out["comparisonStatus"] == "unavailable"
    failed = out["algorithms"]["Framingham"]
    assert failed["success"] is False
    assert failed["code"] == "ALGORITHM_ERROR"
    assert "missing HDL" in failed["error"]
    assert out["combined"]["drivingAlgorithm"] == "QRISK3"
    assert notifier.names() == [EVENT_FAILED, EVENT_COMPLETE]
    assert notifier.events[0][1]["partial"] is True


def test_raising_algorithm_is_contained():
    out = _run(_orch(FakeAlgo("QRISK3", raises=ZeroDivisionError("bad term"), comprehensive=True),
                     FakeAlgo("Framingham", 9.0)))
    assert out["algorithms"]["QRISK3"]["success"] is False
    assert "bad term" in out["algorithms"]["QRISK3"]["error"]
    assert out["combined"]["drivingAlgorithm"] == "Framingham"


def test_both_failures_raise_algorithm_error():
    notifier = RecordingNotifier()
    orch = _orch(FakeAlgo("QRISK3", error="x"), FakeAlgo("Framingham", raises=ValueError("y")), notifier=notifier)
    with pytest.raises(AlgorithmError) as e:
        _run(orch)
    assert "QRISK3" in e.value.message and "Framingham" in e.value.message
    assert notifier.names() == [EVENT_FAILED]


def test_branches_run_concurrently():
    async def scenario():
        a_started, b_started = asyncio.Event(), asyncio.Event()

        class Waiting(FakeAlgo):
            def __init__(self, name, mine, peer):
                super().__init__(name, 12.0)
                self.mine, self.peer = mine, peer

            async def compute_risk(self, profile):
                self.mine.set()
                await asyncio.wait_for(self.peer.wait(), timeout=2.0)
                return await super().compute_risk(profile)

        orch = _orch(Waiting("QRISK3", a_started, b_started), Waiting("Framingham", b_started, a_started))
        return await orch.evaluate(dict(PATIENT))

    out = asyncio.run(scenario())
    assert out["comparisonStatus"] == "available"


# ----------------------------
# Input validation
# ----------------------------
def test_validation_errors_are_collected():
    orch = _orch(FakeAlgo("QRISK3"), FakeAlgo("Framingham"))
    with pytest.raises(ValidationError) as e:
        _run(orch, {"sex": "male", "ldl": "abc", "hdl": 40.0})
    assert {"age", "ldl", "hdl"} <= set(e.value.field_errors)


def test_lab_units_are_converted_before_the_pipeline():
    comp, conv = FakeAlgo("QRISK3", 12.0), FakeAlgo("Framingham", 12.0)
    out = _run(_orch(comp, conv), {**PATIENT, "ldl": 120, "ldl_unit": "mg/dL"})
    assert out["algorithms"]["QRISK3"]["result"]["currentValues"]["ldl"] == pytest.approx(3.103)


def test_duplicate_algorithm_names_rejected():
    with pytest.raises(ConfigurationError):
        RiskOrchestrator(FakeAlgo("QRISK3"), FakeAlgo("QRISK3"), settings=Settings())


# ----------------------------
# Synthesis
# ----------------------------
def test_higher_category_drives_even_if_not_suggested():
    out = _run(_orch(FakeAlgo("QRISK3", 18.0, True), FakeAlgo("Framingham", 21.0)))
    assert out["comparison"]["suggestedAlgorithm"] == "QRISK3"
    assert out["combined"]["drivingAlgorithm"] == "Framingham"
    assert out["combined"]["riskCategory"] == "High"


def test_same_category_resolves_to_suggested_algorithm():
    out = _run(_orch(FakeAlgo("QRISK3", 12.0, True), FakeAlgo("Framingham", 14.0)))
    assert out["combined"]["drivingAlgorithm"] == "QRISK3"
    assert out["combined"]["reason"].startswith("Same risk category")

    south_asian = {**PATIENT, "conditions": ["south_asian"]}
    out = _run(_orch(FakeAlgo("QRISK3", 11.0, True), FakeAlgo("Framingham", 16.0)), south_asian)
    assert out["comparison"]["suggestedAlgorithm"] == "Framingham"
    assert out["combined"]["drivingAlgorithm"] == "Framingham"


def test_default_interventions_follow_profile():
    plain = _run(_orch(FakeAlgo("QRISK3", 20.0, True), FakeAlgo("Framingham", 20.0)))
    sims = plain["combined"]["interventions"]
    assert [s["type"] for s in sims["scenarios"]] == ["statin"]
    assert sims["combined"] is None

    risky = {**PATIENT, "sbp": 145, "conditions": ["smoker"]}
    out = _run(_orch(FakeAlgo("QRISK3", 20.0, True), FakeAlgo("Framingham", 20.0)), risky)
    sims = out["combined"]["interventions"]
    assert [s["type"] for s in sims["scenarios"]] == ["statin", "bp", "smoking_cessation"]
    assert sims["combined"]["projectedRiskPercent"] < 13.0


def test_simulate_interventions_entry_point():
    orch = _orch(FakeAlgo("QRISK3"), FakeAlgo("Framingham"))
    out = orch.simulate_interventions(25.0, statin="high")
    assert out["scenarios"][0]["projectedRiskPercent"] == 16.25


# ----------------------------
# Cache + notifier
# ----------------------------
def test_cache_hit_skips_computation():
    cache = InMemoryCache()
    notifier = RecordingNotifier()
    comp, conv = FakeAlgo("QRISK3", 12.0, True), FakeAlgo("Framingham", 8.0)
    orch = _orch(comp, conv, cache=cache, notifier=notifier)

    first = _run(orch)
    second = _run(orch)
    assert (comp.calls, conv.calls) == (1, 1)
    assert len(cache) == 2
    assert notifier.names().count(EVENT_CACHE_HIT) == 2
    assert first["combined"] == second["combined"]


def test_cache_disabled_by_settings():
    cache = InMemoryCache()
    comp, conv = FakeAlgo("QRISK3", 12.0, True), FakeAlgo("Framingham", 8.0)
    orch = _orch(comp, conv, cache=cache, settings=Settings(use_cache=False))
    _run(orch)
    _run(orch)
    assert (comp.calls, conv.calls) == (2, 2)
    assert len(cache) == 0


def test_failed_branches_are_not_cached():
    cache = InMemoryCache()
    bad = FakeAlgo("Framingham", error="no data")
    orch = _orch(FakeAlgo("QRISK3", 12.0, True), bad, cache=cache)
    _run(orch)
    _run(orch)
    assert bad.calls == 2
    assert len(cache) == 1


def test_notifier_failure_does_not_fail_evaluation():
    out = _run(_orch(FakeAlgo("QRISK3", 12.0, True), FakeAlgo("Framingham", 8.0), notifier=BrokenNotifier()))
    assert out["success"] is True


def test_cache_ttl_expiry():
    now = [100.0]
    cache = InMemoryCache(default_ttl=10.0, clock=lambda: now[0])
    cache.set("k", {"v": [1]})
    got = cache.get("k")
    got["v"].append(2)
    assert cache.get("k") == {"v": [1]}
    now[0] = 109.9
    assert cache.get("k") is not None
    now[0] = 110.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_set_sweeps_expired_entries():
    now = [0.0]
    cache = InMemoryCache(default_ttl=10.0, clock=lambda: now[0])
    for i in range(5):
        cache.set(f"patient_{i}", i)
    cache.set("short", "x", ttl=20.0)
    now[0] = 15.0
    cache.set("fresh", "y")
    assert len(cache) == 2
    assert cache.get("short") == "x"
    assert cache.get("fresh") == "y"


def test_cache_key_is_deterministic():
    a = cache_key("QRISK3", {"age": 50, "sex": "male", "ldl": 3.0}, TODAY)
    b = cache_key("QRISK3", {"ldl": 3.0, "sex": "male", "age": 50}, TODAY)
    assert a == b
    assert a.startswith("lipid_QRISK3_")
    assert a != cache_key("Framingham", {"age": 50, "sex": "male", "ldl": 3.0}, TODAY)
    assert a != cache_key("QRISK3", {"age": 50, "sex": "male", "ldl": 3.0}, date(2026, 10, 17))


# ----------------------------
# Reported-score algorithm (used by the app)
# ----------------------------
def test_reported_risk_algorithm():
    qrisk = ReportedRiskAlgorithm("QRISK3", "qrisk3_percent", comprehensive=True)
    ok = asyncio.run(qrisk.compute_risk({"qrisk3_percent": "14.2"}))
    assert ok["success"] is True
    assert ok["tenYearRiskPercent"] == 14.2
    assert ok["riskCategory"] == "Moderate"

    assert asyncio.run(qrisk.compute_risk({}))["success"] is False
    assert asyncio.run(qrisk.compute_risk({"qrisk3_percent": 140}))["success"] is False
