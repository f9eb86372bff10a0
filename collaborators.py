# collaborators.py
# Collaborator contracts the orchestrator is constructed with, plus in-process defaults.
#
# - RiskAlgorithm: async compute_risk(profile dict) -> {success, tenYearRiskPercent, riskCategory, riskFactorBreakdown}
#                  | {success: False, error}
# - Cache:         get(key) / set(key, value, ttl)
# - Notifier:      emit(event, payload), fire-and-forget
# - Validator:     validate(raw, field_type, unit) -> {isValid, normalizedValue, ...}  (unit_converter.LabValidator)

from __future__ import annotations

import copy
import logging
import threading
import time
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from patient_profile import safe_float
from risk_category import category_for_risk

logger = logging.getLogger(__name__)


class RiskAlgorithm(Protocol):
    name: str
    comprehensive: bool

    async def compute_risk(self, profile: Mapping[str, Any]) -> Dict[str, Any]: ...


class Cache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...


class Notifier(Protocol):
    def emit(self, event: str, payload: Mapping[str, Any]) -> None: ...


class Validator(Protocol):
    def validate(self, raw: Any, field_type: str, unit: Optional[str] = None) -> Dict[str, Any]: ...


# ----------------------------
# In-process TTL cache
# ----------------------------
class InMemoryCache:
    """Per-process TTL cache. Values are deep-copied in and out so callers never share state."""

    def __init__(self, default_ttl: float = 3600.0, clock=time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            hit = self._store.get(key)
            if hit is None:
                return None
            expires, value = hit
            if self._clock() >= expires:
                del self._store[key]
                return None
            return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        life = self.default_ttl if ttl is None else ttl
        with self._lock:
            now = self._clock()
            for stale in [k for k, (expires, _) in self._store.items() if now >= expires]:
                del self._store[stale]
            self._store[key] = (now + life, copy.deepcopy(value))

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


# ----------------------------
# Notifier
# ----------------------------
class LoggingNotifier:
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def emit(self, event: str, payload: Mapping[str, Any]) -> None:
        self.log.info("%s %s", event, {k: v for k, v in payload.items() if k != "result"})


# ----------------------------
# Risk algorithm that reports a precomputed estimate
# ----------------------------
class ReportedRiskAlgorithm:
    """
    Reads a 10-year risk % already computed elsewhere (EHR, calculator, pasted note)
    from `profile[field]`. Used by the app, where both scores arrive as chart text.
    """

    def __init__(self, name: str, field: str, comprehensive: bool = False):
        self.name = name
        self.field = field
        self.comprehensive = comprehensive

    async def compute_risk(self, profile: Mapping[str, Any]) -> Dict[str, Any]:
        pct = safe_float(profile.get(self.field))
        if pct is None:
            return {"success": False, "error": f"No {self.name} risk reported ({self.field})"}
        if pct < 0 or pct > 100:
            return {"success": False, "error": f"{self.name} risk out of range: {pct}"}
        return {
            "success": True,
            "tenYearRiskPercent": pct,
            "riskCategory": category_for_risk(pct / 100.0).name,
            "riskFactorBreakdown": {"source": "reported", "field": self.field},
        }
