# therapy_state.py
# Therapy State Classifier: free-text medication list -> TherapyState.
#
# Matching is case-insensitive substring against an injectable taxonomy.
# Statin tier per name: explicit _high/_low token > mg dose band > drug default.
# LDL model (remaining fraction, applied in order):
#   statin tier -> ezetimibe x0.76 -> PCSK9 x0.40 -> each other agent
#   reduction = 1 - remaining, capped at 0.90

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from lipid_config import (
    EZETIMIBE_REMAINING,
    MAX_LDL_REDUCTION,
    OTHER_AGENT_REMAINING,
    PCSK9_REMAINING,
    STATIN_REMAINING,
)
from lipid_errors import ConfigurationError
from patient_profile import PatientProfile, add_trace

logger = logging.getLogger(__name__)

TIER_ORDER = ("none", "low", "moderate", "high")
DRUG_CLASSES = ("statin", "ezetimibe", "pcsk9", "other")

_DOSE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*mg", re.IGNORECASE)


# ----------------------------
# Taxonomy (medication database collaborator)
# ----------------------------
# statin dose bands: (min mg for moderate, min mg for high); None = tier not reachable
DEFAULT_TAXONOMY: Dict[str, Dict[str, Any]] = {
    "atorvastatin": {"class": "statin", "tier": "high", "bands": (10, 40), "aliases": ("lipitor",)},
    "rosuvastatin": {"class": "statin", "tier": "high", "bands": (5, 20), "aliases": ("crestor",)},
    "simvastatin": {"class": "statin", "tier": "moderate", "bands": (20, None), "aliases": ("zocor",)},
    "pravastatin": {"class": "statin", "tier": "low", "bands": (40, None), "aliases": ("pravachol",)},
    "lovastatin": {"class": "statin", "tier": "low", "bands": (40, None), "aliases": ("mevacor",)},
    "fluvastatin": {"class": "statin", "tier": "low", "bands": (80, None), "aliases": ("lescol",)},
    "pitavastatin": {"class": "statin", "tier": "moderate", "bands": (2, None), "aliases": ("livalo",)},
    "ezetimibe": {"class": "ezetimibe", "aliases": ("ezetrol", "zetia")},
    "evolocumab": {"class": "pcsk9", "aliases": ("repatha",)},
    "alirocumab": {"class": "pcsk9", "aliases": ("praluent",)},
    "inclisiran": {"class": "pcsk9", "aliases": ("leqvio",)},
    "bempedoic_acid": {"class": "other", "agent": "bempedoic_acid", "aliases": ("bempedoic", "nexletol", "nilemdo")},
    "colesevelam": {"class": "other", "agent": "bile_acid_sequestrant", "aliases": ("welchol", "lodalis")},
    "colestipol": {"class": "other", "agent": "bile_acid_sequestrant", "aliases": ("colestid",)},
    "cholestyramine": {"class": "other", "agent": "bile_acid_sequestrant", "aliases": ("questran", "olestyr")},
    "niacin": {"class": "other", "agent": "niacin", "aliases": ("niaspan", "nicotinic_acid")},
    "icosapent_ethyl": {"class": "other", "agent": "omega3", "aliases": ("icosapent", "vascepa")},
    "gemfibrozil": {"class": "other", "agent": "fibrate", "aliases": ("lopid",)},
    "fenofibrate": {"class": "other", "agent": "fibrate", "aliases": ("lipidil", "tricor")},
}


def _norm_name(name: Any) -> str:
    return re.sub(r"[\s\-]+", "_", str(name or "").strip().lower())


class MedicationTaxonomy:
    def __init__(self, entries: Optional[Mapping[str, Mapping[str, Any]]] = None):
        self.entries: Dict[str, Dict[str, Any]] = {}
        for token, spec in (DEFAULT_TAXONOMY if entries is None else entries).items():
            self.entries[_norm_name(token)] = self._checked(token, dict(spec))

        # longest first so "bempedoic_acid" wins over "bempedoic";
        # needles anchor at a word start ("lopid" must not hit "clopidogrel")
        pairs: List[Tuple[str, str]] = []
        for token, spec in self.entries.items():
            pairs.append((token, token))
            pairs.extend((_norm_name(a), token) for a in spec.get("aliases", ()))
        pairs.sort(key=lambda kv: len(kv[0]), reverse=True)
        self._search = [(re.compile(r"(?:^|[_/(,])" + re.escape(needle)), token) for needle, token in pairs if needle]

    @staticmethod
    def _checked(token: str, spec: Dict[str, Any]) -> Dict[str, Any]:
        cls = spec.get("class")
        if cls not in DRUG_CLASSES:
            raise ConfigurationError(f"Taxonomy entry {token!r} has unknown class {cls!r}", {"token": token})
        if cls == "statin" and spec.get("tier") not in TIER_ORDER[1:]:
            raise ConfigurationError(f"Statin {token!r} needs a default tier", {"token": token})
        if cls == "other" and spec.get("agent") not in OTHER_AGENT_REMAINING:
            raise ConfigurationError(f"Agent {token!r} has no LDL effect entry", {"token": token})
        return spec

    def lookup(self, name: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Longest match per drug class, so a combination product yields each of its classes."""
        n = _norm_name(name)
        hits: Dict[str, Tuple[str, Dict[str, Any]]] = {}
        for needle, token in self._search:
            spec = self.entries[token]
            if spec["class"] not in hits and needle.search(n):
                hits[spec["class"]] = (token, spec)
        return list(hits.values())

    def statin_tier(self, name: str, spec: Mapping[str, Any]) -> str:
        n = _norm_name(name)
        bands = spec.get("bands") or (None, None)
        high_capable = bands[1] is not None
        if "_high" in n:
            return "high" if high_capable else "moderate"
        if "_low" in n:
            return "moderate" if high_capable else "low"

        m = _DOSE_RE.search(str(name))
        if m and any(b is not None for b in bands):
            mg = float(m.group(1))
            moderate_min, high_min = bands
            if high_min is not None and mg >= high_min:
                return "high"
            if moderate_min is not None and mg >= moderate_min:
                return "moderate"
            return "low"
        return spec["tier"]


# ----------------------------
# Therapy state
# ----------------------------
@dataclass(frozen=True)
class TherapyState:
    statin_intensity: str = "none"
    has_ezetimibe: bool = False
    has_pcsk9: bool = False
    other_agents: frozenset = field(default_factory=frozenset)
    estimated_ldl_reduction: float = 0.0
    statin_names: Tuple[str, ...] = ()
    unrecognized: Tuple[str, ...] = ()

    @property
    def on_therapy(self) -> bool:
        return self.statin_intensity != "none" or self.has_ezetimibe or self.has_pcsk9 or bool(self.other_agents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "statinIntensity": self.statin_intensity,
            "hasEzetimibe": self.has_ezetimibe,
            "hasPCSK9": self.has_pcsk9,
            "otherAgents": sorted(self.other_agents),
            "estimatedLdlReduction": round(self.estimated_ldl_reduction, 4),
            "statinNames": list(self.statin_names),
            "unrecognized": list(self.unrecognized),
        }


def estimate_ldl_reduction(
    statin_intensity: str = "none",
    has_ezetimibe: bool = False,
    has_pcsk9: bool = False,
    other_agents: Iterable[str] = (),
    taxonomy: Optional[MedicationTaxonomy] = None,
) -> float:
    """
    Sequential remaining-fraction model. `other_agents` are taxonomy tokens
    (e.g. "colesevelam") or effect labels (e.g. "fibrate").
    Always within [0, 0.90].
    """
    tax = taxonomy or _DEFAULT
    remaining = STATIN_REMAINING.get(statin_intensity, 1.0)
    if has_ezetimibe:
        remaining *= EZETIMIBE_REMAINING
    if has_pcsk9:
        remaining *= PCSK9_REMAINING
    for agent in sorted(set(other_agents)):
        spec = tax.entries.get(_norm_name(agent))
        label = spec.get("agent") if spec else agent
        remaining *= OTHER_AGENT_REMAINING.get(label, 1.0)

    reduction = 1.0 - remaining
    return min(max(reduction, 0.0), MAX_LDL_REDUCTION)


def classify_therapy(
    medications: Iterable[str],
    taxonomy: Optional[MedicationTaxonomy] = None,
    trace: Optional[List[Dict[str, Any]]] = None,
) -> TherapyState:
    """Idempotent: the same list always yields the same state. Unknown names are kept aside, never fatal."""
    tax = taxonomy or _DEFAULT
    tier = "none"
    ezetimibe = False
    pcsk9 = False
    others = set()
    statins: List[str] = []
    unknown: List[str] = []

    for raw in medications or ():
        name = str(raw or "").strip()
        if not name:
            continue
        hits = tax.lookup(name)
        if not hits:
            logger.debug("Unrecognized medication name ignored: %s", name)
            unknown.append(name)
            continue
        for token, spec in hits:
            cls = spec["class"]
            if cls == "statin":
                t = tax.statin_tier(name, spec)
                statins.append(name)
                if TIER_ORDER.index(t) > TIER_ORDER.index(tier):
                    tier = t
            elif cls == "ezetimibe":
                ezetimibe = True
            elif cls == "pcsk9":
                pcsk9 = True
            else:
                others.add(token)

    reduction = estimate_ldl_reduction(tier, ezetimibe, pcsk9, others, tax)
    add_trace(
        trace,
        "Therapy_state",
        {"statin": tier, "ezetimibe": ezetimibe, "pcsk9": pcsk9, "other": sorted(others)},
        f"Estimated LDL reduction {round(reduction * 100)}%",
    )
    return TherapyState(
        statin_intensity=tier,
        has_ezetimibe=ezetimibe,
        has_pcsk9=pcsk9,
        other_agents=frozenset(others),
        estimated_ldl_reduction=reduction,
        statin_names=tuple(statins),
        unrecognized=tuple(unknown),
    )


def estimated_baseline_ldl(p: PatientProfile, state: TherapyState) -> Optional[float]:
    """Pre-treatment LDL implied by the current LDL and the modelled reduction."""
    ldl = p.ldl
    if ldl is None:
        return None
    return round(ldl / (1.0 - state.estimated_ldl_reduction), 2)


_DEFAULT = MedicationTaxonomy()
