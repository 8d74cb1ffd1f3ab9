"""Similarity-to-score combination for the multi-channel matcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

TIME_CONTEXTS = ("present", "flashback", "future", "unknown")
_STRONG_CONTEXTS = {"present", "flashback", "future"}


@dataclass
class ScoreWeights:
    summary: float = 0.6
    events: float = 0.4
    narrative: float = 0.8
    entities: float = 0.2


def compute_final_score(
    sim_summary: float,
    sim_events: float,
    sim_entities: float,
    weights: Optional[ScoreWeights] = None,
) -> float:
    """``narrative * (summary*w_s + events*w_e) + entities*w_ent``."""
    w = weights or ScoreWeights()
    narrative = w.summary * sim_summary + w.events * sim_events
    return w.narrative * narrative + w.entities * sim_entities


def normalize_time_context(value: Optional[str]) -> str:
    ctx = (value or "").strip().lower()
    return ctx if ctx in TIME_CONTEXTS else "unknown"


def apply_time_context_adjustment(score: float, from_ctx: Optional[str], to_ctx: Optional[str]) -> float:
    """Small bonus for matching time contexts, small penalty for a clear mismatch."""
    a = normalize_time_context(from_ctx)
    b = normalize_time_context(to_ctx)
    if a == b and a != "unknown":
        return score + 0.02
    if a in _STRONG_CONTEXTS and b in _STRONG_CONTEXTS and a != b:
        return score - 0.03
    return score


def _names(items: Iterable) -> Set[str]:
    names: Set[str] = set()
    for item in items or []:
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            name = item.get("name") or item.get("term") or ""
        else:
            continue
        name = str(name).strip().lower()
        if name:
            names.add(name)
    return names


def compute_entity_overlap(from_entities: Dict[str, list], to_entities: Dict[str, list]) -> Dict[str, List[str]]:
    """Case-insensitive shared names per entity kind."""
    overlap: Dict[str, List[str]] = {}
    for kind in ("characters", "locations", "keywords"):
        shared = _names(from_entities.get(kind, [])) & _names(to_entities.get(kind, []))
        overlap[kind] = sorted(shared)
    return overlap
