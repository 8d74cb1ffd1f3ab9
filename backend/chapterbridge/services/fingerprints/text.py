"""Text builders feeding the embedding channels."""

from __future__ import annotations

from typing import Iterable, List, Optional
import re

MAX_EVENTS_PER_SEGMENT = 8
MAX_ENTITY_ITEMS = 50

_WS_RE = re.compile(r"\s+")


def clean_text(value) -> str:
    return _WS_RE.sub(" ", str(value or "")).strip()


def parse_events(raw: Iterable) -> List[str]:
    """Event strings from ``["...", {"text": ...}, {"description": ...}]``, trimmed and deduplicated."""
    events: List[str] = []
    seen = set()
    for item in raw or []:
        if isinstance(item, str):
            text = item
        elif isinstance(item, dict):
            text = item.get("text") or item.get("description") or ""
        else:
            continue
        text = clean_text(text)
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        events.append(text)
    return events


def build_summary_text(summary_short: Optional[str], summary: Optional[str]) -> str:
    parts = [clean_text(p) for p in (summary_short, summary)]
    return "\n".join(p for p in parts if p)


def build_events_text(events: Iterable) -> str:
    return "\n".join(f"{i}) {text}" for i, text in enumerate(parse_events(events), start=1))


def _entity_names(items: Iterable) -> List[str]:
    names: List[str] = []
    for item in items or []:
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            name = item.get("name") or item.get("term") or ""
        else:
            continue
        name = clean_text(name)
        if name:
            names.append(name)
    return names


def build_entities_text(characters, locations, keywords, max_items: int = MAX_ENTITY_ITEMS) -> str:
    """``CHARS:`` / ``LOCS:`` / ``KEY:`` lines, trimmed proportionally to ``max_items`` names."""
    groups = [
        ("CHARS", _entity_names(characters)),
        ("LOCS", _entity_names(locations)),
        ("KEY", _entity_names(keywords)),
    ]
    total = sum(len(names) for _, names in groups)
    if total > max_items:
        groups = [
            (label, names[: max(1, (len(names) * max_items) // total)] if names else names)
            for label, names in groups
        ]
    lines = [f"{label}: {', '.join(names)}" for label, names in groups if names]
    return "\n".join(lines)
