"""Compact single-line digests of segments for LLM prompts."""

from __future__ import annotations

from typing import List, Optional
import re

from chapterbridge.models import Segment
from chapterbridge.services.alignment.ordinals import format_ordinal
from chapterbridge.services.fingerprints.text import clean_text

MAX_EVENTS = 6
MAX_EVENT_LENGTH = 140
NO_EVENTS = "[no events]"

_FIRST_SENTENCE_RE = re.compile(r"^[^.!?]+[.!?]")


def _truncate(text: str, limit: int = MAX_EVENT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _first_sentence(summary: str) -> str:
    match = _FIRST_SENTENCE_RE.match(summary)
    if match:
        return match.group(0)
    return summary[:200]


def digest_events(events: List, summary_short: Optional[str] = None, summary: Optional[str] = None) -> List[str]:
    """Up to six cleaned, deduplicated event strings, falling back to the summaries."""
    raw: List[str] = []
    for item in events or []:
        if isinstance(item, str):
            raw.append(item)
        elif isinstance(item, dict):
            raw.append(item.get("text") or item.get("description") or "")
    if not any(clean_text(r) for r in raw):
        if clean_text(summary_short):
            raw = [summary_short]
        elif clean_text(summary):
            raw = [_first_sentence(clean_text(summary))]

    result: List[str] = []
    seen = set()
    for item in raw:
        text = clean_text(item)
        key = text.lower()
        if not text or key in seen:
            continue
        seen.add(key)
        result.append(_truncate(text))
        if len(result) >= MAX_EVENTS:
            break
    return result


def format_segment_line(segment: Segment, media_type: str) -> str:
    """``ep:12 | event; event`` for anime, ``ch:12 | ...`` otherwise."""
    prefix = "ep" if media_type == "anime" else "ch"
    events = digest_events(segment.events_list, segment.summary_short, segment.summary)
    body = "; ".join(events) if events else NO_EVENTS
    return f"{prefix}:{format_ordinal(segment.number)} | {body}"
