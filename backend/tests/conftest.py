"""Shared fixtures: in-memory database, seeded editions, scripted LLM."""

import asyncio
import json
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pytest

from chapterbridge.config import Settings
from chapterbridge.context import open_context
from chapterbridge.models import Edition, Segment, SegmentEventFingerprint, SegmentFingerprint
from chapterbridge.schemas.evidence import MatchingAllEvidence, RangeInfo
from chapterbridge.services.alignment.outcome import ProposedMapping
from chapterbridge.utils.openai_helper import StructuredCompletionClient

DIM = 64


def one_hot(slot: int, dim: int = DIM, weight: float = 1.0) -> List[float]:
    vector = [0.0] * dim
    vector[slot % dim] = weight
    return vector


def blend(slots: Dict[int, float], dim: int = DIM) -> List[float]:
    vector = [0.0] * dim
    for slot, weight in slots.items():
        vector[slot % dim] += weight
    return vector


class FakeLLM(StructuredCompletionClient):
    """Returns scripted raw responses in order and records every message list."""

    def __init__(self, responses: Iterable):
        super().__init__(api_key="test-key", base_url="", model="fake-model")
        self.responses = [r if isinstance(r, str) else json.dumps(r) for r in responses]
        self.calls: List[List[dict]] = []

    async def _request(self, messages):
        self.calls.append(messages)
        if not self.responses:
            raise AssertionError("FakeLLM ran out of scripted responses")
        return self.responses.pop(0)


@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        OPENAI_API_KEY="",
        EMBEDDING_API_KEY="",
    )


def run_with_db(coro_fn, settings: Settings, llm=None, embedder=None):
    """Run ``coro_fn(ctx)`` against a fresh in-memory database."""

    async def runner():
        async with open_context(settings, llm=llm, embedder=embedder) as ctx:
            return await coro_fn(ctx)

    return asyncio.run(runner())


async def add_edition(db, title: str, media_type: str) -> int:
    edition = Edition(title=title, media_type=media_type)
    db.add(edition)
    await db.commit()
    return edition.id


async def add_segments(db, edition_id: int, rows: Iterable[dict]) -> Dict[Decimal, int]:
    """Insert segments; each row holds ``number`` plus optional text fields."""
    ids: Dict[Decimal, int] = {}
    for row in rows:
        segment = Segment(
            edition_id=edition_id,
            number=Decimal(str(row["number"])),
            title=row.get("title"),
            events=json.dumps(row.get("events", []), ensure_ascii=False),
            summary=row.get("summary"),
            summary_short=row.get("summary_short"),
            characters=json.dumps(row.get("characters", []), ensure_ascii=False),
            locations=json.dumps(row.get("locations", []), ensure_ascii=False),
            keywords=json.dumps(row.get("keywords", []), ensure_ascii=False),
            time_context=row.get("time_context"),
        )
        db.add(segment)
        await db.flush()
        ids[Decimal(str(row["number"]))] = segment.id
    await db.commit()
    return ids


async def add_event_vectors(db, edition_id: int, segment_ids: Dict[Decimal, int], vectors: Dict, dim: int = DIM):
    """``vectors``: number -> list of event vectors."""
    for number, event_vectors in vectors.items():
        number = Decimal(str(number))
        for idx, vector in enumerate(event_vectors):
            db.add(
                SegmentEventFingerprint(
                    segment_id=segment_ids[number],
                    edition_id=edition_id,
                    segment_number=number,
                    event_idx=idx,
                    event_text=f"event {number}-{idx}",
                    embedding=json.dumps(vector),
                    embed_model="test-embed",
                    embed_dim=dim,
                )
            )
    await db.commit()


def incremental_response(from_number, to_start, to_end, confidence=0.8, needs_wider_window=False) -> dict:
    return {
        "mode": "incremental",
        "result": {
            "from_number": from_number,
            "to_start": to_start,
            "to_end": to_end,
            "confidence": confidence,
            "anchor_chapters": [to_start],
            "matched_phrases": ["rainy night"],
            "needs_wider_window": needs_wider_window,
        },
    }


def batch_response(mappings: List[dict], uncertain: Optional[List] = None) -> dict:
    return {
        "mode": "matching_all",
        "mappings": mappings,
        "notes": {"global_confidence": 0.7, "uncertain_from_numbers": uncertain or []},
    }


def stub_evidence(start=1, end=1) -> MatchingAllEvidence:
    return MatchingAllEvidence(
        model="test-model",
        from_range=RangeInfo(start=start, end=end),
        target_range=RangeInfo(start=start, end=end),
    )


def proposal(segment_id, edition_id, number, to_edition_id, start, end, confidence=0.8, algo="test-v1"):
    return ProposedMapping(
        from_segment_id=segment_id,
        from_edition_id=edition_id,
        from_number=number,
        to_edition_id=to_edition_id,
        start=start,
        end=end,
        confidence=confidence,
        algorithm_version=algo,
        evidence=stub_evidence(start, end),
    )


async def add_channel_vectors(db, edition_id: int, segment_ids: Dict[Decimal, int], vectors: Dict, dim: int = DIM):
    """``vectors``: number -> {channel: vector}."""
    for number, channels in vectors.items():
        number = Decimal(str(number))
        db.add(
            SegmentFingerprint(
                segment_id=segment_ids[number],
                edition_id=edition_id,
                segment_number=number,
                embedding_summary=json.dumps(channels["summary"]) if "summary" in channels else None,
                embedding_events=json.dumps(channels["events"]) if "events" in channels else None,
                embedding_entities=json.dumps(channels["entities"]) if "entities" in channels else None,
                embed_model="test-embed",
                embed_dim=dim,
            )
        )
    await db.commit()
