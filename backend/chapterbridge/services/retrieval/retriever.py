"""Candidate retrieval over stored fingerprints.

Indexes are built lazily per (edition, channel) and cached for the life of
one retriever, i.e. one alignment run.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.fingerprint import fingerprint_crud
from chapterbridge.services.alignment.ordinals import to_ordinal
from chapterbridge.services.retrieval.vector_index import Hit, IndexEntry, VectorIndex

logger = logging.getLogger("uvicorn.error")

CHANNELS = ("summary", "events", "entities")
EVENTS_CHANNEL = "event"


class CandidateRetriever:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._indexes: Dict[Tuple[int, str], VectorIndex] = {}

    async def _index(self, edition_id: int, channel: str) -> VectorIndex:
        key = (edition_id, channel)
        if key in self._indexes:
            return self._indexes[key]

        if channel == EVENTS_CHANNEL:
            rows = await fingerprint_crud.list_events_for_edition(self.db, edition_id)
            entries = [
                IndexEntry(
                    segment_id=row.segment_id,
                    number=to_ordinal(row.segment_number),
                    event_idx=row.event_idx,
                    vector=row.vector or [],
                )
                for row in rows
            ]
        elif channel in CHANNELS:
            rows = await fingerprint_crud.list_segment_for_edition(self.db, edition_id)
            entries = [
                IndexEntry(
                    segment_id=row.segment_id,
                    number=to_ordinal(row.segment_number),
                    event_idx=0,
                    vector=row.channel_vector(channel) or [],
                )
                for row in rows
            ]
        else:
            raise ValueError(f"unknown channel: {channel}")

        index = VectorIndex(entries)
        self._indexes[key] = index
        logger.info("align-index-ready edition=%s channel=%s size=%d", edition_id, channel, len(index))
        return index

    async def search_events(
        self,
        query: Sequence[float],
        target_edition_id: int,
        window_min=None,
        window_max=None,
        k: int = 20,
    ) -> List[Hit]:
        """Nearest target segments by per-event fingerprints."""
        index = await self._index(target_edition_id, EVENTS_CHANNEL)
        return index.search(query, k=k, window_min=window_min, window_max=window_max)

    async def search_channel(
        self,
        channel: str,
        query: Sequence[float],
        target_edition_id: int,
        window_min=None,
        window_max=None,
        k: int = 20,
    ) -> List[Hit]:
        """Nearest target segments by one per-segment channel."""
        index = await self._index(target_edition_id, channel)
        return index.search(query, k=k, window_min=window_min, window_max=window_max)
