"""In-memory cosine index over fingerprints of one target edition."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

import numpy as np

from chapterbridge.services.alignment.ordinals import to_ordinal


@dataclass(frozen=True)
class IndexEntry:
    segment_id: int
    number: Decimal
    event_idx: int
    vector: Sequence[float]


@dataclass(frozen=True)
class Hit:
    segment_id: int
    number: Decimal
    similarity: float
    event_idx: int = 0


class VectorIndex:
    """Cosine nearest-neighbour search with an optional inclusive number window.

    Results hold at most one hit per target segment (its best-scoring
    vector), ordered by similarity descending; ties break on ascending
    ordinal, then event index.
    """

    def __init__(self, entries: Sequence[IndexEntry]) -> None:
        self.entries = [e for e in entries if e.vector]
        self.numbers = np.asarray([float(e.number) for e in self.entries], dtype=np.float64)
        if self.entries:
            matrix = np.asarray([list(e.vector) for e in self.entries], dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms <= 0] = 1.0
            self.matrix = matrix / norms
        else:
            self.matrix = np.zeros((0, 0), dtype=np.float32)

    def __len__(self) -> int:
        return len(self.entries)

    def search(
        self,
        query: Sequence[float],
        k: int = 20,
        window_min=None,
        window_max=None,
    ) -> List[Hit]:
        if not self.entries or not query or k < 1:
            return []

        q = np.asarray(query, dtype=np.float32)
        if q.shape[0] != self.matrix.shape[1]:
            raise ValueError(f"query dim {q.shape[0]} != index dim {self.matrix.shape[1]}")
        norm = np.linalg.norm(q)
        if norm <= 0:
            return []

        mask = np.ones(len(self.entries), dtype=bool)
        if window_min is not None:
            mask &= self.numbers >= float(to_ordinal(window_min))
        if window_max is not None:
            mask &= self.numbers <= float(to_ordinal(window_max))
        candidates = np.flatnonzero(mask)
        if candidates.size == 0:
            return []

        sims = self.matrix[candidates] @ (q / norm)
        sims = np.clip(sims, 0.0, 1.0)

        best: dict = {}
        for pos, sim in zip(candidates.tolist(), sims.tolist()):
            entry = self.entries[pos]
            # float32 noise would break ties between identical vectors
            score = round(float(sim), 6)
            current = best.get(entry.segment_id)
            if current is None or (score, -entry.event_idx) > (current.similarity, -current.event_idx):
                best[entry.segment_id] = Hit(
                    segment_id=entry.segment_id,
                    number=entry.number,
                    similarity=score,
                    event_idx=entry.event_idx,
                )

        ranked = sorted(best.values(), key=lambda h: (-h.similarity, h.number, h.event_idx))
        return ranked[: int(k)]
