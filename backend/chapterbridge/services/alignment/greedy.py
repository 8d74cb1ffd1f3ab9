"""Greedy sequential event matcher.

Strictly forward: each unit searches ``[last_end, last_end + search_window]``
and never behind. Units whose start leaps too far past the previous
accepted range (relative to how many source units were advanced) are
skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.fingerprint import fingerprint_crud
from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.models import Segment
from chapterbridge.schemas.evidence import GreedyEvidence, GuardInfo, RangeInfo, ReviewSignals, ScoredCandidate
from chapterbridge.services.alignment.errors import MappingRejected, SegmentNotFoundError
from chapterbridge.services.alignment.ordinals import format_ordinal, to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import GuardConfig, apply_monotonic_guard, derive_status
from chapterbridge.services.alignment.ranges import cap_width, cluster_numbers
from chapterbridge.services.alignment.runner import Checkpoint, detach, load_checkpoint, pending_units, settle_unit
from chapterbridge.services.retrieval.retriever import CandidateRetriever

logger = logging.getLogger("uvicorn.error")

MAX_EVENTS_PER_UNIT = 8


@dataclass
class GreedyOptions:
    similarity_threshold: float = 0.3
    min_event_matches: int = 1
    per_event_k: int = 5
    search_window: int = 30
    cluster_gap: int = 2
    max_range_width: int = 10
    max_per_unit_jump: int = 8
    review_min_confidence: float = 0.55
    limit: int = 0
    resume: bool = True
    algorithm_version: str = "greedy-event-v1"


@dataclass
class EventMatch:
    event_idx: int
    number: Decimal
    similarity: float


class GreedyAligner:
    def __init__(self, db: AsyncSession, retriever: Optional[CandidateRetriever] = None, options: Optional[GreedyOptions] = None) -> None:
        self.db = db
        self.retriever = retriever or CandidateRetriever(db)
        self.options = options or GreedyOptions()
        self.guard = GuardConfig(wide_range_threshold=20)

    async def _matches(self, segment: Segment, to_edition_id: int, window_start: Decimal, window_end: Decimal) -> List[EventMatch]:
        opts = self.options
        fingerprints = (await fingerprint_crud.list_events_for_segment(self.db, segment.id))[:MAX_EVENTS_PER_UNIT]
        if not fingerprints:
            raise MappingRejected("no-event-fingerprints")
        matches: List[EventMatch] = []
        for fp in fingerprints:
            hits = await self.retriever.search_events(
                fp.vector,
                to_edition_id,
                window_min=window_start,
                window_max=window_end,
                k=opts.per_event_k,
            )
            matches.extend(
                EventMatch(event_idx=fp.event_idx, number=h.number, similarity=h.similarity)
                for h in hits
                if h.similarity >= opts.similarity_threshold
            )
        return matches

    async def propose(
        self,
        segment: Segment,
        to_edition_id: int,
        last_end: Decimal,
        previous: Optional[Checkpoint],
    ) -> ProposedMapping:
        opts = self.options
        window_start, window_end = last_end, last_end + opts.search_window
        matches = await self._matches(segment, to_edition_id, window_start, window_end)
        if len(matches) < max(1, opts.min_event_matches):
            raise MappingRejected(f"insufficient-matches matches={len(matches)} min={opts.min_event_matches}")

        votes: Dict[Decimal, float] = {}
        for m in matches:
            votes[m.number] = votes.get(m.number, 0.0) + 1
        clusters = cluster_numbers(votes.keys(), gap=opts.cluster_gap, weights=votes)
        # 权重相同取编号更小的簇
        best = max(clusters, key=lambda c: (c.weight, -c.start))
        start, end, capped = cap_width(best.start, best.end, opts.max_range_width, floor=last_end)

        in_range = [m for m in matches if start <= m.number <= end]
        if not in_range:
            raise MappingRejected("empty-range-after-cap")
        confidence = sum(m.similarity for m in in_range) / len(in_range)

        units_advanced = Decimal(1)
        jump = Decimal(0)
        if previous is not None:
            units_advanced = to_ordinal(segment.number) - previous.from_number
            jump = start - previous.to_end
            limit = units_advanced * opts.max_per_unit_jump
            if jump > limit:
                raise MappingRejected(
                    f"progression-jump jump={format_ordinal(jump)} limit={format_ordinal(limit)}"
                )

        guard = apply_monotonic_guard(
            start,
            end,
            confidence,
            checkpoint=previous.to_end if previous is not None else None,
            cfg=self.guard,
        )
        review = derive_status(guard.confidence, start, end, opts.review_min_confidence, self.guard.wide_range_threshold)

        histogram = {format_ordinal(n): int(c) for n, c in sorted(votes.items())}
        best_by_number: Dict[Decimal, float] = {}
        for m in matches:
            best_by_number[m.number] = max(best_by_number.get(m.number, 0.0), m.similarity)
        top = sorted(best_by_number.items(), key=lambda item: (-item[1], item[0]))[:10]

        evidence = GreedyEvidence(
            matched_events=len(in_range),
            histogram=histogram,
            top_numbers=[ScoredCandidate(number=float(n), score=round(s, 6)) for n, s in top],
            cluster_before_cap=RangeInfo(start=float(best.start), end=float(best.end)),
            cluster_after_cap=RangeInfo(start=float(start), end=float(end)),
            capped=capped,
            units_advanced=float(units_advanced),
            jump_from_previous=float(jump),
            window=RangeInfo(start=float(window_start), end=float(window_end)),
            review=ReviewSignals(**review.to_evidence()),
            guard=GuardInfo(**guard.to_evidence()),
        )
        return ProposedMapping(
            from_segment_id=segment.id,
            from_edition_id=segment.edition_id,
            from_number=segment.number,
            to_edition_id=to_edition_id,
            start=start,
            end=end,
            confidence=guard.confidence,
            algorithm_version=opts.algorithm_version,
            evidence=evidence,
            status=review.status,
        )

    async def run(self, from_edition_id: int, to_edition_id: int) -> RunSummary:
        opts = self.options
        await edition_crud.require(self.db, from_edition_id)
        await edition_crud.require(self.db, to_edition_id)
        bounds = await edition_crud.bounds(self.db, to_edition_id)
        if bounds is None:
            raise SegmentNotFoundError(f"target edition {to_edition_id} has no segments")

        summary = RunSummary("greedy-event", from_edition_id, to_edition_id)
        previous: Optional[Checkpoint] = None
        if opts.resume:
            previous = await load_checkpoint(self.db, from_edition_id, to_edition_id)
        last_end = previous.to_end if previous is not None else bounds[0]

        segments = await segment_crud.list_range(self.db, from_edition_id)
        units = detach(self.db, pending_units(segments, previous, opts.limit))
        logger.info(
            "align-run-start algo=greedy-event from_edition=%s to_edition=%s units=%d search_window=%d",
            from_edition_id,
            to_edition_id,
            len(units),
            opts.search_window,
        )
        for segment in units:
            current_end, current_prev = last_end, previous
            accepted = await settle_unit(
                self.db,
                summary,
                to_ordinal(segment.number),
                lambda: self.propose(segment, to_edition_id, current_end, current_prev),
            )
            if accepted is not None:
                previous = Checkpoint.from_proposal(accepted)
                last_end = accepted.end
        return summary.finish()
