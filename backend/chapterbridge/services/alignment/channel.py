"""Multi-channel monotonic matcher.

Uses the per-segment summary / events / entities fingerprints. Channel
similarities are blended with :func:`compute_final_score`, nudged by time
context, and the best-scoring gap-tolerant cluster becomes the range.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.fingerprint import fingerprint_crud
from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.models import Segment
from chapterbridge.schemas.evidence import (
    ChannelEvidence,
    ChannelScores,
    GuardInfo,
    RangeInfo,
    ReviewSignals,
    ScoredCandidate,
)
from chapterbridge.services.alignment.errors import MappingRejected
from chapterbridge.services.alignment.ordinals import to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import GuardConfig, apply_monotonic_guard, derive_status
from chapterbridge.services.alignment.ranges import cap_width, cluster_containing, cluster_numbers
from chapterbridge.services.alignment.runner import Checkpoint, detach, load_checkpoint, pending_units, settle_unit
from chapterbridge.services.alignment.scoring import (
    ScoreWeights,
    apply_time_context_adjustment,
    compute_entity_overlap,
    compute_final_score,
    normalize_time_context,
)
from chapterbridge.services.retrieval.retriever import CHANNELS, CandidateRetriever

logger = logging.getLogger("uvicorn.error")


@dataclass
class ChannelOptions:
    top_k: int = 20
    window: int = 80
    backtrack: int = 3
    epsilon: float = 0.02
    cluster_gap: int = 2
    max_range_width: int = 15
    min_confidence: float = 0.4
    review_min_confidence: float = 0.55
    limit: int = 0
    resume: bool = True
    algorithm_version: str = "llm-gpt4.1-events-v1-align"
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    guard: GuardConfig = field(default_factory=GuardConfig)


@dataclass
class ChannelCandidate:
    segment_id: int
    number: Decimal
    sims: Dict[str, float] = field(default_factory=dict)
    score: float = 0.0


def _entities(segment: Segment) -> dict:
    return {
        "characters": segment.characters_list,
        "locations": segment.locations_list,
        "keywords": segment.keywords_list,
    }


class ChannelAligner:
    def __init__(self, db: AsyncSession, retriever: Optional[CandidateRetriever] = None, options: Optional[ChannelOptions] = None) -> None:
        self.db = db
        self.retriever = retriever or CandidateRetriever(db)
        self.options = options or ChannelOptions()

    async def propose(self, segment: Segment, to_edition_id: int, checkpoint: Optional[Decimal]) -> ProposedMapping:
        opts = self.options
        fp = await fingerprint_crud.get_segment(self.db, segment.id)
        if fp is None:
            raise MappingRejected("no-fingerprint")

        window_min = window_max = None
        if checkpoint is not None:
            window_min, window_max = checkpoint - opts.backtrack, checkpoint + opts.window

        candidates: Dict[int, ChannelCandidate] = {}
        for channel in CHANNELS:
            vector = fp.channel_vector(channel)
            if not vector:
                continue
            hits = await self.retriever.search_channel(
                channel,
                vector,
                to_edition_id,
                window_min=window_min,
                window_max=window_max,
                k=opts.top_k,
            )
            for hit in hits:
                cand = candidates.setdefault(hit.segment_id, ChannelCandidate(hit.segment_id, to_ordinal(hit.number)))
                cand.sims[channel] = hit.similarity
        if not candidates:
            raise MappingRejected("no-candidates")

        targets = await segment_crud.get_many(self.db, list(candidates))
        for cand in candidates.values():
            score = compute_final_score(
                cand.sims.get("summary", 0.0),
                cand.sims.get("events", 0.0),
                cand.sims.get("entities", 0.0),
                opts.weights,
            )
            target = targets.get(cand.segment_id)
            if target is not None:
                score = apply_time_context_adjustment(score, segment.time_context, target.time_context)
            cand.score = round(score, 6)

        ranked: List[ChannelCandidate] = sorted(candidates.values(), key=lambda c: (-c.score, c.number))
        best = ranked[0]
        selected = [c.number for c in ranked if c.score >= best.score - opts.epsilon - 1e-9]
        cluster = cluster_containing(cluster_numbers(selected, gap=opts.cluster_gap), best.number)
        start, end, _ = cap_width(cluster.start, cluster.end, opts.max_range_width)

        guard = apply_monotonic_guard(start, end, best.score, checkpoint=checkpoint, cfg=opts.guard)
        if guard.confidence < opts.min_confidence:
            raise MappingRejected(f"below-min-confidence conf={guard.confidence:.3f}")
        review = derive_status(guard.confidence, start, end, opts.review_min_confidence, opts.guard.wide_range_threshold)

        best_target = targets.get(best.segment_id)
        evidence = ChannelEvidence(
            scores=ChannelScores(
                summary=best.sims.get("summary", 0.0),
                events=best.sims.get("events", 0.0),
                entities=best.sims.get("entities", 0.0),
                final=best.score,
            ),
            time_context={
                "from": normalize_time_context(segment.time_context),
                "to": normalize_time_context(best_target.time_context if best_target else None),
            },
            entity_overlap=compute_entity_overlap(_entities(segment), _entities(best_target)) if best_target else {},
            top_candidates=[ScoredCandidate(number=float(c.number), score=c.score) for c in ranked[:5]],
            window=RangeInfo(start=float(window_min), end=float(window_max)) if checkpoint is not None else None,
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

        summary = RunSummary("channel-align", from_edition_id, to_edition_id)
        checkpoint: Optional[Checkpoint] = None
        if opts.resume:
            checkpoint = await load_checkpoint(self.db, from_edition_id, to_edition_id)
        segments = await segment_crud.list_range(self.db, from_edition_id)
        units = detach(self.db, pending_units(segments, checkpoint, opts.limit))
        anchor = checkpoint.midpoint if checkpoint is not None else None

        logger.info(
            "align-run-start algo=channel-align from_edition=%s to_edition=%s units=%d window=%d backtrack=%d",
            from_edition_id,
            to_edition_id,
            len(units),
            opts.window,
            opts.backtrack,
        )
        for segment in units:
            current = anchor
            accepted = await settle_unit(
                self.db,
                summary,
                to_ordinal(segment.number),
                lambda: self.propose(segment, to_edition_id, current),
            )
            if accepted is not None:
                anchor = Checkpoint.from_proposal(accepted).midpoint
        return summary.finish()
