"""Event voting matcher.

Each event fingerprint of a source unit votes for its nearest target
segments inside the window around the checkpoint. Votes are averaged per
target ordinal; the leaders within ``epsilon`` of the best average form
gap-tolerant clusters, and the cluster holding the best ordinal becomes the
proposed range.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.fingerprint import fingerprint_crud
from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.models import Segment
from chapterbridge.schemas.evidence import (
    ForwardJumpInfo,
    GuardInfo,
    RangeInfo,
    ReviewSignals,
    VoteEntry,
    VotingEvidence,
)
from chapterbridge.services.alignment.errors import MappingRejected
from chapterbridge.services.alignment.ordinals import format_ordinal, to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import (
    GuardConfig,
    apply_monotonic_guard,
    derive_status,
    forward_jump_penalty,
)
from chapterbridge.services.alignment.ranges import cap_width, cluster_containing, cluster_numbers
from chapterbridge.services.alignment.runner import Checkpoint, detach, load_checkpoint, pending_units, settle_unit
from chapterbridge.services.retrieval.retriever import CandidateRetriever
from chapterbridge.services.retrieval.vector_index import Hit

logger = logging.getLogger("uvicorn.error")

MAX_EVENTS_PER_UNIT = 8


@dataclass
class VotingOptions:
    top_k: int = 20
    window: int = 80
    backtrack: int = 3
    epsilon: float = 0.02
    cluster_gap: int = 2
    max_range_width: int = 15
    max_forward_jump: int = 30
    jump_penalty_per_unit: float = 0.001
    min_confidence: float = 0.4
    review_min_confidence: float = 0.55
    limit: int = 0
    resume: bool = True
    algorithm_version: str = "event-v1"
    guard: GuardConfig = field(default_factory=GuardConfig)


@dataclass
class VoteTally:
    total: float = 0.0
    count: int = 0

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0


@dataclass
class VoteSelection:
    best: Decimal
    top_average: float
    selected: List[Decimal]
    cluster_start: Decimal
    cluster_end: Decimal
    start: Decimal
    end: Decimal
    capped: bool


def tally_votes(hits_per_event: Iterable[Sequence[Hit]]) -> Dict[Decimal, VoteTally]:
    """Sum similarities and count contributing events per target ordinal."""
    tallies: Dict[Decimal, VoteTally] = {}
    for hits in hits_per_event:
        for hit in hits:
            tally = tallies.setdefault(to_ordinal(hit.number), VoteTally())
            tally.total += hit.similarity
            tally.count += 1
    return tallies


def rank_votes(tallies: Dict[Decimal, VoteTally]) -> List[Decimal]:
    return sorted(tallies, key=lambda n: (-round(tallies[n].average, 9), n))


def select_range(
    tallies: Dict[Decimal, VoteTally],
    epsilon: float = 0.02,
    gap: int = 2,
    max_width: int = 15,
) -> Optional[VoteSelection]:
    """Pick the proposed range from vote tallies; ``None`` when there are no votes."""
    if not tallies:
        return None
    ranked = rank_votes(tallies)
    best = ranked[0]
    top = tallies[best].average
    selected = [n for n in ranked if tallies[n].average >= top - epsilon - 1e-9]

    cluster = cluster_containing(cluster_numbers(selected, gap=gap), best)
    start, end, capped = cap_width(cluster.start, cluster.end, max_width)
    return VoteSelection(
        best=best,
        top_average=top,
        selected=sorted(selected),
        cluster_start=cluster.start,
        cluster_end=cluster.end,
        start=start,
        end=end,
        capped=capped,
    )


class VotingAligner:
    def __init__(self, db: AsyncSession, retriever: Optional[CandidateRetriever] = None, options: Optional[VotingOptions] = None) -> None:
        self.db = db
        self.retriever = retriever or CandidateRetriever(db)
        self.options = options or VotingOptions()

    def _window(self, checkpoint: Optional[Decimal]):
        if checkpoint is None:
            return None, None
        return checkpoint - self.options.backtrack, checkpoint + self.options.window

    async def propose(
        self,
        segment: Segment,
        to_edition_id: int,
        checkpoint: Optional[Decimal],
    ) -> ProposedMapping:
        opts = self.options
        fingerprints = (await fingerprint_crud.list_events_for_segment(self.db, segment.id))[:MAX_EVENTS_PER_UNIT]
        if not fingerprints:
            raise MappingRejected("no-event-fingerprints")

        window_min, window_max = self._window(checkpoint)
        hits_per_event = []
        for fp in fingerprints:
            hits_per_event.append(
                await self.retriever.search_events(
                    fp.vector,
                    to_edition_id,
                    window_min=window_min,
                    window_max=window_max,
                    k=opts.top_k,
                )
            )

        tallies = tally_votes(hits_per_event)
        selection = select_range(tallies, opts.epsilon, opts.cluster_gap, opts.max_range_width)
        if selection is None:
            raise MappingRejected("no-candidates")

        jump = forward_jump_penalty(selection.start, checkpoint, opts.max_forward_jump, opts.jump_penalty_per_unit)
        if jump.rejected:
            raise MappingRejected(f"forward-jump jump={jump.jump:g} limit={2 * opts.max_forward_jump}")

        base_confidence = selection.top_average
        guard = apply_monotonic_guard(
            selection.start,
            selection.end,
            base_confidence - jump.penalty,
            checkpoint=checkpoint,
            cfg=opts.guard,
        )
        if guard.confidence < opts.min_confidence:
            raise MappingRejected(f"below-min-confidence conf={guard.confidence:.3f}")

        review = derive_status(
            guard.confidence,
            selection.start,
            selection.end,
            opts.review_min_confidence,
            opts.guard.wide_range_threshold,
        )
        histogram = [
            VoteEntry(number=float(n), votes=tallies[n].count, avg_similarity=round(tallies[n].average, 6))
            for n in rank_votes(tallies)[:10]
        ]
        evidence = VotingEvidence(
            event_count=len(fingerprints),
            vote_histogram=histogram,
            selected_numbers=[float(n) for n in selection.selected],
            cluster_before_cap=RangeInfo(start=float(selection.cluster_start), end=float(selection.cluster_end)),
            cluster_after_cap=RangeInfo(start=float(selection.start), end=float(selection.end)),
            capped=selection.capped,
            base_confidence=round(base_confidence, 6),
            forward_jump=ForwardJumpInfo(**jump.to_evidence()),
            window=RangeInfo(start=float(window_min), end=float(window_max)) if checkpoint is not None else None,
            review=ReviewSignals(**review.to_evidence()),
            guard=GuardInfo(**guard.to_evidence()),
        )
        return ProposedMapping(
            from_segment_id=segment.id,
            from_edition_id=segment.edition_id,
            from_number=segment.number,
            to_edition_id=to_edition_id,
            start=selection.start,
            end=selection.end,
            confidence=guard.confidence,
            algorithm_version=opts.algorithm_version,
            evidence=evidence,
            status=review.status,
        )

    async def run(self, from_edition_id: int, to_edition_id: int) -> RunSummary:
        opts = self.options
        await edition_crud.require(self.db, from_edition_id)
        await edition_crud.require(self.db, to_edition_id)

        summary = RunSummary("event-voting", from_edition_id, to_edition_id)
        checkpoint: Optional[Checkpoint] = None
        if opts.resume:
            checkpoint = await load_checkpoint(self.db, from_edition_id, to_edition_id)
        segments = await segment_crud.list_range(self.db, from_edition_id)
        units = detach(self.db, pending_units(segments, checkpoint, opts.limit))
        anchor = checkpoint.midpoint if checkpoint is not None else None

        logger.info(
            "align-run-start algo=event-voting from_edition=%s to_edition=%s units=%d window=%d backtrack=%d",
            from_edition_id,
            to_edition_id,
            len(units),
            opts.window,
            opts.backtrack,
        )
        for segment in units:
            number = to_ordinal(segment.number)
            current = anchor
            accepted = await settle_unit(
                self.db,
                summary,
                number,
                lambda: self.propose(segment, to_edition_id, current),
            )
            if accepted is not None:
                anchor = Checkpoint.from_proposal(accepted).midpoint
                logger.debug("align-checkpoint algo=event-voting at=%s", format_ordinal(anchor))
        return summary.finish()
