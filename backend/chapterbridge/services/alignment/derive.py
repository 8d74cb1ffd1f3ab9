"""Cross-media derivation through a pivot edition.

Given X -> P and Y -> P mappings, every X unit is related to the Y units
whose pivot ranges overlap its own. The derived confidence of a pair is
``conf(a) * conf(b) * overlap_ratio``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.crud.segment import edition_crud
from chapterbridge.models import SegmentMapping
from chapterbridge.schemas.evidence import DeriveEvidence, GuardInfo, PivotPair, RangeInfo, ReviewSignals
from chapterbridge.services.alignment.errors import MappingRejected
from chapterbridge.services.alignment.ordinals import to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import GuardConfig, apply_monotonic_guard, derive_status
from chapterbridge.services.alignment.ranges import clamp, contiguous_span, overlap_length, overlap_ratio
from chapterbridge.services.alignment.runner import settle_unit

logger = logging.getLogger("uvicorn.error")


@dataclass
class DeriveOptions:
    epsilon: float = 0.05
    cluster_gap: int = 2
    review_min_confidence: float = 0.55
    limit: int = 0
    algorithm_version: str = "derived-v1"


@dataclass(frozen=True)
class PivotMapping:
    """Edition -> pivot mapping, detached from the ORM row."""

    segment_id: int
    edition_id: int
    number: Decimal
    pivot_start: Decimal
    pivot_end: Decimal
    confidence: float

    @classmethod
    def from_row(cls, row: SegmentMapping) -> "PivotMapping":
        return cls(
            segment_id=row.from_segment_id,
            edition_id=row.from_edition_id,
            number=to_ordinal(row.segment_number),
            pivot_start=to_ordinal(row.to_segment_start),
            pivot_end=to_ordinal(row.to_segment_end),
            confidence=float(row.confidence),
        )


@dataclass
class PairScore:
    target: PivotMapping
    overlap_len: Decimal
    overlap_ratio: float
    derived: float


@dataclass
class Derivation:
    start: Decimal
    end: Decimal
    best: PairScore
    kept: List[PairScore]


def score_pairs(source: PivotMapping, targets: Sequence[PivotMapping]) -> List[PairScore]:
    """Overlapping pairs ranked by derived confidence, ties by target ordinal."""
    pairs = []
    for target in targets:
        length = overlap_length(source.pivot_start, source.pivot_end, target.pivot_start, target.pivot_end)
        if length <= 0:
            continue
        ratio = overlap_ratio(source.pivot_start, source.pivot_end, target.pivot_start, target.pivot_end)
        derived = clamp(source.confidence * target.confidence * ratio)
        pairs.append(PairScore(target=target, overlap_len=length, overlap_ratio=ratio, derived=derived))
    pairs.sort(key=lambda p: (-round(p.derived, 9), p.target.number))
    return pairs


def derive_range(
    source: PivotMapping,
    targets: Sequence[PivotMapping],
    epsilon: float = 0.05,
    gap: int = 2,
) -> Optional[Derivation]:
    pairs = score_pairs(source, targets)
    if not pairs:
        return None
    best = pairs[0]
    kept = [p for p in pairs if p.derived >= best.derived - epsilon - 1e-9]
    start, end = contiguous_span([p.target.number for p in kept], gap=gap)
    return Derivation(start=start, end=end, best=best, kept=kept)


class DeriveAligner:
    def __init__(self, db: AsyncSession, options: Optional[DeriveOptions] = None) -> None:
        self.db = db
        self.options = options or DeriveOptions()
        self.guard = GuardConfig()

    def propose(self, source: PivotMapping, targets: Sequence[PivotMapping], to_edition_id: int, pivot_edition_id: int) -> ProposedMapping:
        opts = self.options
        derivation = derive_range(source, targets, opts.epsilon, opts.cluster_gap)
        if derivation is None:
            raise MappingRejected("no-pivot-overlap")

        best = derivation.best
        guard = apply_monotonic_guard(derivation.start, derivation.end, best.derived, checkpoint=None, cfg=self.guard)
        review = derive_status(
            guard.confidence,
            derivation.start,
            derivation.end,
            opts.review_min_confidence,
            self.guard.wide_range_threshold,
        )
        evidence = DeriveEvidence(
            pivot_edition_id=pivot_edition_id,
            source_to_pivot=RangeInfo(start=float(source.pivot_start), end=float(source.pivot_end)),
            chosen_target_to_pivot=RangeInfo(start=float(best.target.pivot_start), end=float(best.target.pivot_end)),
            overlap_len=float(best.overlap_len),
            overlap_ratio=round(best.overlap_ratio, 6),
            conf_source=source.confidence,
            conf_target=best.target.confidence,
            derived_conf=round(best.derived, 6),
            kept_pairs=[
                PivotPair(
                    target_number=float(p.target.number),
                    pivot_range=RangeInfo(start=float(p.target.pivot_start), end=float(p.target.pivot_end)),
                    confidence=p.target.confidence,
                    overlap_len=float(p.overlap_len),
                    overlap_ratio=round(p.overlap_ratio, 6),
                    derived_confidence=round(p.derived, 6),
                )
                for p in derivation.kept
            ],
            review=ReviewSignals(**review.to_evidence()),
            guard=GuardInfo(**guard.to_evidence()),
        )
        return ProposedMapping(
            from_segment_id=source.segment_id,
            from_edition_id=source.edition_id,
            from_number=source.number,
            to_edition_id=to_edition_id,
            start=derivation.start,
            end=derivation.end,
            confidence=guard.confidence,
            algorithm_version=opts.algorithm_version,
            evidence=evidence,
            status=review.status,
        )

    async def run(self, from_edition_id: int, to_edition_id: int, pivot_edition_id: int) -> RunSummary:
        opts = self.options
        for edition_id in (from_edition_id, to_edition_id, pivot_edition_id):
            await edition_crud.require(self.db, edition_id)

        sources = [PivotMapping.from_row(r) for r in await mapping_crud.list_for_pair(self.db, from_edition_id, pivot_edition_id)]
        targets = [PivotMapping.from_row(r) for r in await mapping_crud.list_for_pair(self.db, to_edition_id, pivot_edition_id)]
        if opts.limit:
            sources = sources[: opts.limit]

        summary = RunSummary("derive", from_edition_id, to_edition_id)
        logger.info(
            "align-run-start algo=derive from_edition=%s to_edition=%s pivot=%s sources=%d targets=%d",
            from_edition_id,
            to_edition_id,
            pivot_edition_id,
            len(sources),
            len(targets),
        )
        for source in sources:
            await settle_unit(
                self.db,
                summary,
                source.number,
                lambda: self._propose_async(source, targets, to_edition_id, pivot_edition_id),
            )
        return summary.finish()

    async def _propose_async(self, source, targets, to_edition_id, pivot_edition_id) -> ProposedMapping:
        return self.propose(source, targets, to_edition_id, pivot_edition_id)
