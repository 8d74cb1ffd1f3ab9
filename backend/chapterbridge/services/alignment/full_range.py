"""Full-range LLM matcher.

One structured request aligns an explicit source range against an explicit
target range. Per-mapping persistence failures can be retried through a
single-unit fallback request around an estimated window, with an extra
confidence penalty and a distinct algorithm tag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.models import Segment
from chapterbridge.schemas.evidence import (
    FallbackEvidence,
    GuardInfo,
    MatchingAllEvidence,
    RangeInfo,
    ReviewSignals,
)
from chapterbridge.schemas.llm import BatchMapping, FallbackResponse, MatchingAllResponse
from chapterbridge.services.alignment.digest import format_segment_line
from chapterbridge.services.alignment.errors import AlignmentError, SegmentNotFoundError
from chapterbridge.services.alignment.ordinals import format_ordinal, to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import (
    GuardConfig,
    adjust_confidence_for_range,
    apply_monotonic_guard,
    derive_status,
)
from chapterbridge.services.alignment.prompts import (
    FALLBACK_SYSTEM_PROMPT,
    build_fallback_prompt,
    build_matching_all_prompt,
    matching_all_system_prompt,
)
from chapterbridge.services.alignment.runner import UNIT_ERRORS, describe_error, detach
from chapterbridge.services.alignment.windowing import Window
from chapterbridge.utils.openai_helper import LLMSchemaError, LLMServiceError, StructuredCompletionClient

logger = logging.getLogger("uvicorn.error")


@dataclass
class FullRangeOptions:
    backtrack: int = 3
    max_corrections: int = 1
    review_min_confidence: float = 0.55
    enable_fallback: bool = False
    fallback_window_size: int = 40
    fallback_penalty: float = 0.6
    concurrency: int = 2
    algorithm_version: str = "llm-gpt4.1-events-v1-all"
    fallback_algorithm_version: str = "llm-gpt4.1-events-v1-all-fallback"
    guard: GuardConfig = field(default_factory=GuardConfig)


@dataclass
class FallbackJob:
    segment: Segment
    from_line: str
    error: str


def fallback_window(from_number, source_range: Window, target_range: Window, size: int) -> Window:
    """Window of ``size`` centred on the unit's proportional position in the target range."""
    number = to_ordinal(from_number)
    span = source_range.end - source_range.start
    if span > 0:
        ratio = (number - source_range.start) / span
    else:
        ratio = Decimal("0.5")
    ratio = min(Decimal(1), max(Decimal(0), ratio))
    center = (target_range.start + (target_range.end - target_range.start) * ratio).to_integral_value()
    half = Decimal(size // 2)
    return Window(
        start=max(target_range.start, center - half),
        end=min(target_range.end, center + half),
    )


class FullRangeAligner:
    def __init__(
        self,
        db: AsyncSession,
        llm: StructuredCompletionClient,
        options: Optional[FullRangeOptions] = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.options = options or FullRangeOptions()

    def _proposal(
        self,
        segment: Segment,
        to_edition_id: int,
        item: BatchMapping,
        source_range: Window,
        target_range: Window,
        notes,
    ) -> ProposedMapping:
        opts = self.options
        start, end = to_ordinal(item.to_start), to_ordinal(item.to_end)
        adjusted = adjust_confidence_for_range(start, end, item.confidence, opts.guard)
        review = derive_status(adjusted, start, end, opts.review_min_confidence, opts.guard.wide_range_threshold)
        uncertain = {to_ordinal(n) for n in notes.uncertain_from_numbers}
        evidence = MatchingAllEvidence(
            model=self.llm.model,
            from_range=RangeInfo(start=float(source_range.start), end=float(source_range.end)),
            target_range=RangeInfo(start=float(target_range.start), end=float(target_range.end)),
            anchors=[float(a) for a in item.anchor_chapters],
            matched_phrases=list(item.matched_phrases),
            global_confidence=notes.global_confidence,
            uncertain=to_ordinal(item.from_number) in uncertain,
            width_adjusted=adjusted != item.confidence,
            review=ReviewSignals(**review.to_evidence()),
        )
        return ProposedMapping(
            from_segment_id=segment.id,
            from_edition_id=segment.edition_id,
            from_number=segment.number,
            to_edition_id=to_edition_id,
            start=start,
            end=end,
            confidence=adjusted,
            algorithm_version=opts.algorithm_version,
            evidence=evidence,
            status=review.status,
        )

    async def _fallback_one(
        self,
        job: FallbackJob,
        to_edition_id: int,
        targets: List[Segment],
        target_media: str,
        source_range: Window,
        target_range: Window,
    ) -> ProposedMapping:
        opts = self.options
        window = fallback_window(job.segment.number, source_range, target_range, opts.fallback_window_size)
        lines = [format_segment_line(t, target_media) for t in targets if window.contains(t.number)]
        if not lines:
            raise AlignmentError(
                f"no target segments in fallback window [{format_ordinal(window.start)}, {format_ordinal(window.end)}]"
            )
        prompt = build_fallback_prompt(job.from_line, lines, format_ordinal(window.start), format_ordinal(window.end))
        result, _ = await self.llm.complete_with_correction(
            FALLBACK_SYSTEM_PROMPT,
            prompt,
            FallbackResponse,
            max_corrections=0,
        )
        start = max(to_ordinal(result.to_start), window.start)
        end = min(to_ordinal(result.to_end), window.end)
        if start > end:
            raise AlignmentError(
                f"range [{format_ordinal(result.to_start)}, {format_ordinal(result.to_end)}] lies outside the fallback window"
            )
        guard = apply_monotonic_guard(start, end, result.confidence * opts.fallback_penalty, checkpoint=None, cfg=opts.guard)
        review = derive_status(guard.confidence, start, end, opts.review_min_confidence, opts.guard.wide_range_threshold)
        evidence = FallbackEvidence(
            model=self.llm.model,
            window=RangeInfo(start=float(window.start), end=float(window.end)),
            anchors=[float(a) for a in result.anchor_chapters],
            matched_phrases=list(result.matched_phrases),
            fallback_penalty=opts.fallback_penalty,
            original_error=job.error[:300],
            review=ReviewSignals(**review.to_evidence()),
            guard=GuardInfo(**guard.to_evidence()),
        )
        return ProposedMapping(
            from_segment_id=job.segment.id,
            from_edition_id=job.segment.edition_id,
            from_number=job.segment.number,
            to_edition_id=to_edition_id,
            start=start,
            end=end,
            confidence=guard.confidence,
            algorithm_version=opts.fallback_algorithm_version,
            evidence=evidence,
            status=review.status,
        )

    async def _run_fallbacks(
        self,
        jobs: List[FallbackJob],
        summary: RunSummary,
        to_edition_id: int,
        targets: List[Segment],
        target_media: str,
        source_range: Window,
        target_range: Window,
    ) -> None:
        semaphore = asyncio.Semaphore(max(1, int(self.options.concurrency)))

        async def worker(job: FallbackJob):
            async with semaphore:
                try:
                    return await self._fallback_one(job, to_edition_id, targets, target_media, source_range, target_range)
                except UNIT_ERRORS as exc:
                    return exc

        # LLM 请求并发执行，写库按编号顺序串行
        results = await asyncio.gather(*(worker(job) for job in jobs))
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException):
                summary.errored(job.segment.number, f"fallback failed: {describe_error(result)}")
                continue
            try:
                await mapping_crud.upsert(self.db, result)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                summary.errored(job.segment.number, f"fallback upsert failed: {describe_error(exc)}")
                continue
            summary.matched(result)

    async def run(self, from_edition_id: int, to_edition_id: int, from_start, from_end, to_start, to_end) -> RunSummary:
        opts = self.options
        source_media = (await edition_crud.require(self.db, from_edition_id)).media_type
        target_media = (await edition_crud.require(self.db, to_edition_id)).media_type
        source_range = Window(start=to_ordinal(from_start), end=to_ordinal(from_end))
        target_range = Window(start=to_ordinal(to_start), end=to_ordinal(to_end))

        sources = await segment_crud.list_range(self.db, from_edition_id, source_range.start, source_range.end)
        targets = await segment_crud.list_range(self.db, to_edition_id, target_range.start, target_range.end)
        if not sources:
            raise SegmentNotFoundError(
                f"no source segments in [{format_ordinal(from_start)}, {format_ordinal(from_end)}]"
            )
        if not targets:
            raise SegmentNotFoundError(
                f"no target segments in [{format_ordinal(to_start)}, {format_ordinal(to_end)}]"
            )
        detach(self.db, sources)
        detach(self.db, targets)

        summary = RunSummary("matching-all", from_edition_id, to_edition_id)
        source_lines: Dict[int, str] = {
            s.id: format_segment_line(s, source_media) for s in sources
        }
        prompt = build_matching_all_prompt(
            target_lines=[format_segment_line(t, target_media) for t in targets],
            from_lines=[source_lines[s.id] for s in sources],
            target_start=format_ordinal(target_range.start),
            target_end=format_ordinal(target_range.end),
            from_start=format_ordinal(source_range.start),
            from_end=format_ordinal(source_range.end),
            media_type=source_media,
        )
        logger.info(
            "align-run-start algo=matching-all from_edition=%s to_edition=%s sources=%d targets=%d",
            from_edition_id,
            to_edition_id,
            len(sources),
            len(targets),
        )

        try:
            response, _ = await self.llm.complete_with_correction(
                matching_all_system_prompt(opts.backtrack),
                prompt,
                MatchingAllResponse,
                max_corrections=opts.max_corrections,
            )
        except (LLMServiceError, LLMSchemaError) as exc:
            for segment in sources:
                summary.errored(segment.number, f"batch request failed: {describe_error(exc)}")
            return summary.finish()

        by_number: Dict[Decimal, Segment] = {to_ordinal(s.number): s for s in sources}
        seen = set()
        fallback_jobs: List[FallbackJob] = []
        for item in sorted(response.mappings, key=lambda m: to_ordinal(m.from_number)):
            number = to_ordinal(item.from_number)
            segment = by_number.get(number)
            if segment is None:
                summary.errored(number, "from_number not in source range")
                continue
            if segment.id in seen:
                logger.warning("align-duplicate-mapping algo=matching-all from=%s", format_ordinal(number))
                continue
            seen.add(segment.id)

            try:
                proposal = self._proposal(segment, to_edition_id, item, source_range, target_range, response.notes)
            except ValueError as exc:
                summary.errored(number, describe_error(exc))
                continue
            try:
                await mapping_crud.upsert(self.db, proposal)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                if opts.enable_fallback:
                    logger.warning(
                        "align-upsert-failed algo=matching-all from=%s fallback=queued error=%s",
                        format_ordinal(number),
                        str(exc)[:180],
                    )
                    fallback_jobs.append(FallbackJob(segment, source_lines[segment.id], describe_error(exc)))
                else:
                    summary.errored(number, f"upsert failed: {describe_error(exc)}")
                continue
            summary.matched(proposal)

        for segment in sources:
            if segment.id not in seen:
                summary.skipped(segment.number, "not-in-response")

        if fallback_jobs:
            await self._run_fallbacks(
                fallback_jobs,
                summary,
                to_edition_id,
                targets,
                target_media,
                source_range,
                target_range,
            )
        return summary.finish()
