"""LLM-assisted checkpoint matcher.

Review note:
- 每个源单元只看 checkpoint 附近的目标窗口：[last_to_end - before, last_to_end + after]，
  不足 min_size 时对称扩展，超过 max_size 时截断。
- 结构校验失败最多纠正重试一次（CorrectionLoop）。
- 模型要求更宽窗口时，仅在首轮且窗口未达上限时扩展一次再请求。
- checkpoint 只在映射成功写库后推进。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.models import Segment
from chapterbridge.schemas.evidence import GuardInfo, IncrementalEvidence, RangeInfo, RetryInfo, ReviewSignals
from chapterbridge.schemas.llm import IncrementalResponse
from chapterbridge.services.alignment.digest import format_segment_line
from chapterbridge.services.alignment.errors import AlignmentError, SegmentNotFoundError
from chapterbridge.services.alignment.ordinals import ZERO, format_ordinal, to_ordinal
from chapterbridge.services.alignment.outcome import ProposedMapping, RunSummary
from chapterbridge.services.alignment.policy import GuardConfig, apply_monotonic_guard, derive_status
from chapterbridge.services.alignment.prompts import (
    PROMPT_VERSION,
    build_incremental_prompt,
    incremental_system_prompt,
)
from chapterbridge.services.alignment.runner import Checkpoint, detach, load_checkpoint, pending_units, settle_unit
from chapterbridge.services.alignment.windowing import Window, WindowConfig, initial_window, widen_window
from chapterbridge.utils.openai_helper import StructuredCompletionClient

logger = logging.getLogger("uvicorn.error")


@dataclass
class CheckpointOptions:
    backtrack: int = 3
    max_corrections: int = 1
    review_min_confidence: float = 0.55
    limit: int = 0
    algorithm_version: str = "llm-gpt4.1-events-v1-inc"
    window: WindowConfig = field(default_factory=WindowConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)


class CheckpointAligner:
    def __init__(
        self,
        db: AsyncSession,
        llm: StructuredCompletionClient,
        options: Optional[CheckpointOptions] = None,
    ) -> None:
        self.db = db
        self.llm = llm
        self.options = options or CheckpointOptions()

    async def _ask(
        self,
        segment: Segment,
        to_edition_id: int,
        media_type: str,
        target_media: str,
        window: Window,
        checkpoint: Tuple[Decimal, Decimal],
    ):
        targets = await segment_crud.list_range(self.db, to_edition_id, window.start, window.end)
        if not targets:
            raise AlignmentError(
                f"no target segments in window [{format_ordinal(window.start)}, {format_ordinal(window.end)}]"
            )
        prompt = build_incremental_prompt(
            from_line=format_segment_line(segment, media_type),
            target_lines=[format_segment_line(t, target_media) for t in targets],
            window_start=format_ordinal(window.start),
            window_end=format_ordinal(window.end),
            last_from_number=format_ordinal(checkpoint[0]),
            last_to_end=format_ordinal(checkpoint[1]),
            from_number=format_ordinal(segment.number),
            media_type=media_type,
            backtrack=self.options.backtrack,
        )
        return await self.llm.complete_with_correction(
            incremental_system_prompt(self.options.backtrack),
            prompt,
            IncrementalResponse,
            max_corrections=self.options.max_corrections,
        )

    async def propose(
        self,
        segment: Segment,
        to_edition_id: int,
        media_type: str,
        target_media: str,
        bounds: Tuple[Decimal, Decimal],
        checkpoint: Optional[Checkpoint],
    ) -> ProposedMapping:
        opts = self.options
        last_from = checkpoint.from_number if checkpoint is not None else ZERO
        last_end = checkpoint.to_end if checkpoint is not None else ZERO

        window = initial_window(last_end, bounds, opts.window)
        response, loop = await self._ask(segment, to_edition_id, media_type, target_media, window, (last_from, last_end))
        attempts = loop.attempts
        corrections = loop.corrections
        widened = False

        wider = widen_window(window, bounds, opts.window) if response.result.needs_wider_window else None
        if wider is not None:
            logger.info(
                "align-widen algo=incremental from=%s window=[%s,%s]->[%s,%s]",
                format_ordinal(segment.number),
                format_ordinal(window.start),
                format_ordinal(window.end),
                format_ordinal(wider.start),
                format_ordinal(wider.end),
            )
            window = wider
            widened = True
            response, loop = await self._ask(segment, to_edition_id, media_type, target_media, window, (last_from, last_end))
            attempts += loop.attempts
            corrections += loop.corrections

        result = response.result
        start = max(to_ordinal(result.to_start), window.start)
        end = min(to_ordinal(result.to_end), window.end)
        if start > end:
            raise AlignmentError(
                f"range [{format_ordinal(result.to_start)}, {format_ordinal(result.to_end)}] lies outside the window"
            )

        guard = apply_monotonic_guard(
            start,
            end,
            result.confidence,
            checkpoint=checkpoint.to_end if checkpoint is not None else None,
            cfg=opts.guard,
        )
        review = derive_status(guard.confidence, start, end, opts.review_min_confidence, opts.guard.wide_range_threshold)
        evidence = IncrementalEvidence(
            model=self.llm.model,
            from_number=float(segment.number),
            checkpoint={"last_from_number": float(last_from), "last_to_end": float(last_end)},
            window=RangeInfo(start=float(window.start), end=float(window.end)),
            anchors=[float(a) for a in result.anchor_chapters],
            matched_phrases=list(result.matched_phrases),
            retry_info=RetryInfo(widened=widened, corrections=corrections, attempts=attempts),
            prompt_version=PROMPT_VERSION,
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
        source_media = (await edition_crud.require(self.db, from_edition_id)).media_type
        target_media = (await edition_crud.require(self.db, to_edition_id)).media_type
        bounds = await edition_crud.bounds(self.db, to_edition_id)
        if bounds is None:
            raise SegmentNotFoundError(f"target edition {to_edition_id} has no segments")

        summary = RunSummary("incremental", from_edition_id, to_edition_id)
        checkpoint = await load_checkpoint(self.db, from_edition_id, to_edition_id)
        segments = await segment_crud.list_range(self.db, from_edition_id)
        units = detach(self.db, pending_units(segments, checkpoint, opts.limit))

        logger.info(
            "align-run-start algo=incremental from_edition=%s to_edition=%s units=%d checkpoint=%s bounds=[%s,%s]",
            from_edition_id,
            to_edition_id,
            len(units),
            checkpoint.to_dict() if checkpoint else None,
            format_ordinal(bounds[0]),
            format_ordinal(bounds[1]),
        )
        for segment in units:
            current = checkpoint
            accepted = await settle_unit(
                self.db,
                summary,
                to_ordinal(segment.number),
                lambda: self.propose(segment, to_edition_id, source_media, target_media, bounds, current),
            )
            if accepted is not None:
                checkpoint = Checkpoint.from_proposal(accepted)
        return summary.finish()
