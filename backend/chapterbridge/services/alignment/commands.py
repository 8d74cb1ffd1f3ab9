"""Entry-point operations shared by the CLI and the HTTP API.

Each operation takes an :class:`AlignmentContext`, builds the algorithm
options from settings plus explicit overrides, and runs inside one session.
"""

from __future__ import annotations

from typing import Optional

from chapterbridge.context import AlignmentContext
from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.crud.segment import edition_crud
from chapterbridge.services.alignment.channel import ChannelAligner, ChannelOptions
from chapterbridge.services.alignment.checkpoint import CheckpointAligner, CheckpointOptions
from chapterbridge.services.alignment.derive import DeriveAligner, DeriveOptions
from chapterbridge.services.alignment.full_range import FullRangeAligner, FullRangeOptions
from chapterbridge.services.alignment.greedy import GreedyAligner, GreedyOptions
from chapterbridge.services.alignment.policy import GuardConfig
from chapterbridge.services.alignment.report import summarize_mappings
from chapterbridge.services.alignment.voting import VotingAligner, VotingOptions
from chapterbridge.services.alignment.windowing import WindowConfig
from chapterbridge.services.fingerprints.builder import FingerprintBuilder


def _pick(value, default):
    return default if value is None else value


async def embed_segments(ctx: AlignmentContext, edition_id: int, limit: int = 0) -> dict:
    embedder = ctx.embedder
    async with ctx.session() as db:
        builder = FingerprintBuilder(db, embedder, ctx.settings.EMBEDDING_DIM, ctx.settings.EMBEDDING_BATCH_SIZE)
        report = await builder.build_segment_fingerprints(edition_id, limit=limit)
    return report.to_dict()


async def embed_events(ctx: AlignmentContext, edition_id: int, limit: int = 0) -> dict:
    embedder = ctx.embedder
    async with ctx.session() as db:
        builder = FingerprintBuilder(db, embedder, ctx.settings.EMBEDDING_DIM, ctx.settings.EMBEDDING_BATCH_SIZE)
        report = await builder.build_event_fingerprints(edition_id, limit=limit)
    return report.to_dict()


async def match_align(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    window: Optional[int] = None,
    backtrack: Optional[int] = None,
    top_k: Optional[int] = None,
    limit: int = 0,
    restart: bool = False,
) -> dict:
    s = ctx.settings
    backtrack = _pick(backtrack, s.BACKTRACK)
    options = ChannelOptions(
        top_k=_pick(top_k, s.TOP_K),
        window=_pick(window, s.WINDOW),
        backtrack=backtrack,
        review_min_confidence=s.MIN_CONFIDENCE,
        limit=limit,
        resume=not restart,
        algorithm_version=f"{s.ALGO_VERSION}-align",
        guard=GuardConfig(backtrack_limit=backtrack),
    )
    async with ctx.session() as db:
        summary = await ChannelAligner(db, options=options).run(from_edition_id, to_edition_id)
    return summary.to_dict()


async def match_events(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    window: Optional[int] = None,
    backtrack: Optional[int] = None,
    top_k: Optional[int] = None,
    max_range_width: int = 15,
    max_forward_jump: int = 30,
    min_confidence: float = 0.4,
    limit: int = 0,
    restart: bool = False,
) -> dict:
    s = ctx.settings
    backtrack = _pick(backtrack, s.BACKTRACK)
    options = VotingOptions(
        top_k=_pick(top_k, s.TOP_K),
        window=_pick(window, s.WINDOW),
        backtrack=backtrack,
        max_range_width=max_range_width,
        max_forward_jump=max_forward_jump,
        min_confidence=min_confidence,
        review_min_confidence=s.MIN_CONFIDENCE,
        limit=limit,
        resume=not restart,
        guard=GuardConfig(backtrack_limit=backtrack),
    )
    async with ctx.session() as db:
        summary = await VotingAligner(db, options=options).run(from_edition_id, to_edition_id)
    return summary.to_dict()


async def match_events_greedy(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    search_window: int = 30,
    similarity_threshold: float = 0.3,
    max_range_width: int = 10,
    max_per_unit_jump: int = 8,
    limit: int = 0,
    restart: bool = False,
) -> dict:
    options = GreedyOptions(
        search_window=search_window,
        similarity_threshold=similarity_threshold,
        max_range_width=max_range_width,
        max_per_unit_jump=max_per_unit_jump,
        review_min_confidence=ctx.settings.MIN_CONFIDENCE,
        limit=limit,
        resume=not restart,
    )
    async with ctx.session() as db:
        summary = await GreedyAligner(db, options=options).run(from_edition_id, to_edition_id)
    return summary.to_dict()


async def match_incremental(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    window_before: Optional[int] = None,
    window_after: Optional[int] = None,
    window_size: Optional[int] = None,
    max_window_size: Optional[int] = None,
    backtrack: Optional[int] = None,
    limit: int = 0,
) -> dict:
    s = ctx.settings
    backtrack = _pick(backtrack, s.BACKTRACK)
    options = CheckpointOptions(
        backtrack=backtrack,
        review_min_confidence=s.MIN_CONFIDENCE,
        limit=limit,
        algorithm_version=f"{s.ALGO_VERSION}-inc",
        window=WindowConfig(
            before=_pick(window_before, s.WINDOW_BEFORE),
            after=_pick(window_after, s.WINDOW_AFTER),
            min_size=_pick(window_size, s.WINDOW_SIZE),
            max_size=_pick(max_window_size, s.MAX_WINDOW_SIZE),
        ),
        guard=GuardConfig(backtrack_limit=backtrack),
    )
    llm = ctx.llm
    async with ctx.session() as db:
        summary = await CheckpointAligner(db, llm, options=options).run(from_edition_id, to_edition_id)
    return summary.to_dict()


async def match_all(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    from_start,
    from_end,
    to_start,
    to_end,
    enable_fallback: Optional[bool] = None,
) -> dict:
    s = ctx.settings
    options = FullRangeOptions(
        backtrack=s.BACKTRACK,
        review_min_confidence=s.MIN_CONFIDENCE,
        enable_fallback=_pick(enable_fallback, s.ENABLE_FALLBACK),
        fallback_window_size=s.FALLBACK_WINDOW_SIZE,
        fallback_penalty=s.FALLBACK_CONFIDENCE_PENALTY,
        concurrency=s.LLM_CONCURRENCY,
        algorithm_version=f"{s.ALGO_VERSION}-all",
        fallback_algorithm_version=f"{s.ALGO_VERSION}-all-fallback",
    )
    llm = ctx.llm
    async with ctx.session() as db:
        summary = await FullRangeAligner(db, llm, options=options).run(
            from_edition_id, to_edition_id, from_start, from_end, to_start, to_end
        )
    return summary.to_dict()


async def derive(
    ctx: AlignmentContext,
    from_edition_id: int,
    to_edition_id: int,
    pivot_edition_id: int,
    epsilon: float = 0.05,
    limit: int = 0,
) -> dict:
    options = DeriveOptions(epsilon=epsilon, review_min_confidence=ctx.settings.MIN_CONFIDENCE, limit=limit)
    async with ctx.session() as db:
        summary = await DeriveAligner(db, options=options).run(from_edition_id, to_edition_id, pivot_edition_id)
    return summary.to_dict()


async def mapping_report(ctx: AlignmentContext, from_edition_id: int, to_edition_id: int) -> dict:
    async with ctx.session() as db:
        await edition_crud.require(db, from_edition_id)
        await edition_crud.require(db, to_edition_id)
        rows = await mapping_crud.list_for_pair(db, from_edition_id, to_edition_id)
    report = summarize_mappings(rows)
    report.update({"from_edition_id": from_edition_id, "to_edition_id": to_edition_id})
    return report
