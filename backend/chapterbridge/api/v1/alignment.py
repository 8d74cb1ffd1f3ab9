"""对齐任务API"""
from fastapi import APIRouter, Depends, HTTPException
from typing import AsyncIterator, Awaitable

from chapterbridge.config import settings
from chapterbridge.context import AlignmentContext, open_context
from chapterbridge.schemas.alignment import (
    AlignRequest,
    CheckpointRequest,
    DeriveRequest,
    EmbedRequest,
    EventMatchRequest,
    GreedyRequest,
    MatchAllRequest,
    RunSummaryResponse,
)
from chapterbridge.services.alignment import commands
from chapterbridge.services.alignment.errors import EditionNotFoundError, SegmentNotFoundError

router = APIRouter()


async def get_context() -> AsyncIterator[AlignmentContext]:
    """每个请求独立的运行上下文，请求结束时释放"""
    async with open_context(settings, create_tables=False) as ctx:
        yield ctx


async def _run(operation: Awaitable[dict]) -> dict:
    try:
        return await operation
    except (EditionNotFoundError, SegmentNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        # 配置缺失（API Key / 模型名）或参数不合法
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/embed")
async def embed_segments(request: EmbedRequest, ctx: AlignmentContext = Depends(get_context)):
    """生成段落级（summary / events / entities）指纹"""
    return await _run(commands.embed_segments(ctx, request.edition_id, request.limit))


@router.post("/embed-events")
async def embed_events(request: EmbedRequest, ctx: AlignmentContext = Depends(get_context)):
    """生成事件级指纹"""
    return await _run(commands.embed_events(ctx, request.edition_id, request.limit))


@router.post("/match-align", response_model=RunSummaryResponse)
async def match_align(request: AlignRequest, ctx: AlignmentContext = Depends(get_context)):
    """多通道单调对齐"""
    return await _run(commands.match_align(ctx, **request.model_dump()))


@router.post("/match-events", response_model=RunSummaryResponse)
async def match_events(request: EventMatchRequest, ctx: AlignmentContext = Depends(get_context)):
    """事件投票对齐"""
    return await _run(commands.match_events(ctx, **request.model_dump()))


@router.post("/match-events-greedy", response_model=RunSummaryResponse)
async def match_events_greedy(request: GreedyRequest, ctx: AlignmentContext = Depends(get_context)):
    """贪心顺序事件对齐"""
    return await _run(commands.match_events_greedy(ctx, **request.model_dump()))


@router.post("/match-incremental", response_model=RunSummaryResponse)
async def match_incremental(request: CheckpointRequest, ctx: AlignmentContext = Depends(get_context)):
    """LLM 增量对齐（checkpoint + 窗口）"""
    return await _run(commands.match_incremental(ctx, **request.model_dump()))


@router.post("/match-all", response_model=RunSummaryResponse)
async def match_all(request: MatchAllRequest, ctx: AlignmentContext = Depends(get_context)):
    """LLM 整段对齐"""
    return await _run(commands.match_all(ctx, **request.model_dump()))


@router.post("/derive", response_model=RunSummaryResponse)
async def derive(request: DeriveRequest, ctx: AlignmentContext = Depends(get_context)):
    """经由 pivot 版本推导跨媒介映射"""
    return await _run(commands.derive(ctx, **request.model_dump()))


@router.get("/report")
async def mapping_report(from_edition_id: int, to_edition_id: int, ctx: AlignmentContext = Depends(get_context)):
    """映射质量报告"""
    return await _run(commands.mapping_report(ctx, from_edition_id, to_edition_id))
