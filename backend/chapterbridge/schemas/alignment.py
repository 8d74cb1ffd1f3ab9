"""对齐接口的Pydantic schemas"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class EditionPair(BaseModel):
    """源版本 -> 目标版本"""
    from_edition_id: int = Field(..., description="源版本ID")
    to_edition_id: int = Field(..., description="目标版本ID")


class EmbedRequest(BaseModel):
    """生成指纹请求"""
    edition_id: int = Field(..., description="版本ID")
    limit: int = Field(0, ge=0, description="最多处理的段落数，0 表示不限")


class AlignRequest(EditionPair):
    """多通道单调对齐"""
    window: Optional[int] = Field(None, gt=0, description="checkpoint 之后的搜索宽度，默认 WINDOW")
    backtrack: Optional[int] = Field(None, ge=0, description="允许回退的编号数，默认 BACKTRACK")
    top_k: Optional[int] = Field(None, gt=0, description="每个通道的候选数，默认 TOP_K")
    limit: int = Field(0, ge=0)
    restart: bool = Field(False, description="忽略已有映射，从头扫描")


class EventMatchRequest(AlignRequest):
    """事件投票对齐"""
    max_range_width: int = Field(15, gt=0)
    max_forward_jump: int = Field(30, gt=0)
    min_confidence: float = Field(0.4, ge=0, le=1)


class GreedyRequest(EditionPair):
    """贪心顺序事件对齐"""
    search_window: int = Field(30, gt=0)
    similarity_threshold: float = Field(0.3, ge=0, le=1)
    max_range_width: int = Field(10, gt=0)
    max_per_unit_jump: int = Field(8, gt=0)
    limit: int = Field(0, ge=0)
    restart: bool = False


class CheckpointRequest(EditionPair):
    """LLM 增量对齐"""
    window_before: Optional[int] = Field(None, ge=0)
    window_after: Optional[int] = Field(None, ge=0)
    window_size: Optional[int] = Field(None, gt=0, description="最小窗口宽度")
    max_window_size: Optional[int] = Field(None, gt=0)
    backtrack: Optional[int] = Field(None, ge=0)
    limit: int = Field(0, ge=0)


class MatchAllRequest(EditionPair):
    """LLM 整段对齐"""
    from_start: float
    from_end: float
    to_start: float
    to_end: float
    enable_fallback: Optional[bool] = None


class DeriveRequest(EditionPair):
    """经由 pivot 版本推导映射"""
    pivot_edition_id: int
    epsilon: float = Field(0.05, ge=0, le=1)
    limit: int = Field(0, ge=0)


class RunSummaryResponse(BaseModel):
    """一次运行的结果汇总"""
    algorithm: str
    from_edition_id: int
    to_edition_id: int
    matched: int
    skipped: int
    errored: int
    units: List[Dict[str, Any]]
