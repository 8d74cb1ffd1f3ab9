"""Evidence payloads attached to segment mappings (schema v1).

One variant per algorithm, discriminated by ``mode``. Stored as JSON text
in ``segment_mappings.evidence``; :func:`parse_evidence` restores the
variant.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class RangeInfo(BaseModel):
    start: float
    end: float


class ReviewSignals(BaseModel):
    meets_min_confidence: bool
    within_reasonable_width: bool
    min_confidence: float


class GuardInfo(BaseModel):
    backward_jump: float
    violation: bool
    wide_penalty: bool
    confidence_before: float
    confidence_after: float


class ForwardJumpInfo(BaseModel):
    jump: float
    excess: float
    penalty: float
    rejected: bool


class VoteEntry(BaseModel):
    number: float
    votes: int
    avg_similarity: float


class ScoredCandidate(BaseModel):
    number: float
    score: float


class _EvidenceBase(BaseModel):
    review: Optional[ReviewSignals] = None
    guard: Optional[GuardInfo] = None


class VotingEvidence(_EvidenceBase):
    mode: Literal["event_voting"] = "event_voting"
    event_count: int
    vote_histogram: List[VoteEntry]
    selected_numbers: List[float]
    cluster_before_cap: RangeInfo
    cluster_after_cap: RangeInfo
    capped: bool
    base_confidence: float
    forward_jump: ForwardJumpInfo
    window: Optional[RangeInfo] = None


class GreedyEvidence(_EvidenceBase):
    mode: Literal["greedy_event"] = "greedy_event"
    matched_events: int
    histogram: Dict[str, int]
    top_numbers: List[ScoredCandidate]
    cluster_before_cap: RangeInfo
    cluster_after_cap: RangeInfo
    capped: bool
    units_advanced: float
    jump_from_previous: float
    window: RangeInfo


class ChannelScores(BaseModel):
    summary: float
    events: float
    entities: float
    final: float


class ChannelEvidence(_EvidenceBase):
    mode: Literal["channel_align"] = "channel_align"
    scores: ChannelScores
    time_context: Dict[str, str]
    entity_overlap: Dict[str, List[str]]
    top_candidates: List[ScoredCandidate]
    window: Optional[RangeInfo] = None


class RetryInfo(BaseModel):
    widened: bool = False
    corrections: int = 0
    attempts: int = 1


class IncrementalEvidence(_EvidenceBase):
    mode: Literal["incremental"] = "incremental"
    model: str
    from_number: float
    checkpoint: Dict[str, float]
    window: RangeInfo
    anchors: List[float] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)
    retry_info: RetryInfo = Field(default_factory=RetryInfo)
    prompt_version: str = "v1"


class MatchingAllEvidence(_EvidenceBase):
    mode: Literal["matching_all"] = "matching_all"
    model: str
    from_range: RangeInfo
    target_range: RangeInfo
    anchors: List[float] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)
    global_confidence: Optional[float] = None
    uncertain: bool = False
    width_adjusted: bool = False


class FallbackEvidence(_EvidenceBase):
    mode: Literal["matching_all_fallback"] = "matching_all_fallback"
    model: str
    window: RangeInfo
    anchors: List[float] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)
    fallback_penalty: float
    original_error: str


class PivotPair(BaseModel):
    target_number: float
    pivot_range: RangeInfo
    confidence: float
    overlap_len: float
    overlap_ratio: float
    derived_confidence: float


class DeriveEvidence(_EvidenceBase):
    mode: Literal["derive"] = "derive"
    pivot_edition_id: int
    source_to_pivot: RangeInfo
    chosen_target_to_pivot: RangeInfo
    overlap_len: float
    overlap_ratio: float
    conf_source: float
    conf_target: float
    derived_conf: float
    kept_pairs: List[PivotPair]


Evidence = Annotated[
    Union[
        VotingEvidence,
        GreedyEvidence,
        ChannelEvidence,
        IncrementalEvidence,
        MatchingAllEvidence,
        FallbackEvidence,
        DeriveEvidence,
    ],
    Field(discriminator="mode"),
]

_evidence_adapter: TypeAdapter[Any] = TypeAdapter(Evidence)


def dump_evidence(evidence: _EvidenceBase) -> str:
    return evidence.model_dump_json(exclude_none=True)


def parse_evidence(raw: Union[str, bytes, dict]) -> _EvidenceBase:
    if isinstance(raw, dict):
        return _evidence_adapter.validate_python(raw)
    return _evidence_adapter.validate_json(raw)
