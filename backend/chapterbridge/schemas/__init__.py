"""Schemas包初始化"""
from chapterbridge.schemas.evidence import (
    ChannelEvidence,
    DeriveEvidence,
    FallbackEvidence,
    GreedyEvidence,
    IncrementalEvidence,
    MatchingAllEvidence,
    VotingEvidence,
    dump_evidence,
    parse_evidence,
)
from chapterbridge.schemas.llm import (
    FallbackResponse,
    IncrementalResponse,
    MatchingAllResponse,
)
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

__all__ = [
    # Evidence
    "ChannelEvidence",
    "DeriveEvidence",
    "FallbackEvidence",
    "GreedyEvidence",
    "IncrementalEvidence",
    "MatchingAllEvidence",
    "VotingEvidence",
    "dump_evidence",
    "parse_evidence",
    # LLM responses
    "FallbackResponse",
    "IncrementalResponse",
    "MatchingAllResponse",
    # API
    "AlignRequest",
    "CheckpointRequest",
    "DeriveRequest",
    "EmbedRequest",
    "EventMatchRequest",
    "GreedyRequest",
    "MatchAllRequest",
    "RunSummaryResponse",
]
