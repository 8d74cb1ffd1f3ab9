"""Structured LLM response schemas for the LLM-assisted matchers."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_ANCHORS = 3
MAX_PHRASES = 3


class _RangeResult(BaseModel):
    to_start: Decimal
    to_end: Decimal
    confidence: float = Field(..., ge=0, le=1)
    anchor_chapters: List[Decimal] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)

    @field_validator("anchor_chapters", mode="before")
    @classmethod
    def _cap_anchors(cls, value):
        return list(value or [])[:MAX_ANCHORS]

    @field_validator("matched_phrases", mode="before")
    @classmethod
    def _cap_phrases(cls, value):
        return [str(v) for v in (value or [])][:MAX_PHRASES]

    @model_validator(mode="after")
    def _check_order(self):
        if self.to_start > self.to_end:
            raise ValueError(f"to_start ({self.to_start}) must be <= to_end ({self.to_end})")
        return self


class IncrementalResult(_RangeResult):
    from_number: Decimal
    needs_wider_window: bool = False


class CheckpointInfo(BaseModel):
    last_from_number: Decimal
    last_to_end: Decimal


class WindowInfo(BaseModel):
    start: Decimal
    end: Decimal


class IncrementalResponse(BaseModel):
    mode: Literal["incremental"] = "incremental"
    checkpoint: Optional[CheckpointInfo] = None
    window: Optional[WindowInfo] = None
    result: IncrementalResult


class BatchMapping(_RangeResult):
    from_number: Decimal


class BatchNotes(BaseModel):
    global_confidence: float = Field(0.0, ge=0, le=1)
    uncertain_from_numbers: List[Decimal] = Field(default_factory=list)


class MatchingAllResponse(BaseModel):
    mode: Literal["matching_all"] = "matching_all"
    novel_range: Optional[WindowInfo] = None
    from_range: Optional[WindowInfo] = None
    mappings: List[BatchMapping]
    notes: BatchNotes = Field(default_factory=BatchNotes)


class FallbackResponse(_RangeResult):
    from_number: Decimal
