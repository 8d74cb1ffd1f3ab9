"""Monotonic guard and confidence policy shared by every matcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chapterbridge.services.alignment.ordinals import to_ordinal
from chapterbridge.services.alignment.ranges import clamp, range_width

PROPOSED = "proposed"


@dataclass
class GuardConfig:
    backtrack_limit: int = 3
    high_confidence_exception: float = 0.80
    violation_penalty: float = 0.8
    wide_range_threshold: int = 20
    wide_range_penalty: float = 0.7


@dataclass
class GuardResult:
    confidence: float
    confidence_before: float
    backward_jump: float
    violation: bool
    wide_penalty: bool
    status: str = PROPOSED

    def to_evidence(self) -> dict:
        return {
            "backward_jump": self.backward_jump,
            "violation": self.violation,
            "wide_penalty": self.wide_penalty,
            "confidence_before": round(self.confidence_before, 6),
            "confidence_after": round(self.confidence, 6),
        }


def adjust_confidence_for_range(start, end, confidence: float, cfg: Optional[GuardConfig] = None) -> float:
    """Scale confidence down when the range is wider than the wide-range threshold."""
    cfg = cfg or GuardConfig()
    if range_width(start, end) > cfg.wide_range_threshold:
        return clamp(confidence * cfg.wide_range_penalty)
    return clamp(confidence)


def apply_monotonic_guard(
    start,
    end,
    confidence: float,
    checkpoint=None,
    cfg: Optional[GuardConfig] = None,
) -> GuardResult:
    """Penalise backward jumps behind ``checkpoint`` and overly wide ranges.

    A backward jump larger than ``backtrack_limit`` only counts as a
    violation while confidence is below ``high_confidence_exception``.
    ``checkpoint=None`` means the run has no anchor yet.
    """
    cfg = cfg or GuardConfig()
    before = clamp(confidence)
    adjusted = before
    backward = 0.0
    violation = False

    if checkpoint is not None:
        backward = float(to_ordinal(checkpoint) - to_ordinal(start))
        if backward > cfg.backtrack_limit and before < cfg.high_confidence_exception:
            violation = True
            adjusted = adjusted * cfg.violation_penalty

    wide = range_width(start, end) > cfg.wide_range_threshold
    if wide:
        adjusted = adjusted * cfg.wide_range_penalty

    return GuardResult(
        confidence=clamp(adjusted),
        confidence_before=before,
        backward_jump=backward,
        violation=violation,
        wide_penalty=wide,
    )


@dataclass
class ForwardJump:
    jump: float
    excess: float
    penalty: float
    rejected: bool

    def to_evidence(self) -> dict:
        return {
            "jump": self.jump,
            "excess": self.excess,
            "penalty": round(self.penalty, 6),
            "rejected": self.rejected,
        }


def forward_jump_penalty(
    start,
    checkpoint,
    max_forward_jump: int,
    penalty_per_unit: float = 0.001,
) -> ForwardJump:
    """Penalty for jumping further ahead of ``checkpoint`` than ``max_forward_jump``.

    The penalty grows linearly with the excess. Jumps beyond twice the limit
    are rejected outright.
    """
    if checkpoint is None:
        return ForwardJump(jump=0.0, excess=0.0, penalty=0.0, rejected=False)
    jump = to_ordinal(start) - to_ordinal(checkpoint)
    if jump > 2 * max_forward_jump:
        return ForwardJump(jump=float(jump), excess=float(jump - max_forward_jump), penalty=0.0, rejected=True)
    if jump > max_forward_jump:
        excess = jump - max_forward_jump
        return ForwardJump(
            jump=float(jump),
            excess=float(excess),
            penalty=float(excess) * penalty_per_unit,
            rejected=False,
        )
    return ForwardJump(jump=float(jump), excess=0.0, penalty=0.0, rejected=False)


@dataclass
class StatusDecision:
    """Advisory review signals. ``status`` is always ``proposed``.

    Promotion to ``approved`` is a human action; the signals are stored in
    evidence so a reviewer can sort and filter on them.
    """

    status: str
    meets_min_confidence: bool
    within_reasonable_width: bool
    min_confidence: float

    def to_evidence(self) -> dict:
        return {
            "meets_min_confidence": self.meets_min_confidence,
            "within_reasonable_width": self.within_reasonable_width,
            "min_confidence": self.min_confidence,
        }


def derive_status(
    confidence: float,
    start,
    end,
    min_confidence: float = 0.55,
    wide_range_threshold: int = 20,
) -> StatusDecision:
    return StatusDecision(
        status=PROPOSED,
        meets_min_confidence=confidence >= min_confidence,
        within_reasonable_width=range_width(start, end) <= wide_range_threshold,
        min_confidence=min_confidence,
    )
