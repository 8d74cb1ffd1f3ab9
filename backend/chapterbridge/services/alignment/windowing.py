"""Search windows for the checkpoint-based LLM matcher."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple

from chapterbridge.services.alignment.ordinals import ordinal_json, to_ordinal
from chapterbridge.services.alignment.ranges import range_width


@dataclass
class WindowConfig:
    before: int = 25
    after: int = 45
    min_size: int = 70
    max_size: int = 200
    widen_step: int = 50


@dataclass(frozen=True)
class Window:
    start: Decimal
    end: Decimal

    @property
    def width(self) -> Decimal:
        return range_width(self.start, self.end)

    def contains(self, number) -> bool:
        return self.start <= to_ordinal(number) <= self.end

    def to_dict(self) -> dict:
        return {"start": ordinal_json(self.start), "end": ordinal_json(self.end)}


def _clamp_to_bounds(start: Decimal, end: Decimal, bounds: Tuple[Decimal, Decimal]) -> Window:
    low, high = bounds
    return Window(start=max(low, start), end=min(high, end))


def initial_window(checkpoint_end, bounds: Tuple, cfg: Optional[WindowConfig] = None) -> Window:
    """``[end - before, end + after]`` widened to ``min_size`` and cut at ``max_size``.

    When widening, the extra half-units go to the forward side.
    """
    cfg = cfg or WindowConfig()
    low, high = to_ordinal(bounds[0]), to_ordinal(bounds[1])
    anchor = to_ordinal(checkpoint_end)

    window = _clamp_to_bounds(anchor - cfg.before, anchor + cfg.after, (low, high))
    if window.width < cfg.min_size:
        diff = cfg.min_size - window.width
        grow_end = (diff + 1) // 2
        grow_start = diff // 2
        window = _clamp_to_bounds(window.start - grow_start, window.end + grow_end, (low, high))
    if window.width > cfg.max_size:
        window = Window(start=window.start, end=window.start + cfg.max_size - 1)
    return window


def widen_window(window: Window, bounds: Tuple, cfg: Optional[WindowConfig] = None) -> Optional[Window]:
    """Grow the window by up to ``widen_step``, split evenly across both sides.

    Returns ``None`` when the window is already at ``max_size`` or cannot grow
    within the edition bounds.
    """
    cfg = cfg or WindowConfig()
    if window.width >= cfg.max_size:
        return None
    expansion = min(Decimal(cfg.widen_step), cfg.max_size - window.width)
    grow_start = expansion // 2
    grow_end = expansion - grow_start
    low, high = to_ordinal(bounds[0]), to_ordinal(bounds[1])
    widened = _clamp_to_bounds(window.start - grow_start, window.end + grow_end, (low, high))
    if widened == window:
        return None
    return widened
