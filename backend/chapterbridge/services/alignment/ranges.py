"""Range arithmetic shared by the matchers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from chapterbridge.services.alignment.ordinals import floor_ordinal, midpoint, to_ordinal


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def range_width(start, end) -> Decimal:
    """Inclusive width, ``end - start + 1``."""
    return to_ordinal(end) - to_ordinal(start) + 1


def overlap_length(a_start, a_end, b_start, b_end) -> Decimal:
    start = max(to_ordinal(a_start), to_ordinal(b_start))
    end = min(to_ordinal(a_end), to_ordinal(b_end))
    if start > end:
        return Decimal(0)
    return end - start + 1


def overlap_ratio(a_start, a_end, b_start, b_end) -> float:
    """Overlap divided by the shorter of the two ranges."""
    overlap = overlap_length(a_start, a_end, b_start, b_end)
    if overlap <= 0:
        return 0.0
    shorter = min(range_width(a_start, a_end), range_width(b_start, b_end))
    if shorter <= 0:
        return 0.0
    return float(overlap / shorter)


@dataclass
class Cluster:
    start: Decimal
    end: Decimal
    members: List[Decimal]
    weight: float = 0.0


def cluster_numbers(
    numbers: Iterable,
    gap: int = 2,
    weights: Optional[Mapping[Decimal, float]] = None,
) -> List[Cluster]:
    """Group sorted unique ordinals into runs whose neighbours differ by at most ``gap``.

    Cluster weight is the sum of ``weights`` over members (member count when
    no weights are given).
    """
    ordered = sorted({to_ordinal(n) for n in numbers})
    if not ordered:
        return []

    clusters: List[Cluster] = []
    current = [ordered[0]]
    for number in ordered[1:]:
        if number - current[-1] <= gap:
            current.append(number)
        else:
            clusters.append(_make_cluster(current, weights))
            current = [number]
    clusters.append(_make_cluster(current, weights))
    return clusters


def _make_cluster(members: List[Decimal], weights: Optional[Mapping[Decimal, float]]) -> Cluster:
    if weights is None:
        weight = float(len(members))
    else:
        weight = float(sum(weights.get(m, 0.0) for m in members))
    return Cluster(start=members[0], end=members[-1], members=list(members), weight=weight)


def cluster_containing(clusters: Sequence[Cluster], number) -> Optional[Cluster]:
    target = to_ordinal(number)
    for cluster in clusters:
        if target in cluster.members:
            return cluster
    return None


def cap_width(start, end, max_width: int, floor=None) -> tuple[Decimal, Decimal, bool]:
    """Recentre ``[start, end]`` on its midpoint and truncate to ``max_width``.

    Returns ``(start, end, capped)``. ``floor`` keeps the new start from
    dropping below a lower bound (for instance the smallest candidate).
    """
    start = to_ordinal(start)
    end = to_ordinal(end)
    if range_width(start, end) <= max_width:
        return start, end, False

    mid = midpoint(start, end)
    half = Decimal(max_width // 2)
    new_start = mid - half
    if floor is not None:
        new_start = max(to_ordinal(floor), new_start)
    new_end = new_start + max_width - 1
    return new_start, new_end, True


def contiguous_span(numbers: Iterable, gap: int = 2) -> tuple[Decimal, Decimal]:
    """Span starting from the lowest ordinal, extended while the gap stays ``<= gap``."""
    ordered = sorted({to_ordinal(n) for n in numbers})
    if not ordered:
        raise ValueError("contiguous_span needs at least one number")
    start = end = ordered[0]
    for number in ordered[1:]:
        if number - end > gap:
            break
        end = number
    return start, end

