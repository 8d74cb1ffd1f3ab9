"""Quality report over the persisted mappings of one edition pair."""

from __future__ import annotations

from typing import Iterable, List

from chapterbridge.services.alignment.ordinals import ordinal_json, to_ordinal
from chapterbridge.services.alignment.ranges import range_width

WIDTH_BUCKETS = (
    ("1-5", 1, 5),
    ("6-10", 6, 10),
    ("11-20", 11, 20),
    ("21-50", 21, 50),
    (">50", 51, None),
)
OUTLIER_WIDTH = 20
OUTLIER_CONFIDENCE = 0.5


def _bucket(width) -> str:
    for label, low, high in WIDTH_BUCKETS:
        if width >= low and (high is None or width <= high):
            return label
    return WIDTH_BUCKETS[0][0]


def summarize_mappings(rows: Iterable) -> dict:
    """Width, jump and outlier statistics for mappings ordered by source number.

    ``rows`` are ``SegmentMapping``-like objects exposing ``segment_number``,
    ``to_segment_start``, ``to_segment_end`` and ``confidence``.
    """
    items = sorted(
        (
            {
                "from": to_ordinal(r.segment_number),
                "start": to_ordinal(r.to_segment_start),
                "end": to_ordinal(r.to_segment_end),
                "confidence": float(r.confidence),
            }
            for r in rows
        ),
        key=lambda item: item["from"],
    )
    if not items:
        return {"count": 0}

    for item in items:
        item["width"] = range_width(item["start"], item["end"])
    widths = [item["width"] for item in items]
    histogram = {label: 0 for label, _, _ in WIDTH_BUCKETS}
    for width in widths:
        histogram[_bucket(width)] += 1

    jumps: List[dict] = []
    for prev, cur in zip(items, items[1:]):
        jumps.append(
            {
                "from": ordinal_json(cur["from"]),
                "previous_start": ordinal_json(prev["start"]),
                "start": ordinal_json(cur["start"]),
                "jump": float(cur["start"] - prev["start"]),
            }
        )
    backward = [j for j in jumps if j["jump"] < 0]
    forward = [j["jump"] for j in jumps if j["jump"] > 0]

    widest = sorted(items, key=lambda i: (-i["width"], i["from"]))[:10]
    largest_jumps = sorted(jumps, key=lambda j: (-abs(j["jump"]), j["from"]))[:10]
    outliers = [
        i for i in items if i["width"] > OUTLIER_WIDTH or i["confidence"] < OUTLIER_CONFIDENCE
    ]
    max_forward = max(forward) if forward else 0.0

    def _row(item: dict) -> dict:
        return {
            "from": ordinal_json(item["from"]),
            "start": ordinal_json(item["start"]),
            "end": ordinal_json(item["end"]),
            "width": ordinal_json(item["width"]),
            "confidence": round(item["confidence"], 4),
        }

    recommendations = []
    if histogram["21-50"] or histogram[">50"]:
        recommendations.append(f"cap range width: {histogram['21-50'] + histogram['>50']} mappings wider than 20")
    if backward:
        recommendations.append(f"review backtrack limit: {len(backward)} backward jumps")
    if max_forward > 30:
        recommendations.append(f"tighten forward-jump limit: max forward jump {max_forward:g}")

    return {
        "count": len(items),
        "width": {
            "avg": round(float(sum(widths)) / len(widths), 3),
            "min": ordinal_json(min(widths)),
            "max": ordinal_json(max(widths)),
            "histogram": histogram,
        },
        "jumps": {
            "avg": round(sum(j["jump"] for j in jumps) / len(jumps), 3) if jumps else 0.0,
            "max_forward": max_forward,
            "backward": backward,
        },
        "widest": [_row(i) for i in widest],
        "largest_jumps": largest_jumps,
        "outliers": [_row(i) for i in outliers],
        "recommendations": recommendations,
    }
