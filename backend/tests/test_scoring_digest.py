import json
from decimal import Decimal

import pytest

from chapterbridge.models import Segment
from chapterbridge.services.alignment.digest import MAX_EVENTS, NO_EVENTS, digest_events, format_segment_line
from chapterbridge.services.alignment.scoring import (
    apply_time_context_adjustment,
    compute_entity_overlap,
    compute_final_score,
    normalize_time_context,
)
from chapterbridge.services.fingerprints.text import (
    build_entities_text,
    build_events_text,
    build_summary_text,
    parse_events,
)


class TestScoring:
    def test_final_score_blend(self):
        assert compute_final_score(1.0, 1.0, 1.0) == pytest.approx(1.0)
        assert compute_final_score(0.5, 0.0, 0.0) == pytest.approx(0.8 * 0.6 * 0.5)
        assert compute_final_score(0.0, 0.0, 1.0) == pytest.approx(0.2)

    def test_time_context(self):
        assert normalize_time_context(" Flashback ") == "flashback"
        assert normalize_time_context("dream") == "unknown"
        assert apply_time_context_adjustment(0.5, "present", "present") == pytest.approx(0.52)
        assert apply_time_context_adjustment(0.5, "present", "flashback") == pytest.approx(0.47)
        assert apply_time_context_adjustment(0.5, "unknown", "unknown") == pytest.approx(0.5)
        assert apply_time_context_adjustment(0.5, None, "present") == pytest.approx(0.5)

    def test_entity_overlap_case_insensitive(self):
        overlap = compute_entity_overlap(
            {"characters": ["Lin Yuan", {"name": "Sword Spirit"}], "keywords": [{"term": "Sect"}]},
            {"characters": ["lin yuan"], "keywords": ["sect", "tournament"]},
        )
        assert overlap == {"characters": ["lin yuan"], "locations": [], "keywords": ["sect"]}


class TestFingerprintText:
    def test_parse_events_dedupes(self):
        events = parse_events(["  Rain  falls ", {"text": "rain falls"}, {"description": "Sword wakes"}, 3, ""])
        assert events == ["Rain falls", "Sword wakes"]

    def test_channel_texts(self):
        assert build_summary_text(" short ", None) == "short"
        assert build_summary_text("a", "b") == "a\nb"
        assert build_events_text(["x", "y"]) == "1) x\n2) y"
        assert build_entities_text(["Lin"], [], [{"term": "sect"}]) == "CHARS: Lin\nKEY: sect"

    def test_entities_capped_proportionally(self):
        text = build_entities_text([f"c{i}" for i in range(80)], [f"l{i}" for i in range(20)], [], max_items=50)
        chars, locs = text.split("\n")
        assert len(chars.split(": ")[1].split(", ")) == 40
        assert len(locs.split(": ")[1].split(", ")) == 10


def _segment(number, events=None, summary_short=None, summary=None):
    return Segment(
        edition_id=1,
        number=Decimal(str(number)),
        events=json.dumps(events or []),
        summary_short=summary_short,
        summary=summary,
    )


class TestDigest:
    def test_caps_and_truncates(self):
        events = [f"event {i}" for i in range(10)] + ["x" * 300]
        digest = digest_events(events)
        assert len(digest) == MAX_EVENTS
        long = digest_events(["x" * 300])[0]
        assert len(long) == 140
        assert long.endswith("...")

    def test_summary_fallbacks(self):
        assert digest_events([], "Short one.", "Long. Text.") == ["Short one."]
        assert digest_events([], None, "First sentence. Second.") == ["First sentence."]
        assert digest_events([], None, None) == []

    def test_segment_lines(self):
        assert format_segment_line(_segment(12, ["a", "b"]), "anime") == "ep:12 | a; b"
        assert format_segment_line(_segment("12.5", ["a"]), "novel") == "ch:12.5 | a"
        assert format_segment_line(_segment(3), "manhwa") == f"ch:3 | {NO_EVENTS}"
