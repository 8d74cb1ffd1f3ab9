from dataclasses import dataclass
from decimal import Decimal

from chapterbridge.services.alignment.full_range import fallback_window
from chapterbridge.services.alignment.report import summarize_mappings
from chapterbridge.services.alignment.windowing import Window, WindowConfig, initial_window, widen_window

BOUNDS = (Decimal(1), Decimal(500))


class TestWindows:
    def test_initial_window_around_checkpoint(self):
        window = initial_window(100, BOUNDS)
        assert (window.start, window.end) == (Decimal(75), Decimal(145))
        assert window.width == 71

    def test_initial_window_grows_forward_at_start(self):
        window = initial_window(0, BOUNDS)
        assert (window.start, window.end) == (Decimal(1), Decimal(58))

    def test_initial_window_clamped_to_bounds(self):
        window = initial_window(40, (Decimal(1), Decimal(50)))
        assert (window.start, window.end) == (Decimal(1), Decimal(50))

    def test_max_size_cut(self):
        cfg = WindowConfig(before=150, after=150, min_size=70, max_size=200)
        window = initial_window(250, BOUNDS, cfg)
        assert window.width == 200
        assert window.start == 100

    def test_widen_splits_growth(self):
        widened = widen_window(Window(Decimal(75), Decimal(145)), BOUNDS)
        assert (widened.start, widened.end) == (Decimal(50), Decimal(170))

    def test_widen_stops_at_max(self):
        assert widen_window(Window(Decimal(1), Decimal(200)), BOUNDS) is None

    def test_widen_stops_at_bounds(self):
        assert widen_window(Window(Decimal(1), Decimal(50)), (Decimal(1), Decimal(50))) is None

    def test_contains(self):
        window = Window(Decimal(10), Decimal(20))
        assert window.contains("12.5")
        assert not window.contains(21)
        assert window.to_dict() == {"start": 10, "end": 20}

    def test_fallback_window_proportional(self):
        window = fallback_window(
            6,
            Window(Decimal(1), Decimal(11)),
            Window(Decimal(1), Decimal(201)),
            40,
        )
        assert (window.start, window.end) == (Decimal(81), Decimal(121))

    def test_fallback_window_clamped(self):
        window = fallback_window(1, Window(Decimal(1), Decimal(11)), Window(Decimal(1), Decimal(201)), 40)
        assert (window.start, window.end) == (Decimal(1), Decimal(21))


@dataclass
class Row:
    segment_number: Decimal
    to_segment_start: Decimal
    to_segment_end: Decimal
    confidence: float


class TestReport:
    def test_empty(self):
        assert summarize_mappings([]) == {"count": 0}

    def test_statistics(self):
        rows = [
            Row(Decimal(1), Decimal(1), Decimal(3), 0.9),
            Row(Decimal(2), Decimal(4), Decimal(30), 0.8),
            Row(Decimal(3), Decimal(2), Decimal(5), 0.4),
            Row(Decimal(4), Decimal(60), Decimal(62), 0.7),
        ]
        report = summarize_mappings(reversed(rows))
        assert report["count"] == 4
        assert report["width"]["max"] == 27
        assert report["width"]["histogram"] == {"1-5": 3, "6-10": 0, "11-20": 0, "21-50": 1, ">50": 0}
        assert [j["from"] for j in report["jumps"]["backward"]] == [3]
        assert report["jumps"]["max_forward"] == 58.0
        assert [o["from"] for o in report["outliers"]] == [2, 3]
        assert report["widest"][0]["from"] == 2
        assert report["largest_jumps"][0]["from"] == 4
        assert len(report["recommendations"]) == 3
