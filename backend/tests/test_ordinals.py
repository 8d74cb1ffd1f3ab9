from decimal import Decimal

import pytest

from chapterbridge.services.alignment.ordinals import (
    floor_ordinal,
    format_ordinal,
    midpoint,
    ordinal_json,
    to_ordinal,
)
from chapterbridge.services.alignment.ranges import (
    cap_width,
    cluster_containing,
    cluster_numbers,
    contiguous_span,
    overlap_length,
    overlap_ratio,
    range_width,
)


class TestOrdinals:
    def test_float_keeps_decimal_representation(self):
        assert to_ordinal(12.5) == Decimal("12.5")
        assert to_ordinal(0.1) == Decimal("0.1")

    def test_accepts_int_str_and_decimal(self):
        assert to_ordinal(7) == Decimal(7)
        assert to_ordinal(" 3.25 ") == Decimal("3.25")
        assert to_ordinal(Decimal("4")) == Decimal(4)

    @pytest.mark.parametrize("value", [True, None, "abc", float("nan"), float("inf"), [1]])
    def test_rejects_invalid(self, value):
        with pytest.raises(ValueError):
            to_ordinal(value)

    def test_floor_truncates_downwards(self):
        assert floor_ordinal("12.5") == 12
        assert floor_ordinal(Decimal("12.00")) == 12
        assert floor_ordinal(-0.5) == -1

    def test_midpoint_is_floored(self):
        assert midpoint(10, 13) == Decimal(11)
        assert midpoint(10, 10) == Decimal(10)
        assert midpoint("12.5", 14) == Decimal(13)

    def test_format_and_json(self):
        assert format_ordinal(Decimal("12.00")) == "12"
        assert format_ordinal("12.50") == "12.5"
        assert ordinal_json(Decimal("12.00")) == 12
        assert isinstance(ordinal_json(Decimal("12.00")), int)
        assert ordinal_json("12.5") == 12.5


class TestRanges:
    def test_width_and_overlap(self):
        assert range_width(10, 10) == 1
        assert range_width(100, 110) == 11
        assert overlap_length(100, 110, 105, 108) == 4
        assert overlap_length(100, 110, 200, 205) == 0
        assert overlap_ratio(100, 110, 105, 108) == 1.0
        assert overlap_ratio(1, 4, 3, 10) == pytest.approx(0.5)

    def test_cluster_numbers_gap(self):
        clusters = cluster_numbers([1, 2, 4, 9, 10, 20])
        assert [(c.start, c.end) for c in clusters] == [(1, 4), (9, 10), (20, 20)]
        assert clusters[0].weight == 3.0

    def test_cluster_weights(self):
        weights = {Decimal(1): 2.0, Decimal(2): 1.0, Decimal(9): 5.0}
        clusters = cluster_numbers([1, 2, 9], gap=2, weights=weights)
        assert [c.weight for c in clusters] == [3.0, 5.0]
        assert cluster_containing(clusters, 9).start == 9
        assert cluster_containing(clusters, 5) is None

    def test_cap_width_recenters(self):
        start, end, capped = cap_width(1, 30, 10)
        assert capped is True
        assert (start, end) == (Decimal(10), Decimal(19))
        assert range_width(start, end) == 10

    def test_cap_width_respects_floor(self):
        start, end, capped = cap_width(20, 49, 10, floor=30)
        assert capped is True
        assert start == 30
        assert end == 39

    def test_cap_width_noop_when_narrow(self):
        assert cap_width(5, 8, 10) == (Decimal(5), Decimal(8), False)

    def test_contiguous_span_starts_from_lowest(self):
        assert contiguous_span([7, 5, 30, 6]) == (Decimal(5), Decimal(7))
        with pytest.raises(ValueError):
            contiguous_span([])
