from decimal import Decimal

import pytest

from chapterbridge.services.retrieval.vector_index import IndexEntry, VectorIndex

from conftest import DIM, blend, one_hot


def _entry(segment_id, number, vector, event_idx=0):
    return IndexEntry(segment_id=segment_id, number=Decimal(str(number)), event_idx=event_idx, vector=vector)


def test_orders_by_similarity_then_number():
    index = VectorIndex(
        [
            _entry(1, 1, one_hot(0)),
            _entry(2, 2, one_hot(1)),
            _entry(3, 3, one_hot(0)),
            _entry(4, 4, blend({0: 1.0, 1: 1.0})),
        ]
    )
    hits = index.search(one_hot(0), k=10)
    assert [h.number for h in hits] == [Decimal(1), Decimal(3), Decimal(4), Decimal(2)]
    assert hits[0].similarity == 1.0
    assert hits[2].similarity == pytest.approx(0.707107)
    assert hits[3].similarity == 0.0


def test_window_and_k():
    index = VectorIndex([_entry(i, i, one_hot(0)) for i in range(1, 11)])
    hits = index.search(one_hot(0), k=3, window_min=4, window_max="8.5")
    assert [h.number for h in hits] == [Decimal(4), Decimal(5), Decimal(6)]
    assert index.search(one_hot(0), window_min=20) == []


def test_best_event_per_segment():
    index = VectorIndex(
        [
            _entry(1, 1, one_hot(1), event_idx=0),
            _entry(1, 1, one_hot(0), event_idx=1),
            _entry(1, 1, one_hot(0), event_idx=2),
        ]
    )
    hits = index.search(one_hot(0))
    assert len(hits) == 1
    assert hits[0].event_idx == 1
    assert hits[0].similarity == 1.0


def test_negative_similarity_clipped():
    index = VectorIndex([_entry(1, 1, [-1.0, 0.0])])
    assert index.search([1.0, 0.0])[0].similarity == 0.0


def test_dimension_mismatch():
    index = VectorIndex([_entry(1, 1, one_hot(0))])
    with pytest.raises(ValueError):
        index.search([1.0, 0.0])


def test_empty_inputs():
    assert VectorIndex([]).search(one_hot(0)) == []
    assert VectorIndex([_entry(1, 1, one_hot(0))]).search([0.0] * DIM) == []


def test_zero_k_returns_nothing():
    index = VectorIndex([_entry(1, 1, one_hot(0))])
    assert index.search(one_hot(0), k=0) == []
    assert len(index.search(one_hot(0), k=1)) == 1
