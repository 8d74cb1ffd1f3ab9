from decimal import Decimal

import pytest

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.crud.segment import edition_crud, segment_crud
from chapterbridge.schemas.evidence import MatchingAllEvidence, parse_evidence
from chapterbridge.services.alignment.errors import EditionNotFoundError
from chapterbridge.services.alignment.runner import load_checkpoint

from conftest import add_edition, add_segments, proposal, run_with_db


async def _seed(db):
    anime = await add_edition(db, "Anime", "anime")
    novel = await add_edition(db, "Novel", "novel")
    anime_ids = await add_segments(db, anime, [{"number": n} for n in (1, 2, "2.5")])
    await add_segments(db, novel, [{"number": n} for n in range(1, 11)])
    return anime, novel, anime_ids


def test_upsert_is_idempotent(test_settings):
    async def scenario(ctx):
        async with ctx.session() as db:
            anime, novel, ids = await _seed(db)
            await mapping_crud.upsert(db, proposal(ids[Decimal(1)], anime, 1, novel, 1, 3, 0.6))
            await mapping_crud.upsert(db, proposal(ids[Decimal(1)], anime, 1, novel, 4, 5, 0.9, algo="test-v2"))
            rows = await mapping_crud.list_for_pair(db, anime, novel)
            return rows

    rows = run_with_db(scenario, test_settings)
    assert len(rows) == 1
    row = rows[0]
    assert (row.to_segment_start, row.to_segment_end) == (Decimal(4), Decimal(5))
    assert row.confidence == pytest.approx(0.9)
    assert row.algorithm_version == "test-v2"
    assert row.status == "proposed"
    evidence = parse_evidence(row.evidence)
    assert isinstance(evidence, MatchingAllEvidence)
    assert evidence.target_range.start == 4


def test_latest_mapping_is_checkpoint(test_settings):
    async def scenario(ctx):
        async with ctx.session() as db:
            anime, novel, ids = await _seed(db)
            await mapping_crud.upsert(db, proposal(ids[Decimal("2.5")], anime, "2.5", novel, 7, 9))
            await mapping_crud.upsert(db, proposal(ids[Decimal(1)], anime, 1, novel, 1, 3))
            return await load_checkpoint(db, anime, novel), await load_checkpoint(db, novel, anime)

    checkpoint, missing = run_with_db(scenario, test_settings)
    assert checkpoint.from_number == Decimal("2.5")
    assert checkpoint.to_end == 9
    assert checkpoint.midpoint == 8
    assert missing is None


def test_edition_lookups(test_settings):
    async def scenario(ctx):
        async with ctx.session() as db:
            anime, novel, _ = await _seed(db)
            bounds = await edition_crud.bounds(db, novel)
            window = await segment_crud.list_range(db, novel, 3, "5.5")
            half = await segment_crud.get_by_number(db, anime, 2.5)
            empty = await edition_crud.bounds(db, 999)
            with pytest.raises(EditionNotFoundError):
                await edition_crud.require(db, 999)
            return bounds, [s.number for s in window], half, empty

    bounds, numbers, half, empty = run_with_db(scenario, test_settings)
    assert bounds == (Decimal(1), Decimal(10))
    assert numbers == [Decimal(3), Decimal(4), Decimal(5)]
    assert half is not None and half.number == Decimal("2.5")
    assert empty is None


def test_invalid_proposal_rejected():
    with pytest.raises(ValueError):
        proposal(1, 1, 1, 2, 5, 4)
    assert proposal(1, 1, 1, 2, 4, 5, confidence=1.4).confidence == 1.0
