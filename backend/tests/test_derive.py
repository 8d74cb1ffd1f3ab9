from decimal import Decimal

import pytest

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.schemas.evidence import DeriveEvidence, parse_evidence
from chapterbridge.services.alignment.derive import DeriveAligner

from conftest import add_edition, add_segments, proposal, run_with_db


def test_derive_through_pivot(test_settings):
    async def scenario(ctx):
        async with ctx.session() as db:
            anime = await add_edition(db, "Anime", "anime")
            novel = await add_edition(db, "Novel", "novel")
            manhwa = await add_edition(db, "Manhwa", "manhwa")
            anime_ids = await add_segments(db, anime, [{"number": 1}, {"number": 2}])
            manhwa_ids = await add_segments(db, manhwa, [{"number": 1}, {"number": 2}])

            await mapping_crud.upsert(db, proposal(anime_ids[Decimal(1)], anime, 1, novel, 100, 110, 0.9))
            await mapping_crud.upsert(db, proposal(anime_ids[Decimal(2)], anime, 2, novel, 300, 305, 0.9))
            await mapping_crud.upsert(db, proposal(manhwa_ids[Decimal(1)], manhwa, 1, novel, 105, 108, 0.8))
            await mapping_crud.upsert(db, proposal(manhwa_ids[Decimal(2)], manhwa, 2, novel, 200, 205, 0.95))

            summary = await DeriveAligner(db).run(anime, manhwa, novel)
            rows = await mapping_crud.list_for_pair(db, anime, manhwa)
            return summary, rows, novel

    summary, rows, novel = run_with_db(scenario, test_settings)
    assert summary.matched_count == 1
    assert summary.skipped_count == 1
    assert summary.outcomes[1].reason == "no-pivot-overlap"

    assert len(rows) == 1
    row = rows[0]
    assert (row.to_segment_start, row.to_segment_end) == (Decimal(1), Decimal(1))
    assert row.confidence == pytest.approx(0.72)
    assert row.algorithm_version == "derived-v1"

    evidence = parse_evidence(row.evidence)
    assert isinstance(evidence, DeriveEvidence)
    assert evidence.pivot_edition_id == novel
    assert (evidence.source_to_pivot.start, evidence.source_to_pivot.end) == (100, 110)
    assert (evidence.chosen_target_to_pivot.start, evidence.chosen_target_to_pivot.end) == (105, 108)
    assert evidence.overlap_len == 4
    assert evidence.conf_source == pytest.approx(0.9)
    assert evidence.conf_target == pytest.approx(0.8)
    assert [p.target_number for p in evidence.kept_pairs] == [1]
