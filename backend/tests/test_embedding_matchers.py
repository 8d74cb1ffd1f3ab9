"""Voting, greedy and channel matchers against an in-memory database."""

from decimal import Decimal

import pytest

from chapterbridge.crud.mapping import mapping_crud
from chapterbridge.schemas.evidence import ChannelEvidence, GreedyEvidence, VotingEvidence, parse_evidence
from chapterbridge.services.alignment.channel import ChannelAligner
from chapterbridge.services.alignment.errors import EditionNotFoundError
from chapterbridge.services.alignment.greedy import GreedyAligner
from chapterbridge.services.alignment.voting import VotingAligner, VotingOptions

from conftest import (
    add_channel_vectors,
    add_edition,
    add_event_vectors,
    add_segments,
    blend,
    one_hot,
    run_with_db,
)


async def _seed_events(db, source_events, target_count=12):
    anime = await add_edition(db, "Anime", "anime")
    novel = await add_edition(db, "Novel", "novel")
    novel_ids = await add_segments(db, novel, [{"number": n} for n in range(1, target_count + 1)])
    await add_event_vectors(db, novel, novel_ids, {n: [one_hot(n)] for n in range(1, target_count + 1)})
    anime_ids = await add_segments(db, anime, [{"number": n} for n in source_events])
    await add_event_vectors(
        db,
        anime,
        anime_ids,
        {n: [one_hot(slot) for slot in slots] for n, slots in source_events.items()},
    )
    return anime, novel


VOTING_EVENTS = {1: [1, 2], 2: [4], 3: [40], 4: [6, 7]}


def _ranges(rows):
    return [(r.segment_number, r.to_segment_start, r.to_segment_end) for r in rows]


class TestVotingAligner:
    def test_run(self, test_settings):
        async def scenario(ctx):
            async with ctx.session() as db:
                anime, novel = await _seed_events(db, VOTING_EVENTS)
                summary = await VotingAligner(db).run(anime, novel)
                rows = await mapping_crud.list_for_pair(db, anime, novel)
                return summary, rows

        summary, rows = run_with_db(scenario, test_settings)
        assert (summary.matched_count, summary.skipped_count, summary.errored_count) == (3, 1, 0)
        assert summary.outcomes[2].reason.startswith("below-min-confidence")
        assert _ranges(rows) == [
            (Decimal(1), Decimal(1), Decimal(2)),
            (Decimal(2), Decimal(4), Decimal(4)),
            (Decimal(4), Decimal(6), Decimal(7)),
        ]
        assert [r.confidence for r in rows] == pytest.approx([0.5, 1.0, 0.5])
        for row in rows:
            assert row.status == "proposed"
            assert row.algorithm_version == "event-v1"

        evidence = parse_evidence(rows[0].evidence)
        assert isinstance(evidence, VotingEvidence)
        assert evidence.event_count == 2
        assert evidence.window is None
        assert parse_evidence(rows[1].evidence).window.end == 81

    def test_deterministic_rerun(self, test_settings):
        async def scenario(ctx):
            async with ctx.session() as db:
                anime, novel = await _seed_events(db, VOTING_EVENTS)
                first = await VotingAligner(db, options=VotingOptions(resume=False)).run(anime, novel)
                second = await VotingAligner(db, options=VotingOptions(resume=False)).run(anime, novel)
                resumed = await VotingAligner(db).run(anime, novel)
                rows = await mapping_crud.list_for_pair(db, anime, novel)
                return first, second, resumed, rows

        first, second, resumed, rows = run_with_db(scenario, test_settings)
        assert first.to_dict()["units"] == second.to_dict()["units"]
        assert resumed.outcomes == []
        assert len(rows) == 3

    def test_forward_jump_rejected(self, test_settings):
        async def scenario(ctx):
            async with ctx.session() as db:
                anime, novel = await _seed_events(db, {1: [1], 2: [5]})
                options = VotingOptions(max_forward_jump=1)
                return await VotingAligner(db, options=options).run(anime, novel)

        summary = run_with_db(scenario, test_settings)
        assert summary.matched_count == 1
        assert summary.outcomes[1].status == "skipped"
        assert summary.outcomes[1].reason.startswith("forward-jump")

    def test_missing_edition_is_fatal(self, test_settings):
        async def scenario(ctx):
            async with ctx.session() as db:
                with pytest.raises(EditionNotFoundError):
                    await VotingAligner(db).run(1, 2)

        run_with_db(scenario, test_settings)


class TestGreedyAligner:
    def test_run(self, test_settings):
        events = {1: [2, 3], 2: [30], 3: [5], 4: [1]}

        async def scenario(ctx):
            async with ctx.session() as db:
                anime, novel = await _seed_events(db, events, target_count=40)
                summary = await GreedyAligner(db).run(anime, novel)
                rows = await mapping_crud.list_for_pair(db, anime, novel)
                return summary, rows

        summary, rows = run_with_db(scenario, test_settings)
        assert [o.status for o in summary.outcomes] == ["matched", "skipped", "matched", "skipped"]
        assert summary.outcomes[1].reason.startswith("progression-jump")
        assert summary.outcomes[3].reason.startswith("insufficient-matches")
        assert _ranges(rows) == [
            (Decimal(1), Decimal(2), Decimal(3)),
            (Decimal(3), Decimal(5), Decimal(5)),
        ]
        evidence = parse_evidence(rows[1].evidence)
        assert isinstance(evidence, GreedyEvidence)
        assert evidence.units_advanced == 2
        assert evidence.jump_from_previous == 2
        assert (evidence.window.start, evidence.window.end) == (3, 33)


class TestChannelAligner:
    def test_run(self, test_settings):
        async def scenario(ctx):
            async with ctx.session() as db:
                anime = await add_edition(db, "Anime", "anime")
                novel = await add_edition(db, "Novel", "novel")
                novel_ids = await add_segments(
                    db,
                    novel,
                    [
                        {"number": n, "time_context": "present", "characters": ["Lin"] if n == 3 else []}
                        for n in range(1, 9)
                    ],
                )
                await add_channel_vectors(
                    db,
                    novel,
                    novel_ids,
                    {
                        n: {"summary": one_hot(n), "events": one_hot(n), "entities": one_hot(n)}
                        for n in range(1, 9)
                    },
                )
                anime_ids = await add_segments(
                    db,
                    anime,
                    [
                        {"number": 1, "time_context": "present", "characters": ["lin"]},
                        {"number": 2, "time_context": "flashback"},
                    ],
                )
                await add_channel_vectors(
                    db,
                    anime,
                    anime_ids,
                    {
                        1: {"summary": one_hot(3), "events": one_hot(3), "entities": one_hot(3)},
                        2: {"summary": blend({5: 1.0, 6: 1.0}), "events": one_hot(6)},
                    },
                )
                summary = await ChannelAligner(db).run(anime, novel)
                rows = await mapping_crud.list_for_pair(db, anime, novel)
                return summary, rows

        summary, rows = run_with_db(scenario, test_settings)
        assert summary.matched_count == 2
        assert _ranges(rows) == [
            (Decimal(1), Decimal(3), Decimal(3)),
            (Decimal(2), Decimal(6), Decimal(6)),
        ]
        first = parse_evidence(rows[0].evidence)
        assert isinstance(first, ChannelEvidence)
        assert first.scores.final == pytest.approx(1.02)
        assert first.entity_overlap["characters"] == ["lin"]
        assert rows[0].confidence == 1.0
        second = parse_evidence(rows[1].evidence)
        assert second.time_context == {"from": "flashback", "to": "present"}


@pytest.mark.parametrize("aligner_cls", [VotingAligner, GreedyAligner])
def test_unit_without_event_fingerprints_is_skipped(test_settings, aligner_cls):
    async def scenario(ctx):
        async with ctx.session() as db:
            anime, novel = await _seed_events(db, {1: [1], 2: [], 3: [3]})
            return await aligner_cls(db).run(anime, novel)

    summary = run_with_db(scenario, test_settings)
    assert [o.from_number for o in summary.outcomes] == [Decimal(1), Decimal(2), Decimal(3)]
    assert [o.status for o in summary.outcomes] == ["matched", "skipped", "matched"]
    assert summary.outcomes[1].reason == "no-event-fingerprints"
