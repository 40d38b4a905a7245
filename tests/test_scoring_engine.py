"""
Tests for ScoringEngineService snapshot persistence.
"""

import pytest
from sqlalchemy import select

from queuerank.database.models import RankingScore, SongRequest


async def snapshot(database, event_id):
    async with database.get_session() as session:
        result = await session.execute(
            select(RankingScore).where(RankingScore.event_id == event_id).order_by(RankingScore.song_id)
        )
        return list(result.scalars().all())


def row_values(score: RankingScore):
    return tuple(
        getattr(score, column.name) for column in RankingScore.__table__.columns
    )


class TestCalculateScores:
    """Test recompute and persistence."""

    async def test_one_row_per_rankable_song(self, service, database, make_event, make_songs, clock):
        event_id = await make_event()
        a, b, c = await make_songs(event_id, 3)
        await service.replace_rankings(event_id, 'p1', [a, b, c])
        await service.replace_rankings(event_id, 'p2', [b, c, a])
        await service.replace_rankings(event_id, 'p3', [c, a, b])

        result = await service.scoring_engine.calculate_scores(event_id)
        assert result.total_participants == 3

        rows = await snapshot(database, event_id)
        assert {row.song_id for row in rows} == {a, b, c}
        for row in rows:
            assert (row.consensus_wins, row.consensus_losses, row.consensus_copeland) == (3, 3, 0)
            assert (row.discovery_wins, row.discovery_losses, row.discovery_copeland) == (3, 3, 0)
            assert row.ranker_count == 3
            assert row.avg_position == pytest.approx(2.0)
            assert row.calculated_at == clock.now
            assert row.is_hidden_gem is False

        # Full rotation ties resolve by submission order
        ranks = {row.song_id: (row.consensus_rank, row.discovery_rank) for row in rows}
        assert ranks == {a: (1, 1), b: (2, 2), c: (3, 3)}

    async def test_unranked_song_gets_row_without_average(self, service, database, make_event, make_songs):
        event_id = await make_event()
        a, b = await make_songs(event_id, 2)
        await service.add_ranking(event_id, 'p1', a)

        await service.scoring_engine.calculate_scores(event_id)
        rows = {row.song_id: row for row in await snapshot(database, event_id)}

        assert rows[b].avg_position is None
        assert rows[b].ranker_count == 0
        assert rows[b].consensus_losses == 1
        assert rows[b].discovery_losses == 0

    async def test_recompute_is_idempotent(self, service, database, make_event, make_songs):
        event_id = await make_event()
        a, b, c, d = await make_songs(event_id, 4)
        await service.replace_rankings(event_id, 'p1', [d, a])
        await service.replace_rankings(event_id, 'p2', [b, c, a])

        await service.scoring_engine.calculate_scores(event_id)
        first = [row_values(row) for row in await snapshot(database, event_id)]
        await service.scoring_engine.calculate_scores(event_id)
        second = [row_values(row) for row in await snapshot(database, event_id)]

        assert first == second

    async def test_rows_for_songs_no_longer_rankable_are_deleted(self, service, database,
                                                                 make_event, make_songs):
        event_id = await make_event()
        a, b, c = await make_songs(event_id, 3)
        await service.replace_rankings(event_id, 'p1', [a, b, c])
        await service.scoring_engine.calculate_scores(event_id)

        # Status changed without going through the lifecycle notifier
        async with database.transaction() as session:
            song = await session.get(SongRequest, c)
            song.status = 'played'

        await service.scoring_engine.calculate_scores(event_id)
        assert {row.song_id for row in await snapshot(database, event_id)} == {a, b}

    async def test_no_participants_clears_snapshot(self, service, database, make_event, make_songs):
        event_id = await make_event()
        a, b = await make_songs(event_id, 2)
        await service.replace_rankings(event_id, 'p1', [a, b])
        await service.scoring_engine.calculate_scores(event_id)
        assert len(await snapshot(database, event_id)) == 2

        await service.replace_rankings(event_id, 'p1', [])
        result = await service.scoring_engine.calculate_scores(event_id)

        assert result.total_participants == 0
        assert result.consensus_scores == []
        assert await snapshot(database, event_id) == []

    async def test_no_songs_returns_empty(self, service, database, make_event):
        event_id = await make_event()
        result = await service.scoring_engine.calculate_scores(event_id)

        assert result.total_participants == 0
        assert result.hidden_gems == []
        assert await snapshot(database, event_id) == []

    async def test_events_do_not_share_snapshots(self, service, database, make_event, make_songs):
        first_event = await make_event()
        second_event = await make_event(name="Saturday")
        (a,) = await make_songs(first_event, 1)
        (b,) = await make_songs(second_event, 1)
        await service.add_ranking(first_event, 'p1', a)
        await service.add_ranking(second_event, 'p1', b)

        await service.scoring_engine.calculate_scores(first_event)
        await service.scoring_engine.calculate_scores(second_event)

        assert [row.song_id for row in await snapshot(database, first_event)] == [a]
        assert [row.song_id for row in await snapshot(database, second_event)] == [b]

    async def test_hidden_gem_flag_persisted(self, service, database, make_event, make_songs):
        event_id = await make_event()
        x, *rest = await make_songs(event_id, 11)
        popular, filler = rest[:9], rest[9]
        for i in range(1, 10):
            await service.replace_rankings(event_id, f'p{i}', popular)
        await service.replace_rankings(event_id, 'fan', [x, filler])

        result = await service.scoring_engine.calculate_scores(event_id)
        rows = {row.song_id: row for row in await snapshot(database, event_id)}

        assert [gem.song_id for gem in result.hidden_gems] == [x]
        assert rows[x].is_hidden_gem is True
        assert rows[x].consensus_rank == 10
        assert rows[x].discovery_rank == 5
        assert rows[x].rank_delta == 5
        assert sum(row.is_hidden_gem for row in rows.values()) == 1
