"""
Tests for ScoreCacheService staleness checks and single-flight recompute.
"""

import asyncio

import pytest

from queuerank.data_models.scoring import EventScoringConfig
from queuerank.services.score_cache import ScoreCacheService

REFRESH = 30


@pytest.fixture
async def ranked_event(service, make_event, make_songs):
    event_id = await make_event()
    a, b, c = await make_songs(event_id, 3)
    await service.replace_rankings(event_id, 'p1', [a, b, c])
    return event_id


@pytest.fixture
def config():
    return EventScoringConfig(refresh_interval_seconds=REFRESH)


@pytest.fixture
def redis_client(mocker):
    client = mocker.MagicMock()
    client.set = mocker.AsyncMock(return_value=True)
    client.delete = mocker.AsyncMock(return_value=1)
    return client


class TestStaleness:
    """Test the pull-based staleness decision."""

    async def test_stale_lifecycle(self, service, ranked_event, clock):
        cache = service.score_cache
        assert await cache.scores_are_stale(ranked_event, REFRESH) is True

        await service.scoring_engine.calculate_scores(ranked_event)
        assert await cache.scores_are_stale(ranked_event, REFRESH) is False

        clock.advance(REFRESH + 1)
        assert await cache.scores_are_stale(ranked_event, REFRESH) is True

    async def test_interval_boundary_is_still_fresh(self, service, ranked_event, clock):
        await service.scoring_engine.calculate_scores(ranked_event)

        clock.advance(REFRESH)
        assert await service.score_cache.scores_are_stale(ranked_event, REFRESH) is False

    async def test_last_calculated_at(self, service, ranked_event, clock):
        assert await service.score_cache.last_calculated_at(ranked_event) is None
        await service.scoring_engine.calculate_scores(ranked_event)
        assert await service.score_cache.last_calculated_at(ranked_event) == clock.now


class TestEnsureFresh:
    """Test read-triggered recompute."""

    async def test_recomputes_only_when_stale(self, service, ranked_event, config, clock, mocker):
        spy = mocker.spy(service.scoring_engine, 'calculate_scores')

        assert await service.score_cache.ensure_fresh(ranked_event, config) is True
        assert await service.score_cache.ensure_fresh(ranked_event, config) is False
        assert spy.call_count == 1

        clock.advance(REFRESH + 1)
        assert await service.score_cache.ensure_fresh(ranked_event, config) is True
        assert spy.call_count == 2

    async def test_stale_snapshot_is_rebuilt_without_redis(self, service, ranked_event, config, clock):
        cache = service.score_cache
        assert cache.redis_client is None
        await cache.ensure_fresh(ranked_event, config)
        first = await cache.last_calculated_at(ranked_event)

        clock.advance(REFRESH + 1)
        assert await cache.ensure_fresh(ranked_event, config) is True
        assert await cache.last_calculated_at(ranked_event) == clock.now
        assert clock.now > first

    async def test_concurrent_reads_recompute_once(self, service, ranked_event, config, mocker):
        spy = mocker.spy(service.scoring_engine, 'calculate_scores')

        results = await asyncio.gather(*[
            service.score_cache.ensure_fresh(ranked_event, config) for _ in range(5)
        ])

        assert spy.call_count == 1
        assert sorted(results) == [False, False, False, False, True]

    async def test_refresh_ignores_staleness(self, service, ranked_event, config, mocker):
        spy = mocker.spy(service.scoring_engine, 'calculate_scores')
        await service.score_cache.ensure_fresh(ranked_event, config)

        result = await service.score_cache.refresh(ranked_event, config)

        assert spy.call_count == 2
        assert result.total_participants == 1


class TestDistributedLock:
    """Test the optional Redis recompute lock."""

    def _cache(self, database, service, clock, redis_client):
        return ScoreCacheService(
            database.session_factory, service.scoring_engine, redis_client=redis_client, clock=clock
        )

    async def test_lock_acquired_and_released(self, database, service, ranked_event, config,
                                              clock, redis_client):
        cache = self._cache(database, service, clock, redis_client)

        assert await cache.ensure_fresh(ranked_event, config) is True

        key = f"score_recompute_lock:{ranked_event}"
        redis_client.set.assert_awaited_once_with(key, "1", ex=cache.lock_seconds, nx=True)
        redis_client.delete.assert_awaited_once_with(key)

    async def test_lock_held_elsewhere_serves_existing_snapshot(self, database, service, ranked_event,
                                                                config, clock, redis_client, mocker):
        await service.scoring_engine.calculate_scores(ranked_event)
        clock.advance(REFRESH + 1)
        redis_client.set.return_value = None
        cache = self._cache(database, service, clock, redis_client)
        spy = mocker.spy(service.scoring_engine, 'calculate_scores')

        assert await cache.ensure_fresh(ranked_event, config) is False
        assert spy.call_count == 0
        redis_client.delete.assert_not_awaited()

    async def test_lock_held_elsewhere_without_snapshot_computes(self, database, service, ranked_event,
                                                                 config, clock, redis_client, mocker):
        redis_client.set.return_value = None
        cache = self._cache(database, service, clock, redis_client)
        spy = mocker.spy(service.scoring_engine, 'calculate_scores')

        assert await cache.ensure_fresh(ranked_event, config) is True
        assert spy.call_count == 1
        redis_client.delete.assert_not_awaited()

    async def test_lock_released_when_recompute_fails(self, database, service, ranked_event,
                                                      config, clock, redis_client, mocker):
        cache = self._cache(database, service, clock, redis_client)
        mocker.patch.object(
            service.scoring_engine, 'calculate_scores', side_effect=RuntimeError("boom")
        )

        with pytest.raises(RuntimeError):
            await cache.ensure_fresh(ranked_event, config)
        redis_client.delete.assert_awaited_once()
