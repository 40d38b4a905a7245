"""
Score snapshot cache invalidation.

Read-triggered staleness check for ranking_scores: there is no background
timer. Every score read asks whether the snapshot is stale and recomputes
before serving when it is.

Recomputes are single-flight per event: callers queue on an in-process lock
and re-check staleness after acquiring it, so a recompute that starts later
always reads rankings at least as new as one that started earlier. When a
Redis client is configured, a SET NX lock also keeps other processes from
recomputing the same event at the same time.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.config import Config
from queuerank.data_models.scoring import EventScoringConfig, ScoreCalculation
from queuerank.database.models import RankingScore
from queuerank.services.base import BaseService
from queuerank.services.scoring_engine import utcnow
from queuerank.utils.locks import KeyedLocks
from queuerank.utils.logger import setup_logger

logger = setup_logger(__name__)


class ScoreCacheService(BaseService):
    """Decides when cached scores are stale and triggers recomputation."""

    def __init__(self, session_factory, scoring_engine, redis_client=None,
                 clock: Optional[Callable[[], datetime]] = None):
        super().__init__(session_factory)
        self.scoring_engine = scoring_engine
        self.redis_client = redis_client
        self.clock = clock or utcnow
        self._recompute_locks = KeyedLocks()
        self.lock_seconds = Config.RECOMPUTE_LOCK_SECONDS

    async def last_calculated_at(self, event_id: str, session: Optional[AsyncSession] = None) -> Optional[datetime]:
        """Latest calculated_at across the event's snapshot, or None if there is none."""
        query = select(func.max(RankingScore.calculated_at)).where(RankingScore.event_id == event_id)
        if session is not None:
            return await session.scalar(query)
        async with self.get_session("read snapshot age") as own_session:
            return await own_session.scalar(query)

    async def scores_are_stale(self, event_id: str, refresh_interval_seconds: int) -> bool:
        """
        Check whether the snapshot must be recomputed before serving.

        Returns:
            True when no snapshot exists yet or the newest row is older than
            the refresh interval
        """
        latest = await self.last_calculated_at(event_id)
        if latest is None:
            return True
        age = (self.clock() - latest).total_seconds()
        return age > refresh_interval_seconds

    async def ensure_fresh(self, event_id: str, config: EventScoringConfig) -> bool:
        """
        Recompute the event's scores if they are stale.

        Returns:
            True if this call ran a recompute; False on a cache hit or when
            another process holds the recompute lock and a snapshot exists
        """
        if not await self.scores_are_stale(event_id, config.refresh_interval_seconds):
            logger.debug(f"Cache hit for event {event_id} scores")
            return False

        async with self._recompute_locks.hold(event_id):
            # Another caller may have refreshed while this one waited
            if not await self.scores_are_stale(event_id, config.refresh_interval_seconds):
                logger.debug(f"Scores for event {event_id} refreshed by a concurrent caller")
                return False

            logger.debug(f"Cache miss for event {event_id}, recalculating scores")
            return await self._recompute(event_id, config) is not None

    async def refresh(self, event_id: str, config: EventScoringConfig) -> ScoreCalculation:
        """Force a recompute, bypassing the staleness check."""
        async with self._recompute_locks.hold(event_id):
            logger.info(f"Forced score refresh for event {event_id}")
            return await self._recompute(event_id, config, force=True)

    async def _recompute(self, event_id: str, config: EventScoringConfig,
                         force: bool = False) -> Optional[ScoreCalculation]:
        lock_key = f"score_recompute_lock:{event_id}"
        acquired = await self._acquire_distributed_lock(lock_key)

        if not acquired and not force:
            if await self.last_calculated_at(event_id) is not None:
                logger.info(f"Score recompute for event {event_id} throttled - lock held by another process")
                return None
            # No snapshot to serve yet: computing is idempotent, so run anyway

        try:
            return await self.scoring_engine.calculate_scores(event_id, config)
        finally:
            if acquired and self.redis_client is not None:
                await self.redis_client.delete(lock_key)

    async def _acquire_distributed_lock(self, lock_key: str) -> bool:
        """Try the Redis lock; without Redis the in-process lock is the only guard."""
        if self.redis_client is None:
            return True
        is_locked = await self.redis_client.set(lock_key, "1", ex=self.lock_seconds, nx=True)
        return bool(is_locked)
