"""
Ranked-choice service: the engine's public surface.

Wires the configuration provider, ranking store, scoring engine and score
cache together. Request handlers call this class only; every score read
goes through the staleness check before serving from the snapshot.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.config import Config
from queuerank.constants import ScoringMode, SongStatus
from queuerank.data_models.rankings import ParticipantRankings
from queuerank.data_models.scoring import (
    DualScoreBoard, EventScoringConfig, HiddenGem, ScoreBoard, ScoreBoardEntry, ScoreCalculation
)
from queuerank.database.database import Database
from queuerank.database.models import RankingScore, SongRequest
from queuerank.operations.ranking_operations import RankingOperations
from queuerank.services.base import BaseService
from queuerank.services.configuration import EventConfigurationService
from queuerank.services.score_cache import ScoreCacheService
from queuerank.services.scoring_engine import ScoringEngineService
from queuerank.utils.locks import KeyedLocks
from queuerank.utils.ranking_exceptions import InvalidScoringModeError, SongNotFoundError
from queuerank.utils.redis_utils import RedisUtils

logger = logging.getLogger(__name__)


class RankedChoiceService(BaseService):
    """Service for ranked-choice rankings and community scores."""

    def __init__(self, database: Database, redis_client=None,
                 clock: Optional[Callable[[], datetime]] = None):
        super().__init__(database.session_factory)
        self.db = database
        self.redis_client = redis_client
        self.config_service = EventConfigurationService(database.session_factory)
        self.ranking_ops = RankingOperations(database, self.config_service, KeyedLocks())
        self.scoring_engine = ScoringEngineService(database.session_factory, self.config_service, clock=clock)
        self.score_cache = ScoreCacheService(
            database.session_factory, self.scoring_engine, redis_client=redis_client, clock=clock
        )

    @classmethod
    async def create(cls, database: Optional[Database] = None) -> 'RankedChoiceService':
        """Validate process config, initialize the database (if needed) and connect Redis when configured."""
        Config.validate()
        if database is None:
            database = Database()
        if database.engine is None:
            await database.initialize()
        redis_client = await RedisUtils.create_redis_client()
        return cls(database, redis_client=redis_client)

    async def close(self):
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.db.close()

    # ============================================================================
    # Ranking list mutations
    # ============================================================================

    async def add_ranking(self, event_id: str, participant_id: str, song_id: str,
                          position: Optional[int] = None) -> int:
        return await self.ranking_ops.add_ranking(event_id, participant_id, song_id, position)

    async def remove_ranking(self, event_id: str, participant_id: str, song_id: str) -> int:
        return await self.ranking_ops.remove_ranking(event_id, participant_id, song_id)

    async def replace_rankings(self, event_id: str, participant_id: str,
                               ordered_song_ids: Sequence[str]) -> int:
        return await self.ranking_ops.replace_rankings(event_id, participant_id, ordered_song_ids)

    async def reorder(self, event_id: str, participant_id: str, ordered_song_ids: Sequence[str]):
        await self.ranking_ops.reorder(event_id, participant_id, ordered_song_ids)

    async def remove_song_globally(self, event_id: str, song_id: str) -> List[str]:
        return await self.ranking_ops.remove_song_globally(event_id, song_id)

    async def get_participant_rankings(self, event_id: str, participant_id: str) -> ParticipantRankings:
        return await self.ranking_ops.get_participant_rankings(event_id, participant_id)

    # ============================================================================
    # Song lifecycle
    # ============================================================================

    async def update_song_status(self, event_id: str, song_id: str, status: str) -> List[str]:
        """
        Record a song status change and purge the song from every ranking
        list once it is no longer rankable.

        Returns:
            Ids of participants whose lists changed

        Raises:
            SongNotFoundError: If the song does not belong to the event
        """
        async with self.get_session("update song status") as session:
            await self.config_service.get_config(event_id, session)
            song = await session.get(SongRequest, song_id)
            if song is None or song.event_id != event_id:
                raise SongNotFoundError(song_id)
            previous = song.status
            song.status = status

        logger.info(f"Song {song_id} in event {event_id} moved from {previous} to {status}")

        if status in SongStatus.RANKABLE:
            return []
        return await self.ranking_ops.remove_song_globally(event_id, song_id)

    # ============================================================================
    # Scores
    # ============================================================================

    async def get_scores(self, event_id: str, mode: Optional[str] = None,
                         participant_id: Optional[str] = None) -> ScoreBoard:
        """
        Get the community ranking under one scoring policy.

        Args:
            event_id: Event to read
            mode: consensus or discovery; defaults to the event's primary mode
            participant_id: When given, each entry carries that participant's
                own position for the song

        Returns:
            ScoreBoard ordered by the mode's rank
        """
        config = await self.config_service.get_config(event_id)
        mode = mode or config.primary_scoring_mode
        if mode not in ScoringMode.ALL:
            raise InvalidScoringModeError(mode)

        await self.score_cache.ensure_fresh(event_id, config)

        async with self.get_session("read scores") as session:
            total_participants = await self.ranking_ops.count_participants(session, event_id)
            positions = {}
            if participant_id is not None:
                positions = await self.ranking_ops.get_participant_positions(session, event_id, participant_id)
            entries = await self._read_board(session, event_id, mode, positions)

        return ScoreBoard(
            mode=mode,
            primary_mode=config.primary_scoring_mode,
            activated=total_participants >= config.min_participants_for_activation,
            total_participants=total_participants,
            min_participants_for_activation=config.min_participants_for_activation,
            entries=entries
        )

    async def get_dual_scores(self, event_id: str) -> DualScoreBoard:
        """Both boards side by side plus hidden gems, for the event operator."""
        config = await self.config_service.get_config(event_id)
        await self.score_cache.ensure_fresh(event_id, config)

        async with self.get_session("read dual scores") as session:
            total_participants = await self.ranking_ops.count_participants(session, event_id)
            consensus = await self._read_board(session, event_id, ScoringMode.CONSENSUS)
            discovery = await self._read_board(session, event_id, ScoringMode.DISCOVERY)
            last_refresh = await self.score_cache.last_calculated_at(event_id, session)

        return DualScoreBoard(
            primary_mode=config.primary_scoring_mode,
            activated=total_participants >= config.min_participants_for_activation,
            total_participants=total_participants,
            min_participants_for_activation=config.min_participants_for_activation,
            last_refresh=last_refresh,
            consensus=consensus,
            discovery=discovery,
            hidden_gems=self._hidden_gems(consensus, discovery, total_participants)
        )

    async def refresh_scores(self, event_id: str) -> ScoreCalculation:
        """Force a recompute regardless of snapshot age."""
        config = await self.config_service.get_config(event_id)
        return await self.score_cache.refresh(event_id, config)

    async def switch_primary_mode(self, event_id: str, mode: str) -> EventScoringConfig:
        return await self.config_service.switch_primary_mode(event_id, mode)

    async def _read_board(self, session: AsyncSession, event_id: str, mode: str,
                          positions: Optional[Dict[str, int]] = None) -> List[ScoreBoardEntry]:
        """Snapshot rows for rankable songs, ordered by the mode's rank."""
        rank_column = getattr(RankingScore, f'{mode}_rank')
        result = await session.execute(
            select(RankingScore, SongRequest)
            .join(SongRequest, SongRequest.id == RankingScore.song_id)
            .where(
                RankingScore.event_id == event_id,
                SongRequest.status.in_(SongStatus.RANKABLE)
            )
            .order_by(rank_column)
        )
        positions = positions or {}
        return [
            ScoreBoardEntry(
                song_id=song.id,
                title=song.title,
                artist=song.artist,
                status=song.status,
                rank=getattr(score, f'{mode}_rank'),
                copeland=getattr(score, f'{mode}_copeland'),
                wins=getattr(score, f'{mode}_wins'),
                losses=getattr(score, f'{mode}_losses'),
                win_rate=getattr(score, f'{mode}_win_rate'),
                ranker_count=score.ranker_count,
                avg_position=score.avg_position,
                is_hidden_gem=score.is_hidden_gem,
                created_at=song.created_at,
                my_position=positions.get(song.id)
            )
            for score, song in result.all()
        ]

    @staticmethod
    def _hidden_gems(consensus: List[ScoreBoardEntry], discovery: List[ScoreBoardEntry],
                     total_participants: int) -> List[HiddenGem]:
        discovery_by_id = {entry.song_id: entry for entry in discovery}
        gems = []
        for c_entry in consensus:
            if not c_entry.is_hidden_gem:
                continue
            d_entry = discovery_by_id[c_entry.song_id]
            percentage = c_entry.ranker_count / total_participants * 100 if total_participants else 0.0
            gems.append(HiddenGem(
                song_id=c_entry.song_id,
                title=c_entry.title,
                artist=c_entry.artist,
                consensus_rank=c_entry.rank,
                consensus_win_rate=c_entry.win_rate,
                discovery_rank=d_entry.rank,
                discovery_win_rate=d_entry.win_rate,
                rank_delta=c_entry.rank - d_entry.rank,
                ranker_count=c_entry.ranker_count,
                ranker_percentage=percentage
            ))
        gems.sort(key=lambda gem: -gem.rank_delta)
        return gems
