"""
Copeland Scoring Engine Service

Recomputes an event's community ranking from every participant's ranking list
and persists the result as a full-replacement snapshot in ranking_scores.

Key Features:
- Read, compute and write inside one transaction (no torn snapshots)
- Native upsert keyed on (event_id, song_id) for every rankable song
- Rows for songs that left the rankable set are deleted in the same pass
- Idempotent: unchanged rankings and clock give identical rows
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, delete as sql_delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.constants import SongStatus
from queuerank.data_models.scoring import EventScoringConfig, ScoreCalculation
from queuerank.database.models import Ranking, RankingScore, SongRequest
from queuerank.services.base import BaseService
from queuerank.utils.copeland import CopelandCalculator, RankableSong
from queuerank.utils.logger import setup_logger

logger = setup_logger(__name__)

# Columns rewritten on every upsert
_SCORE_COLUMNS = (
    'consensus_copeland', 'consensus_wins', 'consensus_losses', 'consensus_win_rate', 'consensus_rank',
    'discovery_copeland', 'discovery_wins', 'discovery_losses', 'discovery_win_rate', 'discovery_rank',
    'ranker_count', 'avg_position', 'is_hidden_gem', 'calculated_at',
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScoringEngineService(BaseService):
    """Service for Copeland tournament recomputation and snapshot persistence."""

    def __init__(self, session_factory, config_service, clock: Optional[Callable[[], datetime]] = None):
        super().__init__(session_factory)
        self.config_service = config_service
        self.clock = clock or utcnow

    async def calculate_scores(self, event_id: str, config: Optional[EventScoringConfig] = None) -> ScoreCalculation:
        """
        Recompute and persist the score snapshot for an event.

        Args:
            event_id: Event to score
            config: Already-loaded settings; read from the event when omitted

        Returns:
            ScoreCalculation with Consensus and Discovery lists and hidden gems;
            empty when there are no rankable songs or no participants
        """
        async with self.get_session("calculate scores") as session:
            if config is None:
                config = await self.config_service.get_config(event_id, session)
            return await self.calculate_in_session(session, event_id, config)

    async def calculate_in_session(self, session: AsyncSession, event_id: str,
                                   config: EventScoringConfig) -> ScoreCalculation:
        """Run the full read-compute-write sequence inside the caller's transaction."""
        participant_rankings = await self._fetch_participant_rankings(session, event_id)
        songs = await self._fetch_rankable_songs(session, event_id)

        if not songs or not participant_rankings:
            await session.execute(
                sql_delete(RankingScore)
                .where(RankingScore.event_id == event_id)
                .execution_options(synchronize_session=False)
            )
            logger.info(
                f"Cleared scores for event {event_id}: {len(songs)} rankable songs, "
                f"{len(participant_rankings)} participants"
            )
            return ScoreCalculation(total_participants=0)

        calculation = CopelandCalculator.run(
            songs,
            participant_rankings,
            min_rank_delta=config.min_rank_delta,
            max_ranker_percentage=config.max_ranker_percentage
        )

        await self._persist(session, event_id, calculation)

        logger.info(
            f"Scored {len(calculation.consensus_scores)} songs for event {event_id} from "
            f"{calculation.total_participants} participants, {len(calculation.hidden_gems)} hidden gems"
        )
        return calculation

    async def _fetch_participant_rankings(self, session: AsyncSession, event_id: str) -> Dict[str, List[Tuple[str, int]]]:
        """All rankings for the event grouped by participant, most preferred first."""
        result = await session.execute(
            select(Ranking.participant_id, Ranking.song_id, Ranking.position)
            .where(Ranking.event_id == event_id)
            .order_by(Ranking.participant_id, Ranking.position)
        )
        grouped: Dict[str, List[Tuple[str, int]]] = defaultdict(list)
        for participant_id, song_id, position in result.all():
            grouped[participant_id].append((song_id, position))
        return dict(grouped)

    async def _fetch_rankable_songs(self, session: AsyncSession, event_id: str) -> List[RankableSong]:
        result = await session.execute(
            select(SongRequest.id, SongRequest.title, SongRequest.artist, SongRequest.created_at)
            .where(
                SongRequest.event_id == event_id,
                SongRequest.status.in_(SongStatus.RANKABLE)
            )
            .order_by(SongRequest.created_at, SongRequest.id)
        )
        return [
            RankableSong(id=song_id, title=title, artist=artist, created_at=created_at)
            for song_id, title, artist, created_at in result.all()
        ]

    async def _persist(self, session: AsyncSession, event_id: str, calculation: ScoreCalculation):
        """Upsert a row per scored song, then drop rows for songs not written."""
        calculated_at = self.clock()
        discovery_by_id = {score.song_id: score for score in calculation.discovery_scores}
        gem_ids = {gem.song_id for gem in calculation.hidden_gems}

        rows = []
        for c_score in calculation.consensus_scores:
            d_score = discovery_by_id[c_score.song_id]
            rows.append({
                'event_id': event_id,
                'song_id': c_score.song_id,
                'consensus_copeland': c_score.copeland,
                'consensus_wins': c_score.wins,
                'consensus_losses': c_score.losses,
                'consensus_win_rate': c_score.win_rate,
                'consensus_rank': c_score.rank,
                'discovery_copeland': d_score.copeland,
                'discovery_wins': d_score.wins,
                'discovery_losses': d_score.losses,
                'discovery_win_rate': d_score.win_rate,
                'discovery_rank': d_score.rank,
                'ranker_count': c_score.ranker_count,
                'avg_position': c_score.avg_position,
                'is_hidden_gem': c_score.song_id in gem_ids,
                'calculated_at': calculated_at,
            })

        await session.execute(self._upsert_statement(session, rows))

        written = [row['song_id'] for row in rows]
        await session.execute(
            sql_delete(RankingScore)
            .where(
                RankingScore.event_id == event_id,
                RankingScore.song_id.not_in(written)
            )
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _upsert_statement(session: AsyncSession, rows: List[dict]):
        """Build an INSERT ... ON CONFLICT (event_id, song_id) DO UPDATE for the session's dialect."""
        # Get database dialect for cross-database compatibility
        dialect = session.bind.dialect.name
        insert = postgresql.insert if dialect == 'postgresql' else sqlite.insert

        stmt = insert(RankingScore).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=['event_id', 'song_id'],
            set_={column: stmt.excluded[column] for column in _SCORE_COLUMNS}
        )
