"""
Position compaction for participant ranking lists.

Renumbers a participant's rankings to 1..N in their existing relative order.
Runs inside the caller's session so it commits with the mutation that left
the gap.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.database.models import Ranking
from queuerank.utils.logger import setup_logger

logger = setup_logger(__name__)


class PositionCompactor:
    """Keeps ranking positions sequential with no gaps"""

    @staticmethod
    async def recompact_rankings(session: AsyncSession, event_id: str, participant_id: str) -> int:
        """
        Re-number a participant's rankings to 1..N.

        Args:
            session: Active session; the caller owns commit/rollback
            event_id: Event the rankings belong to
            participant_id: Participant whose list is compacted

        Returns:
            Number of rows whose position changed (0 when already gapless)
        """
        result = await session.execute(
            select(Ranking)
            .where(
                Ranking.event_id == event_id,
                Ranking.participant_id == participant_id
            )
            .order_by(Ranking.position, Ranking.added_at, Ranking.id)
        )
        rankings = result.scalars().all()

        writes = 0
        for new_position, ranking in enumerate(rankings, start=1):
            if ranking.position != new_position:
                ranking.position = new_position
                writes += 1

        if writes:
            await session.flush()
            logger.debug(f"Recompacted {writes} rankings for participant {participant_id} in event {event_id}")
        return writes
