"""
Ranking Operations Module

This module provides the operational layer for participant ranking lists:
add, remove, full replace, reorder, and global removal of a song that left
the rankable set.

Invariants maintained here:
- For a fixed (event, participant) positions are exactly 1..N
- N never exceeds the event's ranking depth
- A participant ranks each song at most once
- Only songs in a rankable status can be ranked

Mutations on one participant's list are serialized per (event, participant)
and each runs in a single transaction. Position-shifting mutations are not
idempotent, so nothing here retries automatically.
"""

from contextlib import AsyncExitStack, asynccontextmanager
from typing import List, Optional, Sequence

from sqlalchemy import select, update, delete as sql_delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.constants import ScoringConstants, SongStatus
from queuerank.data_models.rankings import ParticipantRankings, RankingEntry
from queuerank.database.models import Ranking, RankingScore, SongRequest
from queuerank.operations.position_compactor import PositionCompactor
from queuerank.utils.locks import KeyedLocks
from queuerank.utils.logger import setup_logger
from queuerank.utils.ranking_exceptions import (
    DuplicateRankingError, InvalidReorderError, NotRankedChoiceEventError,
    RankingDepthExceededError, RankingNotFoundError, SongNotRankableError, StorageError
)

logger = setup_logger(__name__)


class RankingOperations:
    """
    Core class for participant ranking list operations.

    Provides atomic, per-participant serialized operations that keep every
    ranking list gapless, bounded and duplicate-free.
    """

    def __init__(self, database, config_service, locks: Optional[KeyedLocks] = None):
        """Initialize with database instance and event configuration service"""
        self.db = database
        self.config_service = config_service
        self.locks = locks or KeyedLocks()
        self.logger = logger

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """
        Transaction scope that rolls back on any failure and reports
        database failures as StorageError.
        """
        try:
            async with self.db.transaction() as session:
                yield session
        except SQLAlchemyError as e:
            self.logger.error(f"Storage failure during {operation}: {e}", exc_info=True)
            raise StorageError(operation, str(e)) from e

    # ============================================================================
    # Query helpers
    # ============================================================================

    @staticmethod
    async def _count(session: AsyncSession, event_id: str, participant_id: str) -> int:
        return await session.scalar(
            select(func.count(Ranking.id)).where(
                Ranking.event_id == event_id,
                Ranking.participant_id == participant_id
            )
        ) or 0

    @staticmethod
    async def _rankable_song_ids(session: AsyncSession, event_id: str, song_ids: Sequence[str]) -> set:
        if not song_ids:
            return set()
        result = await session.execute(
            select(SongRequest.id).where(
                SongRequest.event_id == event_id,
                SongRequest.id.in_(list(song_ids)),
                SongRequest.status.in_(SongStatus.RANKABLE)
            )
        )
        return set(result.scalars().all())

    async def _require_rankable(self, session: AsyncSession, event_id: str, song_ids: Sequence[str]):
        rankable = await self._rankable_song_ids(session, event_id, song_ids)
        for song_id in song_ids:
            if song_id not in rankable:
                raise SongNotRankableError(song_id)

    @staticmethod
    async def _load_rankings(session: AsyncSession, event_id: str, participant_id: str) -> List[Ranking]:
        result = await session.execute(
            select(Ranking)
            .where(
                Ranking.event_id == event_id,
                Ranking.participant_id == participant_id
            )
            .order_by(Ranking.position)
        )
        return list(result.scalars().all())

    # ============================================================================
    # Single-entry mutations
    # ============================================================================

    async def add_ranking(self, event_id: str, participant_id: str, song_id: str,
                          position: Optional[int] = None) -> int:
        """
        Add one song to a participant's ranking list.

        Args:
            event_id: Event the ranking belongs to
            participant_id: Participant adding the song
            song_id: Song to rank; must currently be rankable
            position: Optional 1-based insertion point, clamped to
                [1, count + 1]; appended when omitted

        Returns:
            The position assigned to the song

        Raises:
            SongNotRankableError: If the song is missing or not rankable
            DuplicateRankingError: If the participant already ranked the song
            RankingDepthExceededError: If the list is already full
            StorageError: If the transaction fails
        """
        async with self.locks.hold((event_id, participant_id)):
            async with self._transaction("add ranking") as session:
                config = await self.config_service.get_config(event_id, session)
                await self._require_rankable(session, event_id, [song_id])

                existing = await session.scalar(
                    select(Ranking.id).where(
                        Ranking.event_id == event_id,
                        Ranking.participant_id == participant_id,
                        Ranking.song_id == song_id
                    )
                )
                if existing:
                    raise DuplicateRankingError(song_id)

                current_count = await self._count(session, event_id, participant_id)
                if current_count >= config.ranking_depth:
                    raise RankingDepthExceededError(config.ranking_depth)

                if position is None:
                    insert_position = current_count + 1
                else:
                    insert_position = min(max(position, 1), current_count + 1)

                # Shift existing items down when inserting in the middle
                if insert_position <= current_count:
                    await session.execute(
                        update(Ranking)
                        .where(
                            Ranking.event_id == event_id,
                            Ranking.participant_id == participant_id,
                            Ranking.position >= insert_position
                        )
                        .values(position=Ranking.position + 1)
                        .execution_options(synchronize_session=False)
                    )

                session.add(Ranking(
                    event_id=event_id,
                    participant_id=participant_id,
                    song_id=song_id,
                    position=insert_position
                ))

        self.logger.info(
            f"Participant {participant_id} ranked song {song_id} at position {insert_position} "
            f"in event {event_id} ({current_count + 1}/{config.ranking_depth} slots)"
        )
        return insert_position

    async def remove_ranking(self, event_id: str, participant_id: str, song_id: str) -> int:
        """
        Remove one song from a participant's list and close the gap.

        Returns:
            Number of slots still used by the participant

        Raises:
            RankingNotFoundError: If the participant has not ranked the song
            StorageError: If the transaction fails
        """
        async with self.locks.hold((event_id, participant_id)):
            async with self._transaction("remove ranking") as session:
                ranking = await session.scalar(
                    select(Ranking).where(
                        Ranking.event_id == event_id,
                        Ranking.participant_id == participant_id,
                        Ranking.song_id == song_id
                    )
                )
                if ranking is None:
                    raise RankingNotFoundError(participant_id, song_id)

                await session.delete(ranking)
                await session.flush()
                await PositionCompactor.recompact_rankings(session, event_id, participant_id)
                remaining = await self._count(session, event_id, participant_id)

        self.logger.info(f"Participant {participant_id} removed song {song_id} from rankings in event {event_id}")
        return remaining

    # ============================================================================
    # Whole-list mutations
    # ============================================================================

    async def replace_rankings(self, event_id: str, participant_id: str,
                               ordered_song_ids: Sequence[str]) -> int:
        """
        Atomically replace a participant's whole list with the given order.

        Returns:
            Number of songs now ranked

        Raises:
            RankingDepthExceededError: If the list is longer than the depth limit
            DuplicateRankingError: If a song appears twice
            SongNotRankableError: If any song is not rankable
            StorageError: If the transaction fails
        """
        ordered_song_ids = list(ordered_song_ids)

        async with self.locks.hold((event_id, participant_id)):
            async with self._transaction("replace rankings") as session:
                config = await self.config_service.get_config(event_id, session)

                if len(ordered_song_ids) > config.ranking_depth:
                    raise RankingDepthExceededError(config.ranking_depth)

                seen = set()
                for song_id in ordered_song_ids:
                    if song_id in seen:
                        raise DuplicateRankingError(song_id)
                    seen.add(song_id)

                await self._require_rankable(session, event_id, ordered_song_ids)

                await session.execute(
                    sql_delete(Ranking)
                    .where(
                        Ranking.event_id == event_id,
                        Ranking.participant_id == participant_id
                    )
                    .execution_options(synchronize_session=False)
                )
                for position, song_id in enumerate(ordered_song_ids, start=1):
                    session.add(Ranking(
                        event_id=event_id,
                        participant_id=participant_id,
                        song_id=song_id,
                        position=position
                    ))

        self.logger.info(f"Participant {participant_id} replaced rankings in event {event_id} with {len(ordered_song_ids)} songs")
        return len(ordered_song_ids)

    async def reorder(self, event_id: str, participant_id: str, ordered_song_ids: Sequence[str]):
        """
        Reassign positions 1..N following the given order.

        Raises:
            InvalidReorderError: If the list is not exactly a permutation of
                the participant's currently ranked songs
            StorageError: If the transaction fails
        """
        ordered_song_ids = list(ordered_song_ids)

        async with self.locks.hold((event_id, participant_id)):
            async with self._transaction("reorder rankings") as session:
                rankings = await self._load_rankings(session, event_id, participant_id)
                by_song = {ranking.song_id: ranking for ranking in rankings}

                if len(ordered_song_ids) != len(set(ordered_song_ids)):
                    raise InvalidReorderError("duplicate song ids")
                if len(ordered_song_ids) != len(rankings):
                    raise InvalidReorderError(
                        f"expected {len(rankings)} songs, got {len(ordered_song_ids)}"
                    )
                for song_id in ordered_song_ids:
                    if song_id not in by_song:
                        raise InvalidReorderError(f"song {song_id} is not in the participant's rankings")

                for position, song_id in enumerate(ordered_song_ids, start=1):
                    by_song[song_id].position = position

        self.logger.info(f"Participant {participant_id} reordered {len(ordered_song_ids)} rankings in event {event_id}")

    # ============================================================================
    # Song lifecycle
    # ============================================================================

    @staticmethod
    async def _song_rankers(session: AsyncSession, event_id: str, song_id: str) -> List[str]:
        result = await session.execute(
            select(Ranking.participant_id)
            .where(Ranking.event_id == event_id, Ranking.song_id == song_id)
            .distinct()
        )
        return sorted(result.scalars().all())

    async def remove_song_globally(self, event_id: str, song_id: str) -> List[str]:
        """
        Purge a song that left the rankable set from every ranking list.

        Deletes every ranking row and the cached score for the song, then
        recompacts each participant who held it. Every affected participant
        is locked, in sorted order, before its list is touched; if someone
        ranked the song after the initial scan, the lock set is widened and
        the purge retried.

        Returns:
            Sorted ids of the participants whose lists changed
        """
        async with self._transaction("find song rankers") as session:
            locked = await self._song_rankers(session, event_id, song_id)

        while True:
            async with AsyncExitStack() as stack:
                for participant_id in locked:
                    await stack.enter_async_context(self.locks.hold((event_id, participant_id)))

                async with self._transaction("remove song globally") as session:
                    affected = await self._song_rankers(session, event_id, song_id)
                    unlocked = set(affected) - set(locked)

                    if not unlocked:
                        await session.execute(
                            sql_delete(Ranking)
                            .where(Ranking.event_id == event_id, Ranking.song_id == song_id)
                            .execution_options(synchronize_session=False)
                        )
                        await session.execute(
                            sql_delete(RankingScore)
                            .where(RankingScore.event_id == event_id, RankingScore.song_id == song_id)
                            .execution_options(synchronize_session=False)
                        )

                        for participant_id in affected:
                            await PositionCompactor.recompact_rankings(session, event_id, participant_id)

            if not unlocked:
                break
            self.logger.debug(f"Song {song_id} gained rankers {sorted(unlocked)} during removal, retrying")
            locked = sorted(set(locked) | unlocked)

        self.logger.info(f"Removed song {song_id} from {len(affected)} ranking lists in event {event_id}")
        return affected

    # ============================================================================
    # Reads
    # ============================================================================

    async def get_participant_rankings(self, event_id: str, participant_id: str) -> ParticipantRankings:
        """Get a participant's ranking list, most preferred first.

        Lists stay readable after an event leaves ranked-choice mode; the
        depth then falls back to the default.
        """
        async with self._transaction("get participant rankings") as session:
            try:
                config = await self.config_service.get_config(event_id, session)
                ranking_depth = config.ranking_depth
            except NotRankedChoiceEventError:
                ranking_depth = ScoringConstants.DEFAULT_RANKING_DEPTH
            result = await session.execute(
                select(Ranking, SongRequest)
                .join(SongRequest, SongRequest.id == Ranking.song_id)
                .where(
                    Ranking.event_id == event_id,
                    Ranking.participant_id == participant_id
                )
                .order_by(Ranking.position)
            )
            entries = [
                RankingEntry(
                    song_id=ranking.song_id,
                    position=ranking.position,
                    title=song.title,
                    artist=song.artist,
                    status=song.status,
                    added_at=ranking.added_at
                )
                for ranking, song in result.all()
            ]

        return ParticipantRankings(
            event_id=event_id,
            participant_id=participant_id,
            entries=entries,
            slots_used=len(entries),
            ranking_depth=ranking_depth
        )

    async def get_participant_positions(self, session: AsyncSession, event_id: str, participant_id: str) -> dict:
        """Map of song_id -> position for one participant"""
        result = await session.execute(
            select(Ranking.song_id, Ranking.position).where(
                Ranking.event_id == event_id,
                Ranking.participant_id == participant_id
            )
        )
        return {song_id: position for song_id, position in result.all()}

    async def count_participants(self, session: AsyncSession, event_id: str) -> int:
        """Number of participants with at least one ranking in the event"""
        return await session.scalar(
            select(func.count(func.distinct(Ranking.participant_id)))
            .where(Ranking.event_id == event_id)
        ) or 0
