import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

Base = declarative_base()

def _new_id() -> str:
    return str(uuid.uuid4())

class Event(Base):
    """
    Event owned by the external event manager.

    Only the settings blob is read here; it carries the queue mode and the
    ranked-choice scoring settings as (possibly double-encoded) JSON text.
    """
    __tablename__ = 'events'

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(200), nullable=False)
    settings = Column(Text, default='{}')

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    songs = relationship("SongRequest", back_populates="event", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Event(id='{self.id}', name='{self.name}')>"

class SongRequest(Base):
    """
    Song submitted to an event's queue.

    The status lifecycle is owned externally; a song is rankable only while
    its status is queued or pending.
    """
    __tablename__ = 'song_requests'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id'), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    artist = Column(String(300), nullable=False)
    status = Column(String(20), nullable=False, default='pending')

    # Metadata
    created_at = Column(DateTime, default=func.now())

    # Relationships
    event = relationship("Event", back_populates="songs")

    def __repr__(self):
        return f"<SongRequest(id='{self.id}', title='{self.title}', status='{self.status}')>"

class Ranking(Base):
    """
    One entry in a participant's personal ranking list.

    For a fixed (event_id, participant_id) the positions are exactly 1..N.
    Position carries no unique constraint: shifting rows with
    ``position = position + 1`` passes through transient duplicates.
    """
    __tablename__ = 'rankings'

    id = Column(String(36), primary_key=True, default=_new_id)
    event_id = Column(String(36), ForeignKey('events.id'), nullable=False)
    participant_id = Column(String(100), nullable=False)
    song_id = Column(String(36), ForeignKey('song_requests.id'), nullable=False)
    position = Column(Integer, nullable=False)

    # Metadata
    added_at = Column(DateTime, default=func.now())

    # Relationships
    song = relationship("SongRequest")

    __table_args__ = (
        UniqueConstraint('event_id', 'participant_id', 'song_id', name='uq_participant_song_ranking'),
        CheckConstraint('position >= 1', name='ck_ranking_position_positive'),
        Index('ix_rankings_participant_position', 'event_id', 'participant_id', 'position'),
        Index('ix_rankings_event_song', 'event_id', 'song_id'),
    )

    def __repr__(self):
        return f"<Ranking(participant_id='{self.participant_id}', song_id='{self.song_id}', position={self.position})>"

class RankingScore(Base):
    """
    Cached tournament result for one song, both scoring policies side by side.

    The rows for an event form a complete point-in-time snapshot rebuilt on
    every recompute; they can always be reconstructed from rankings.
    """
    __tablename__ = 'ranking_scores'

    id = Column(Integer, primary_key=True)
    event_id = Column(String(36), ForeignKey('events.id'), nullable=False)
    song_id = Column(String(36), ForeignKey('song_requests.id'), nullable=False)

    # Consensus: unranked songs count as implicit last place
    consensus_copeland = Column(Integer, nullable=False, default=0)
    consensus_wins = Column(Integer, nullable=False, default=0)
    consensus_losses = Column(Integer, nullable=False, default=0)
    consensus_win_rate = Column(Float, nullable=False, default=0.0)
    consensus_rank = Column(Integer, nullable=False)

    # Discovery: unranked songs contribute nothing
    discovery_copeland = Column(Integer, nullable=False, default=0)
    discovery_wins = Column(Integer, nullable=False, default=0)
    discovery_losses = Column(Integer, nullable=False, default=0)
    discovery_win_rate = Column(Float, nullable=False, default=0.0)
    discovery_rank = Column(Integer, nullable=False)

    ranker_count = Column(Integer, nullable=False, default=0)
    avg_position = Column(Float, nullable=True)  # NULL when nobody ranked the song
    is_hidden_gem = Column(Boolean, nullable=False, default=False)
    calculated_at = Column(DateTime, nullable=False)

    # Relationships
    song = relationship("SongRequest")

    __table_args__ = (
        UniqueConstraint('event_id', 'song_id', name='uq_ranking_score_event_song'),
        Index('ix_ranking_scores_event_calculated', 'event_id', 'calculated_at'),
    )

    @property
    def rank_delta(self) -> int:
        return self.consensus_rank - self.discovery_rank

    def __repr__(self):
        return (f"<RankingScore(song_id='{self.song_id}', consensus_rank={self.consensus_rank}, "
                f"discovery_rank={self.discovery_rank}, gem={self.is_hidden_gem})>")
