"""
Ranking data models for participant ranking lists.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class RankingEntry:
    """One song in a participant's ranking list."""
    song_id: str
    position: int
    title: str
    artist: str
    status: str
    added_at: Optional[datetime]


@dataclass(frozen=True)
class ParticipantRankings:
    """A participant's full ranking list, most preferred first."""
    event_id: str
    participant_id: str
    entries: List[RankingEntry]
    slots_used: int
    ranking_depth: int

    @property
    def song_ids(self) -> List[str]:
        return [entry.song_id for entry in self.entries]
