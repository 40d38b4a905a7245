"""
Copeland pairwise tournament for ranked-choice queues.

Computes Consensus and Discovery tallies from the same raw rankings:
- Consensus: a song a participant did not rank counts as implicit last place,
  losing to every song that participant did rank.
- Discovery: a song a participant did not rank generates no matchups for
  that participant.

Pure computation with no storage access; the scoring engine service feeds it
rows and persists the result.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from queuerank.data_models.scoring import HiddenGem, ScoreCalculation, SongScore


@dataclass(frozen=True)
class RankableSong:
    """Song eligible for ranking, as supplied by the song provider."""
    id: str
    title: Optional[str] = None
    artist: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Tally:
    """Running win/loss count for one song under one policy."""
    wins: int = 0
    losses: int = 0


class CopelandCalculator:
    """Handles Copeland tournament calculations for ranked-choice scoring"""

    def __init__(self, songs: Iterable[RankableSong]):
        self.songs: Dict[str, RankableSong] = {song.id: song for song in songs}
        self.consensus: Dict[str, Tally] = {song_id: Tally() for song_id in self.songs}
        self.discovery: Dict[str, Tally] = {song_id: Tally() for song_id in self.songs}
        self.ranker_counts: Dict[str, int] = {song_id: 0 for song_id in self.songs}
        self.position_sums: Dict[str, int] = {song_id: 0 for song_id in self.songs}
        self.total_participants = 0

    def add_participant(self, rankings: Sequence[Tuple[str, int]]):
        """
        Record one participant's ranking list.

        Args:
            rankings: (song_id, position) pairs; songs outside the rankable
                set are ignored
        """
        ranked = sorted(
            ((song_id, position) for song_id, position in rankings if song_id in self.songs),
            key=lambda item: item[1]
        )
        self.total_participants += 1

        for song_id, position in ranked:
            self.ranker_counts[song_id] += 1
            self.position_sums[song_id] += position

        ranked_ids = [song_id for song_id, _ in ranked]

        # Ranked vs ranked: earlier position wins, counted in both policies
        for i, winner in enumerate(ranked_ids):
            for loser in ranked_ids[i + 1:]:
                self.consensus[winner].wins += 1
                self.consensus[loser].losses += 1
                self.discovery[winner].wins += 1
                self.discovery[loser].losses += 1

        # Consensus only: every ranked song beats every unranked song
        ranked_set = set(ranked_ids)
        unranked_ids = [song_id for song_id in self.songs if song_id not in ranked_set]
        for unranked in unranked_ids:
            for winner in ranked_ids:
                self.consensus[winner].wins += 1
                self.consensus[unranked].losses += 1

    def avg_position(self, song_id: str) -> Optional[float]:
        """Mean position among rankers, or None when nobody ranked the song."""
        count = self.ranker_counts[song_id]
        if count == 0:
            return None
        return self.position_sums[song_id] / count

    @staticmethod
    def win_rate(wins: int, losses: int) -> float:
        total = wins + losses
        return wins / total if total > 0 else 0.0

    @staticmethod
    def ordering_key(score: SongScore):
        """
        Deterministic total order: Copeland desc, ranker count desc, average
        position asc with no-data last, submission time asc, song id asc.
        """
        return (
            -score.copeland,
            -score.ranker_count,
            score.avg_position is None,
            score.avg_position if score.avg_position is not None else 0.0,
            score.created_at is None,
            score.created_at or datetime.min,
            score.song_id,
        )

    def build_score_list(self, tally: Dict[str, Tally]) -> List[SongScore]:
        """Derive per-song values from a tally and assign 1-based ranks."""
        scores = []
        for song_id, song in self.songs.items():
            t = tally[song_id]
            scores.append(SongScore(
                song_id=song_id,
                title=song.title,
                artist=song.artist,
                created_at=song.created_at,
                copeland=t.wins - t.losses,
                wins=t.wins,
                losses=t.losses,
                win_rate=self.win_rate(t.wins, t.losses),
                ranker_count=self.ranker_counts[song_id],
                avg_position=self.avg_position(song_id),
                rank=0,
            ))

        scores.sort(key=self.ordering_key)
        return [
            replace(score, rank=index)
            for index, score in enumerate(scores, start=1)
        ]

    @staticmethod
    def is_hidden_gem(consensus_rank: int, discovery_rank: int, ranker_count: int,
                      total_participants: int, min_rank_delta: int,
                      max_ranker_percentage: float) -> bool:
        """Both thresholds must hold: a large rank jump and a small ranker share."""
        if total_participants <= 0:
            return False
        rank_delta = consensus_rank - discovery_rank
        ranker_percentage = ranker_count / total_participants * 100
        return rank_delta >= min_rank_delta and ranker_percentage < max_ranker_percentage

    def detect_hidden_gems(self, consensus_scores: List[SongScore], discovery_scores: List[SongScore],
                           min_rank_delta: int, max_ranker_percentage: float) -> List[HiddenGem]:
        """Find hidden gems, sorted by rank delta descending."""
        discovery_by_id = {score.song_id: score for score in discovery_scores}
        gems = []
        for c_score in consensus_scores:
            d_score = discovery_by_id[c_score.song_id]
            if not self.is_hidden_gem(c_score.rank, d_score.rank, c_score.ranker_count,
                                      self.total_participants, min_rank_delta, max_ranker_percentage):
                continue
            gems.append(HiddenGem(
                song_id=c_score.song_id,
                title=c_score.title,
                artist=c_score.artist,
                consensus_rank=c_score.rank,
                consensus_win_rate=c_score.win_rate,
                discovery_rank=d_score.rank,
                discovery_win_rate=d_score.win_rate,
                rank_delta=c_score.rank - d_score.rank,
                ranker_count=c_score.ranker_count,
                ranker_percentage=c_score.ranker_count / self.total_participants * 100,
            ))

        # Stable sort keeps consensus order among equal deltas
        gems.sort(key=lambda gem: -gem.rank_delta)
        return gems

    def calculate(self, min_rank_delta: int, max_ranker_percentage: float) -> ScoreCalculation:
        """Run the tournament over every participant added so far."""
        if not self.songs or self.total_participants == 0:
            return ScoreCalculation(total_participants=0)

        consensus_scores = self.build_score_list(self.consensus)
        discovery_scores = self.build_score_list(self.discovery)
        hidden_gems = self.detect_hidden_gems(
            consensus_scores, discovery_scores, min_rank_delta, max_ranker_percentage
        )
        return ScoreCalculation(
            total_participants=self.total_participants,
            consensus_scores=consensus_scores,
            discovery_scores=discovery_scores,
            hidden_gems=hidden_gems,
        )

    @classmethod
    def run(cls, songs: Iterable[RankableSong],
            participant_rankings: Dict[str, Sequence[Tuple[str, int]]],
            min_rank_delta: int, max_ranker_percentage: float) -> ScoreCalculation:
        """
        Convenience entry point: tally every participant and build the result.

        Args:
            songs: Current rankable songs
            participant_rankings: participant_id -> (song_id, position) pairs
            min_rank_delta: Hidden gem minimum consensus-minus-discovery rank gap
            max_ranker_percentage: Hidden gem exclusive ceiling on ranker share

        Returns:
            ScoreCalculation with both score lists and hidden gems
        """
        calculator = cls(songs)
        for participant_id in sorted(participant_rankings):
            calculator.add_participant(participant_rankings[participant_id])
        return calculator.calculate(min_rank_delta, max_ranker_percentage)
