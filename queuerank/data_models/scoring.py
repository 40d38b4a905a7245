"""
Scoring data models for the ranked-choice engine.

Provides immutable data transfer objects for event scoring settings,
tournament results and score board reads.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from queuerank.constants import QueueMode, ScoringConstants, ScoringMode
from queuerank.utils.ranking_exceptions import InvalidSettingsError


def parse_settings_blob(raw: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    """
    Decode an event settings blob that may be double-encoded JSON.

    Raises:
        InvalidSettingsError: If the blob is not JSON or does not decode to an object
    """
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
        if isinstance(parsed, str):
            parsed = json.loads(parsed)
    except (TypeError, ValueError):
        raise InvalidSettingsError('settings', raw)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise InvalidSettingsError('settings', raw)
    return parsed


def _positive_int(section: Dict[str, Any], key: str, default: int) -> int:
    value = section.get(key)
    if value is None:
        return default
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value) or value < 1:
        raise InvalidSettingsError(key, value)
    return int(value)


def _section(parent: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidSettingsError(key, value)
    return value


@dataclass(frozen=True)
class EventScoringConfig:
    """Ranked-choice settings for one event, parsed once from the stored blob."""
    ranking_depth: int = ScoringConstants.DEFAULT_RANKING_DEPTH
    primary_scoring_mode: str = ScoringMode.CONSENSUS
    min_rank_delta: int = ScoringConstants.DEFAULT_MIN_RANK_DELTA
    max_ranker_percentage: int = ScoringConstants.DEFAULT_MAX_RANKER_PERCENTAGE
    min_participants_for_activation: int = ScoringConstants.DEFAULT_MIN_PARTICIPANTS_FOR_ACTIVATION
    refresh_interval_seconds: int = ScoringConstants.DEFAULT_REFRESH_INTERVAL_SECONDS

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'EventScoringConfig':
        """
        Build the config from a decoded settings object.

        Missing or null keys take their defaults; present values must be valid.

        Raises:
            InvalidSettingsError: If a present value is malformed
        """
        rc = _section(settings, 'rankedChoiceSettings')
        gem = _section(rc, 'hiddenGemThreshold')

        mode = rc.get('primaryScoringMode')
        if mode is None:
            mode = ScoringMode.CONSENSUS
        elif mode not in ScoringMode.ALL:
            raise InvalidSettingsError('primaryScoringMode', mode)

        max_pct = gem.get('maxRankerPercentage')
        if max_pct is None:
            max_pct = ScoringConstants.DEFAULT_MAX_RANKER_PERCENTAGE
        elif isinstance(max_pct, bool) or not isinstance(max_pct, (int, float)) or not 0 < max_pct <= 100:
            raise InvalidSettingsError('maxRankerPercentage', max_pct)

        return cls(
            ranking_depth=_positive_int(rc, 'rankingDepth', ScoringConstants.DEFAULT_RANKING_DEPTH),
            primary_scoring_mode=mode,
            min_rank_delta=_positive_int(gem, 'minRankDelta', ScoringConstants.DEFAULT_MIN_RANK_DELTA),
            max_ranker_percentage=max_pct,
            min_participants_for_activation=_positive_int(
                rc, 'minParticipantsForActivation',
                ScoringConstants.DEFAULT_MIN_PARTICIPANTS_FOR_ACTIVATION
            ),
            refresh_interval_seconds=_positive_int(
                rc, 'refreshIntervalSeconds',
                ScoringConstants.DEFAULT_REFRESH_INTERVAL_SECONDS
            ),
        )

    @staticmethod
    def is_ranked_choice(settings: Dict[str, Any]) -> bool:
        return settings.get('queueMode') == QueueMode.RANKED_CHOICE


@dataclass(frozen=True)
class SongScore:
    """One song's standing under a single scoring policy."""
    song_id: str
    title: Optional[str]
    artist: Optional[str]
    created_at: Optional[datetime]
    copeland: int
    wins: int
    losses: int
    win_rate: float
    ranker_count: int
    avg_position: Optional[float]  # None: nobody ranked the song
    rank: int


@dataclass(frozen=True)
class HiddenGem:
    """Song ranked far better by Discovery than by Consensus."""
    song_id: str
    title: Optional[str]
    artist: Optional[str]
    consensus_rank: int
    consensus_win_rate: float
    discovery_rank: int
    discovery_win_rate: float
    rank_delta: int
    ranker_count: int
    ranker_percentage: float


@dataclass(frozen=True)
class ScoreCalculation:
    """Full result of one tournament recompute."""
    total_participants: int
    consensus_scores: List[SongScore] = field(default_factory=list)
    discovery_scores: List[SongScore] = field(default_factory=list)
    hidden_gems: List[HiddenGem] = field(default_factory=list)


@dataclass(frozen=True)
class ScoreBoardEntry:
    """Single score board row read from the snapshot."""
    song_id: str
    title: str
    artist: str
    status: str
    rank: int
    copeland: int
    wins: int
    losses: int
    win_rate: float
    ranker_count: int
    avg_position: Optional[float]
    is_hidden_gem: bool
    created_at: Optional[datetime]
    my_position: Optional[int] = None


@dataclass(frozen=True)
class ScoreBoard:
    """Community ranking under one scoring policy."""
    mode: str
    primary_mode: str
    activated: bool
    total_participants: int
    min_participants_for_activation: int
    entries: List[ScoreBoardEntry]


@dataclass(frozen=True)
class DualScoreBoard:
    """Both policies plus hidden gems, for the event operator."""
    primary_mode: str
    activated: bool
    total_participants: int
    min_participants_for_activation: int
    last_refresh: Optional[datetime]
    consensus: List[ScoreBoardEntry]
    discovery: List[ScoreBoardEntry]
    hidden_gems: List[HiddenGem]
