"""
Engine-wide constants for ranked-choice scoring.

Defaults here apply whenever an event's stored settings omit a value.
"""

class ScoringConstants:
    """Defaults for per-event ranked-choice settings."""
    
    # Maximum songs a participant may rank
    DEFAULT_RANKING_DEPTH = 10
    
    # Hidden gem thresholds
    DEFAULT_MIN_RANK_DELTA = 5
    DEFAULT_MAX_RANKER_PERCENTAGE = 20
    
    # Participants needed before the community ranking is considered active
    DEFAULT_MIN_PARTICIPANTS_FOR_ACTIVATION = 5
    
    # Staleness window for cached score snapshots (seconds)
    DEFAULT_REFRESH_INTERVAL_SECONDS = 30

class ScoringMode:
    """Comparison policies applied to the same raw rankings."""
    
    CONSENSUS = "consensus"
    DISCOVERY = "discovery"
    
    ALL = (CONSENSUS, DISCOVERY)

class QueueMode:
    """Event queue modes. Only ranked-choice events accept rankings."""
    
    RANKED_CHOICE = "ranked-choice"

class SongStatus:
    """Song request lifecycle statuses owned outside the engine."""
    
    PENDING = "pending"
    QUEUED = "queued"
    NOW_PLAYING = "nowPlaying"
    PLAYED = "played"
    REJECTED = "rejected"
    
    # Statuses in which a song may appear in participant rankings
    RANKABLE = (QUEUED, PENDING)
