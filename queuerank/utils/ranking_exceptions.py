"""
Custom exceptions for the ranked-choice engine with user-friendly error messages.
"""

class RankingException(Exception):
    """Base exception for ranked-choice errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

# Validation errors: surfaced to the caller, never retried

class ValidationError(RankingException):
    """Raised when a request violates a ranking rule."""
    pass

class RankingDepthExceededError(ValidationError):
    """Raised when a participant's list is already at the event's depth limit."""
    def __init__(self, ranking_depth: int):
        super().__init__(
            f"Ranking depth {ranking_depth} exceeded",
            f"Maximum {ranking_depth} songs allowed in ranking. Remove a song first."
        )
        self.ranking_depth = ranking_depth

class DuplicateRankingError(ValidationError):
    """Raised when a participant ranks the same song twice."""
    def __init__(self, song_id: str):
        super().__init__(
            f"Song {song_id} is already ranked",
            "Song is already in your rankings"
        )
        self.song_id = song_id

class SongNotRankableError(ValidationError):
    """Raised when a song does not exist or is not in a rankable status."""
    def __init__(self, song_id: str):
        super().__init__(
            f"Song {song_id} not found or not in a rankable status",
            "That song can no longer be ranked."
        )
        self.song_id = song_id

class InvalidReorderError(ValidationError):
    """Raised when a reorder list is not a permutation of the current rankings."""
    def __init__(self, reason: str):
        super().__init__(
            f"Invalid reorder: {reason}",
            "Your rankings changed. Refresh and try again."
        )

class InvalidSettingsError(ValidationError):
    """Raised when an event's stored ranked-choice settings are malformed."""
    def __init__(self, key: str, value):
        super().__init__(
            f"Invalid ranked-choice setting {key}={value!r}",
            "This event's ranking settings are invalid."
        )
        self.key = key

class InvalidScoringModeError(ValidationError):
    """Raised when a scoring mode is neither consensus nor discovery."""
    def __init__(self, mode: str):
        super().__init__(
            f"Unknown scoring mode {mode!r}",
            "Scoring mode must be consensus or discovery."
        )
        self.mode = mode

class NotRankedChoiceEventError(ValidationError):
    """Raised when an event is not configured for ranked-choice queueing."""
    def __init__(self, event_id: str):
        super().__init__(
            f"Event {event_id} is not in ranked-choice mode",
            "Event is not in ranked-choice mode"
        )

# Lookup errors

class NotFoundError(RankingException):
    """Raised when a referenced entity does not exist."""
    pass

class EventNotFoundError(NotFoundError):
    """Raised when an event is not found."""
    def __init__(self, event_id: str):
        super().__init__(
            f"Event {event_id} not found",
            "Event not found"
        )
        self.event_id = event_id

class RankingNotFoundError(NotFoundError):
    """Raised when a participant has not ranked the given song."""
    def __init__(self, participant_id: str, song_id: str):
        super().__init__(
            f"No ranking of song {song_id} for participant {participant_id}",
            "Ranking entry not found"
        )

class SongNotFoundError(NotFoundError):
    """Raised when a song request does not exist."""
    def __init__(self, song_id: str):
        super().__init__(
            f"Song {song_id} not found",
            "Song not found"
        )

# Storage errors

class StorageError(RankingException):
    """Raised when a transactional read/write fails and was rolled back."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Storage error during {operation}: {details}",
            "Internal server error"
        )
        self.operation = operation
