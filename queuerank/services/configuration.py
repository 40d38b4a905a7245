"""
Event configuration service for the ranked-choice engine.

Parses each event's stored settings blob into a typed EventScoringConfig,
caching the parsed result until the stored blob changes.
"""

import json
import logging
from typing import Dict, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession

from queuerank.constants import ScoringMode
from queuerank.data_models.scoring import EventScoringConfig, parse_settings_blob
from queuerank.database.models import Event
from queuerank.services.base import BaseService
from queuerank.utils.ranking_exceptions import (
    EventNotFoundError, InvalidScoringModeError, NotRankedChoiceEventError
)

logger = logging.getLogger(__name__)

class EventConfigurationService(BaseService):
    """Supplies per-event ranked-choice settings with simple caching."""

    def __init__(self, session_factory):
        """
        Initialize configuration service with session factory.

        Args:
            session_factory: Async session factory from Database class
        """
        super().__init__(session_factory)
        # event_id -> (raw settings text, parsed config)
        self._cache: Dict[str, Tuple[str, EventScoringConfig]] = {}

    async def get_config(self, event_id: str, session: Optional[AsyncSession] = None) -> EventScoringConfig:
        """
        Get the ranked-choice settings for an event.

        Args:
            event_id: Event to look up
            session: Optional session to read through, so the lookup joins
                the caller's transaction

        Returns:
            Parsed EventScoringConfig

        Raises:
            EventNotFoundError: If the event does not exist
            NotRankedChoiceEventError: If the event is not in ranked-choice mode
            InvalidSettingsError: If the stored settings are malformed
        """
        if session is not None:
            event = await session.get(Event, event_id)
            return self._parse(event_id, event)

        async with self.get_session("load event settings") as own_session:
            event = await own_session.get(Event, event_id)
            return self._parse(event_id, event)

    def _parse(self, event_id: str, event: Optional[Event]) -> EventScoringConfig:
        if event is None:
            raise EventNotFoundError(event_id)

        raw = event.settings or ''
        cached = self._cache.get(event_id)
        if cached and cached[0] == raw:
            return cached[1]

        settings = parse_settings_blob(raw)
        if not EventScoringConfig.is_ranked_choice(settings):
            raise NotRankedChoiceEventError(event_id)

        config = EventScoringConfig.from_settings(settings)
        self._cache[event_id] = (raw, config)
        logger.debug(f"Parsed ranked-choice settings for event {event_id}: {config}")
        return config

    async def switch_primary_mode(self, event_id: str, mode: str) -> EventScoringConfig:
        """
        Switch the event's primary scoring mode and persist the settings blob.

        Raises:
            InvalidScoringModeError: If mode is not consensus or discovery
            EventNotFoundError: If the event does not exist
            NotRankedChoiceEventError: If the event is not in ranked-choice mode
        """
        if mode not in ScoringMode.ALL:
            raise InvalidScoringModeError(mode)

        async with self.get_session("switch primary scoring mode") as session:
            event = await session.get(Event, event_id)
            # Validates existence, mode and the rest of the blob
            self._parse(event_id, event)

            settings = parse_settings_blob(event.settings)
            ranked_choice = dict(settings.get('rankedChoiceSettings') or {})
            ranked_choice['primaryScoringMode'] = mode
            settings['rankedChoiceSettings'] = ranked_choice
            event.settings = json.dumps(settings)

            config = self._parse(event_id, event)

        logger.info(f"Primary scoring mode for event {event_id} switched to {mode}")
        return config
