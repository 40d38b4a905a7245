"""
Tests for event settings parsing and EventConfigurationService.
"""

import json

import pytest

from queuerank.constants import ScoringConstants, ScoringMode
from queuerank.data_models.scoring import EventScoringConfig, parse_settings_blob
from queuerank.utils.ranking_exceptions import (
    EventNotFoundError, InvalidScoringModeError, InvalidSettingsError, NotRankedChoiceEventError
)
from tests.conftest import double_encoded, ranked_choice_settings


class TestParseSettingsBlob:
    """Test raw blob decoding."""

    def test_plain_json(self):
        assert parse_settings_blob('{"queueMode": "ranked-choice"}') == {'queueMode': 'ranked-choice'}

    def test_double_encoded_json(self):
        blob = double_encoded({'queueMode': 'ranked-choice'})
        assert parse_settings_blob(blob) == {'queueMode': 'ranked-choice'}

    @pytest.mark.parametrize("raw", [None, '', 'null'])
    def test_empty_blobs(self, raw):
        assert parse_settings_blob(raw) == {}

    @pytest.mark.parametrize("raw", ['{not json', '[1, 2]', '"just a string"', '42'])
    def test_malformed_blobs(self, raw):
        with pytest.raises(InvalidSettingsError):
            parse_settings_blob(raw)


class TestEventScoringConfig:
    """Test typed config construction."""

    def test_defaults_for_missing_keys(self):
        config = EventScoringConfig.from_settings({'queueMode': 'ranked-choice'})
        assert config == EventScoringConfig()
        assert config.ranking_depth == ScoringConstants.DEFAULT_RANKING_DEPTH
        assert config.primary_scoring_mode == ScoringMode.CONSENSUS
        assert config.min_rank_delta == 5
        assert config.max_ranker_percentage == 20
        assert config.min_participants_for_activation == 5
        assert config.refresh_interval_seconds == 30

    def test_null_values_take_defaults(self):
        settings = ranked_choice_settings(rankingDepth=None, hiddenGemThreshold=None)
        assert EventScoringConfig.from_settings(settings) == EventScoringConfig()

    def test_explicit_values(self):
        settings = ranked_choice_settings(
            rankingDepth=3,
            primaryScoringMode='discovery',
            hiddenGemThreshold={'minRankDelta': 2, 'maxRankerPercentage': 12.5},
            minParticipantsForActivation=8,
            refreshIntervalSeconds=60
        )
        config = EventScoringConfig.from_settings(settings)

        assert config.ranking_depth == 3
        assert config.primary_scoring_mode == ScoringMode.DISCOVERY
        assert config.min_rank_delta == 2
        assert config.max_ranker_percentage == 12.5
        assert config.min_participants_for_activation == 8
        assert config.refresh_interval_seconds == 60

    @pytest.mark.parametrize("overrides", [
        {'rankingDepth': 0},
        {'rankingDepth': -3},
        {'rankingDepth': 'ten'},
        {'rankingDepth': 2.5},
        {'rankingDepth': True},
        {'primaryScoringMode': 'popular'},
        {'refreshIntervalSeconds': 0},
        {'hiddenGemThreshold': {'maxRankerPercentage': 0}},
        {'hiddenGemThreshold': {'maxRankerPercentage': 150}},
        {'hiddenGemThreshold': {'minRankDelta': 'big'}},
        {'hiddenGemThreshold': 'strict'},
    ])
    def test_malformed_values_rejected(self, overrides):
        with pytest.raises(InvalidSettingsError):
            EventScoringConfig.from_settings(ranked_choice_settings(**overrides))

    def test_is_ranked_choice(self):
        assert EventScoringConfig.is_ranked_choice({'queueMode': 'ranked-choice'})
        assert not EventScoringConfig.is_ranked_choice({'queueMode': 'fifo'})
        assert not EventScoringConfig.is_ranked_choice({})


class TestEventConfigurationService:
    """Test per-event settings lookup."""

    async def test_reads_stored_settings(self, service, make_event):
        event_id = await make_event(ranked_choice_settings(rankingDepth=4))
        config = await service.config_service.get_config(event_id)
        assert config.ranking_depth == 4

    async def test_double_encoded_event_settings(self, service, make_event, set_event_settings):
        event_id = await make_event()
        await set_event_settings(event_id, double_encoded(ranked_choice_settings(rankingDepth=7)))

        config = await service.config_service.get_config(event_id)
        assert config.ranking_depth == 7

    async def test_missing_event(self, service):
        with pytest.raises(EventNotFoundError):
            await service.config_service.get_config('no-such-event')

    async def test_not_ranked_choice(self, service, make_event):
        event_id = await make_event({'queueMode': 'fifo'})
        with pytest.raises(NotRankedChoiceEventError):
            await service.config_service.get_config(event_id)

    async def test_malformed_stored_blob(self, service, make_event, set_event_settings):
        event_id = await make_event()
        await set_event_settings(event_id, '{broken')
        with pytest.raises(InvalidSettingsError):
            await service.config_service.get_config(event_id)

    async def test_cache_follows_stored_blob(self, service, make_event, set_event_settings):
        event_id = await make_event(ranked_choice_settings(rankingDepth=4))
        assert (await service.config_service.get_config(event_id)).ranking_depth == 4

        await set_event_settings(event_id, json.dumps(ranked_choice_settings(rankingDepth=6)))
        assert (await service.config_service.get_config(event_id)).ranking_depth == 6

    async def test_switch_primary_mode(self, service, database, make_event):
        event_id = await make_event(ranked_choice_settings(rankingDepth=4))

        config = await service.switch_primary_mode(event_id, ScoringMode.DISCOVERY)

        assert config.primary_scoring_mode == ScoringMode.DISCOVERY
        assert config.ranking_depth == 4
        event = await database.get_event_by_id(event_id)
        stored = json.loads(event.settings)
        assert stored['rankedChoiceSettings']['primaryScoringMode'] == 'discovery'
        assert stored['rankedChoiceSettings']['rankingDepth'] == 4
        assert stored['queueMode'] == 'ranked-choice'

    async def test_switch_to_unknown_mode(self, service, make_event):
        event_id = await make_event()
        with pytest.raises(InvalidScoringModeError):
            await service.switch_primary_mode(event_id, 'popular')
