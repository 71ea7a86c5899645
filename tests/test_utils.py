"""
Tests for the small helpers: partial updates, JSON cleanup, timestamps, health reporting and config.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from email_memory.models.core import UNSET, EmailMemory, EmailUpdate, SearchFilters, merge_fields
from email_memory.utils import health_check
from email_memory.utils.config import DatabaseConfig, load_config
from email_memory.utils.json_utils import clean_json_response
from email_memory.utils.timestamp_utils import now_iso, parse_iso


class TestEmailUpdate:
    """Tests for the tri-state partial update."""

    def test_defaults_are_unset(self):
        update = EmailUpdate()
        assert update.subject is UNSET
        assert update.supplied() == {}
        assert not UNSET

    def test_none_means_clear(self):
        assert EmailUpdate(subject=None, body='new').supplied() == {'subject': '', 'body': 'new'}

    def test_merge_is_pure(self):
        existing = {'subject': 'Old', 'body': 'Body'}
        update = EmailUpdate(subject='New')

        merged = merge_fields(existing, update)

        assert merged == {'subject': 'New', 'body': 'Body'}
        assert existing == {'subject': 'Old', 'body': 'Body'}
        assert update.supplied() == {'subject': 'New'}

    def test_from_dict_ignores_unknown_keys(self):
        update = EmailUpdate.from_dict({'id': 'e-1', 'owner': 'o', 'thread_id': 't'})
        assert update.supplied() == {'thread_id': 't'}

    def test_email_optionals_normalized(self):
        email = EmailMemory(sender_email='a@x.com', body='b', date_sent='2024-01-10', subject=None)
        assert email.subject == ''
        assert email.vector_metadata()['email_type'] == 'inbound'

    def test_from_row_drops_unknown_columns(self):
        email = EmailMemory.from_row({'sender_email': 'a@x.com', 'body': 'b', 'date_sent': 'd', 'extra': 1})
        assert email.body == 'b'

    def test_empty_filters(self):
        assert SearchFilters().is_empty()
        assert not SearchFilters(has_attachments=True).is_empty()


class TestCleanJsonResponse:
    """Tests for clean_json_response."""

    @pytest.mark.parametrize('raw, expected', [
        ('[1, 2]', '[1, 2]'),
        ('```json\n[1, 2]\n```', '[1, 2]'),
        ('Sure!\n```\n{"a": 1}\n```\nDone.', '{"a": 1}'),
        ('```json\n[1, 2]', '[1, 2]'),
        ('The links are [1, 2] as requested.', '[1, 2]'),
        ('no json here', 'no json here'),
        ('', ''),
    ])
    def test_extracts_payload(self, raw, expected):
        assert clean_json_response(raw) == expected

    def test_none_is_empty(self):
        assert clean_json_response(None) == ''


class TestTimestamps:
    """Tests for ISO-8601 helpers."""

    def test_date_only_is_midnight_utc(self):
        assert parse_iso('2024-01-10') == datetime(2024, 1, 10, tzinfo=timezone.utc)

    def test_zulu_suffix(self):
        assert parse_iso('2024-01-10T09:30:00Z') == datetime(2024, 1, 10, 9, 30, tzinfo=timezone.utc)

    def test_naive_treated_as_utc(self):
        assert parse_iso('2024-01-10T09:30:00').tzinfo == timezone.utc

    def test_offset_preserved_for_comparison(self):
        assert parse_iso('2024-01-10T10:00:00+01:00') == parse_iso('2024-01-10T09:00:00Z')

    @pytest.mark.parametrize('value', [None, '', 'yesterday', '2024-13-01', 42])
    def test_invalid_values(self, value):
        assert parse_iso(value) is None

    def test_now_iso_round_trips(self):
        assert parse_iso(now_iso()) is not None


class FakeComponent:

    def __init__(self, healthy):
        self.healthy = healthy

    def health_check(self):
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy


class TestHealthCheck:
    """Tests for aggregated health reporting."""

    def patched(self, llm=True, embed=True, opensearch=True, store=True):
        return [
            patch.object(health_check, 'BedrockLLM', lambda config: FakeComponent(llm)),
            patch.object(health_check, 'BedrockEmbed', lambda config: FakeComponent(embed)),
            patch.object(health_check, 'OpenSearchClient', lambda config: FakeComponent(opensearch)),
            patch.object(health_check, 'RelationalStore', lambda config: FakeComponent(store)),
        ]

    def run(self, fn, **states):
        patches = self.patched(**states)
        for p in patches:
            p.start()
        try:
            return fn()
        finally:
            for p in patches:
                p.stop()

    def test_all_healthy(self):
        assert self.run(health_check.check_health) is True

    def test_one_unhealthy(self):
        assert self.run(health_check.check_health, opensearch=False) is False

    def test_component_exception_reported(self):
        status = self.run(health_check.get_health_status, store=RuntimeError('no database'))
        assert status['relational_store'] == {'healthy': False, 'service': 'Relational store', 'error': 'no database'}
        assert status['bedrock_llm']['healthy'] is True

    def test_system_info(self):
        info = self.run(health_check.get_system_info)
        assert info['service_name'] == 'email-memory'
        assert set(info['health_status']) == {'bedrock_llm', 'bedrock_embed', 'opensearch', 'relational_store'}


class TestConfig:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ('MEMORY_MIN_SIMILARITY_SCORE', 'MEMORY_SEARCH_TOP_K', 'OPENSEARCH_INDEX', 'DATABASE_URL', 'DATABASE_ECHO'):
            monkeypatch.delenv(name, raising=False)

        loaded = load_config()

        assert loaded.memory.min_similarity_score == 0.0
        assert loaded.memory.search_top_k == 20
        assert loaded.opensearch.index_name == 'email_memories'
        assert loaded.database == DatabaseConfig(url='sqlite:///email_memory.db', echo=False)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv('AWS_REGION', 'eu-west-1')
        monkeypatch.delenv('OPENSEARCH_AWS_REGION', raising=False)
        monkeypatch.setenv('BEDROCK_EMBED_AWS_REGION', 'us-west-2')
        monkeypatch.setenv('OPENSEARCH_PORT', '9200')
        monkeypatch.setenv('DATABASE_ECHO', 'yes')
        monkeypatch.setenv('MEMORY_SIMILAR_TOP_K', '3')

        loaded = load_config()

        assert loaded.opensearch.region == 'eu-west-1'
        assert loaded.bedrock_embed.region == 'us-west-2'
        assert loaded.opensearch.port == 9200
        assert loaded.database.echo is True
        assert loaded.memory.similar_top_k == 3
