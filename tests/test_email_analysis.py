"""
Tests for the LLM-backed email analysis service.
"""

import json
from unittest.mock import MagicMock

import pytest

from email_memory.models.core import EmailMemory
from email_memory.services.email_analysis import EmailAnalysisService, SYSTEM_PROMPT
from email_memory.services.errors import CompletionError, ValidationError
from email_memory.utils.bedrock_llm import BedrockLLMError


def email(item_id, subject='Budget', body='Q4 numbers'):
    return EmailMemory(id=item_id, sender_email='a@x.com', subject=subject, body=body, date_sent='2024-01-10')


@pytest.fixture
def llm():
    fake = MagicMock()
    fake.complete.return_value = 'analysis text'
    return fake


@pytest.fixture
def analysis(llm):
    return EmailAnalysisService(llm=llm)


class TestAnalyze:
    """Tests for analyze_email and summarize_emails."""

    def test_analyze_prompt_includes_content_and_type(self, analysis, llm):
        assert analysis.analyze_email('Please send the Q4 deck', 'actions') == 'analysis text'

        system, prompt = llm.complete.call_args.args
        assert system == SYSTEM_PROMPT
        assert 'actions insights' in prompt
        assert 'Please send the Q4 deck' in prompt

    def test_analyze_requires_content(self, analysis, llm):
        with pytest.raises(ValidationError):
            analysis.analyze_email('  ')
        llm.complete.assert_not_called()

    def test_summarize_lists_each_email(self, analysis, llm):
        analysis.summarize_emails([email('1'), email('2', subject='', body='Noodles')])

        prompt = llm.complete.call_args.args[1]
        assert 'Subject: Budget' in prompt
        assert 'Subject: (no subject)' in prompt
        assert 'Noodles' in prompt

    def test_summarize_requires_emails(self, analysis):
        with pytest.raises(ValidationError):
            analysis.summarize_emails([])

    def test_provider_failure_is_completion_error(self, analysis, llm):
        llm.complete.side_effect = BedrockLLMError('throttled')
        with pytest.raises(CompletionError):
            analysis.analyze_email('hello')


class TestSuggestRelationships:
    """Tests for suggest_relationships."""

    def test_parses_fenced_reply_and_filters(self, analysis, llm):
        reply = [
            {'email1': '1', 'email2': '2', 'relationship': 'follow-up', 'confidence': 0.9},
            {'email1': '1', 'email2': '3', 'relationship': 'reference', 'confidence': 0.5},
            {'email1': '1', 'email2': 'ghost', 'relationship': 'reference', 'confidence': 0.95},
            {'email1': '2', 'email2': '2', 'relationship': 'thread', 'confidence': 0.99},
            {'email1': '3'},
            'noise',
        ]
        llm.complete.return_value = f'Here you go:\n```json\n{json.dumps(reply)}\n```\nLet me know.'

        suggestions = analysis.suggest_relationships([email('1'), email('2'), email('3')])

        assert [(s.email1, s.email2, s.relationship, s.confidence) for s in suggestions] == [('1', '2', 'follow-up', 0.9)]

    def test_prompt_previews_body(self, analysis, llm):
        llm.complete.return_value = '[]'
        analysis.suggest_relationships([email('1', body='x' * 500), email('2')])

        prompt = llm.complete.call_args.args[1]
        assert 'x' * 200 in prompt
        assert 'x' * 201 not in prompt

    @pytest.mark.parametrize('reply', ['not json at all', '{"email1": "1"}'])
    def test_unusable_reply_gives_no_suggestions(self, analysis, llm, reply):
        llm.complete.return_value = reply
        assert analysis.suggest_relationships([email('1'), email('2')]) == []

    def test_needs_two_emails(self, analysis, llm):
        with pytest.raises(ValidationError):
            analysis.suggest_relationships([email('1')])
        llm.complete.assert_not_called()
