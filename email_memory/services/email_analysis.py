"""
Email analysis with the Bedrock completion provider: single-email insights,
multi-email summaries and relationship suggestions.
"""

import json
from typing import List, Optional

from ..models.core import EmailMemory, RelationshipSuggestion
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import clean_json_response
from ..utils.logging_config import get_logger
from .errors import CompletionError, ValidationError

logger = get_logger(__name__)

MIN_SUGGESTION_CONFIDENCE = 0.7
PREVIEW_CHARS = 200

DATABASE_SCHEMA = {
    'email_memories': {
        'description': 'Stored emails and notes with full metadata, one row per email',
        'columns': {
            'id': 'Unique identifier, shared with the vector entry',
            'owner': 'Namespace the email belongs to',
            'sender_email': 'Email address of the sender',
            'sender_name': 'Display name of the sender',
            'subject': 'Subject line',
            'body': 'Full body text',
            'attachments': 'Comma-separated attachment filenames',
            'date_sent': 'ISO-8601 timestamp when the email was sent',
            'thread_id': 'Thread identifier grouping replies',
            'conversation_id': 'Broader conversation identifier',
            'email_type': 'inbound for emails, note for personal notes',
            'created_at': 'When the record was created',
        },
    },
    'email_relationships': {
        'description': 'Explicit links between emails',
        'columns': {
            'id': 'Unique relationship identifier',
            'from_item': 'Email the link starts from',
            'to_item': 'Email the link points to',
            'relationship_kind': 'follow-up, reference, related-topic, ...',
            'created_at': 'When the link was created',
        },
    },
}

SYSTEM_PROMPT = f"""
You are an email memory assistant with access to a user's stored emails and notes.

DATABASE SCHEMA:
{json.dumps(DATABASE_SCHEMA, indent=2)}

RESPONSE GUIDELINES:
- Be complete and accurate; never invent emails or details
- Include relevant metadata (sender, date, subject) when referring to an email
- Format responses clearly with proper structure
- For large result sets, summarize key findings
"""


class EmailAnalysisService:
    """LLM-backed analysis over stored emails."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        logger.info('Initialized EmailAnalysisService')

    def _complete(self, prompt: str) -> str:
        try:
            return self.llm.complete(SYSTEM_PROMPT, prompt)
        except BedrockLLMError as e:
            logger.error(f'Completion failed: {e}')
            raise CompletionError(f'Failed to generate completion: {e}')

    def analyze_email(self, content: str, analysis_type: str = 'comprehensive') -> str:
        """Topics, sentiment, entities and action items for one email body."""
        if not content or not content.strip():
            raise ValidationError('No email content provided for analysis')

        prompt = f"""Analyze this email content for {analysis_type} insights:

Email Content:
{content}

Provide a detailed analysis including:
- Key topics and themes
- Sentiment and tone
- Important entities (people, organizations, dates)
- Action items or requests
- Context and implications
"""
        return self._complete(prompt)

    def summarize_emails(self, emails: List[EmailMemory]) -> str:
        """Executive summary, themes, deadlines and action items across emails."""
        if not emails:
            raise ValidationError('No emails provided for summarization')

        emails_text = '\n\n---\n\n'.join(
            f"From: {e.sender_name or e.sender_email} | Date: {e.date_sent} | Subject: {e.subject or '(no subject)'}\n{e.body}"
            for e in emails)
        prompt = f"""Summarize these emails and identify key patterns, themes, and insights:

{emails_text}

Provide:
1. Executive summary
2. Key themes and topics
3. Important dates and deadlines
4. Action items across all emails
5. Communication patterns
"""
        return self._complete(prompt)

    def suggest_relationships(self, emails: List[EmailMemory]) -> List[RelationshipSuggestion]:
        """Ask the LLM for likely links between emails.

        Returns:
            Suggestions at or above the confidence floor that reference known ids;
            an empty list when the reply is not a JSON array
        """
        if len(emails) < 2:
            raise ValidationError('Need at least 2 emails to suggest relationships')

        context = [{
            'id': e.id,
            'subject': e.subject or '(no subject)',
            'sender': e.sender_name or e.sender_email,
            'contentPreview': e.body[:PREVIEW_CHARS],
        } for e in emails]
        prompt = f"""Analyze these emails and suggest relationships between them. Return a JSON array of relationships:

{json.dumps(context, indent=2)}

Return format:
```json
[
  {{
    "email1": "email_id_1",
    "email2": "email_id_2",
    "relationship": "follow-up|reference|related-topic|thread",
    "confidence": 0.85
  }}
]
```

Only suggest relationships with confidence > {MIN_SUGGESTION_CONFIDENCE}. Consider:
- Subject line similarities
- Content references
- Sender patterns
- Temporal proximity
"""
        response = self._complete(prompt)

        try:
            data = json.loads(clean_json_response(response))
        except json.JSONDecodeError as e:
            logger.error(f'Failed to parse relationship suggestions JSON: {e}')
            return []
        if not isinstance(data, list):
            logger.warning(f'Expected list of suggestions, got {type(data)}')
            return []

        known_ids = {e.id for e in emails}
        suggestions = []
        for item in data:
            if not isinstance(item, dict):
                continue
            try:
                suggestion = RelationshipSuggestion(email1=str(item['email1']),
                                                    email2=str(item['email2']),
                                                    relationship=str(item.get('relationship') or 'related-topic'),
                                                    confidence=float(item.get('confidence', 0.0)))
            except (KeyError, TypeError, ValueError):
                logger.debug(f'Skipping malformed suggestion: {item}')
                continue
            if suggestion.email1 == suggestion.email2:
                continue
            if suggestion.email1 not in known_ids or suggestion.email2 not in known_ids:
                continue
            if suggestion.confidence < MIN_SUGGESTION_CONFIDENCE:
                continue
            suggestions.append(suggestion)
        return suggestions
