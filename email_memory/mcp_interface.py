"""
MCP interface layer exposing the email memory operations as fastmcp tools.
"""

import threading
from typing import Optional

from fastmcp import FastMCP

from .models.core import EmailMemory, EmailUpdate, SearchFilters, SearchResult
from .services.email_analysis import EmailAnalysisService
from .services.errors import EmailMemoryError
from .services.record_sync import NOTE_SENDER_EMAIL, RecordSyncService
from .services.similarity_search import SimilaritySearchService
from .utils.bedrock_embed import BedrockEmbed
from .utils.config import config
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger
from .utils.opensearch_client import OpenSearchClient
from .utils.relational_store import RelationalStore

logger = get_logger(__name__)

mcp = FastMCP('Email Memory')

_lock = threading.RLock()
_records: Optional[RecordSyncService] = None
_search: Optional[SimilaritySearchService] = None
_analysis: Optional[EmailAnalysisService] = None


def configure(records: RecordSyncService, search: SimilaritySearchService, analysis: EmailAnalysisService) -> None:
    """Install the services the tools use (bootstrap and tests)."""
    global _records, _search, _analysis
    with _lock:
        _records, _search, _analysis = records, search, analysis


def _services():
    global _records, _search, _analysis
    if _records is None:
        with _lock:
            if _records is None:
                store = RelationalStore(config.database)
                vectors = OpenSearchClient(config.opensearch)
                embed = BedrockEmbed(config.bedrock_embed)
                _search = SimilaritySearchService(vectors=vectors, embed=embed)
                _analysis = EmailAnalysisService()
                _records = RecordSyncService(store=store, vectors=vectors, embed=embed)
    return _records, _search, _analysis


def _owner(owner: Optional[str]) -> str:
    return owner or config.memory.default_owner


def _pct(score: float) -> str:
    return f'{score * 100:.1f}%'


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ('...' if len(text) > limit else '')


def _format_match(match: SearchResult) -> str:
    meta = match.metadata
    return (f"From: {meta.get('sender_name') or meta.get('sender_email')} <{meta.get('sender_email')}>\n"
            f"Subject: {meta.get('subject') or '(no subject)'}\n"
            f"Date: {meta.get('date_sent')}\n"
            f'Relevance: {_pct(match.score)}\n'
            f'ID: {match.id}\n'
            f'---\n'
            f'{_preview(match.body, 200)}')


@mcp.tool()
def ingest_email(sender_email: str,
                 body: str,
                 date_sent: str,
                 sender_name: str = '',
                 subject: str = '',
                 attachments: str = '',
                 thread_id: str = '',
                 conversation_id: str = '',
                 owner: str = '') -> str:
    """Store a new email with its embedding for later retrieval and analysis.

    Args:
        sender_email: Email address of the sender
        body: Email body content
        date_sent: ISO date string of when the email was sent
        sender_name: Name of the sender
        subject: Subject line
        attachments: Comma-separated list of attachment filenames
        thread_id: Thread ID for conversation grouping
        conversation_id: Conversation ID for broader context
        owner: Namespace to store into (defaults to the configured owner)
    """
    records, _, _ = _services()
    email = EmailMemory(sender_email=sender_email,
                        sender_name=sender_name,
                        subject=subject,
                        body=body,
                        attachments=attachments,
                        date_sent=date_sent,
                        thread_id=thread_id,
                        conversation_id=conversation_id)
    try:
        item_id = records.ingest(email, _owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error ingesting email: {e}')
        return f'Failed to ingest email: {e}'

    return (f'Email stored successfully:\nFrom: {sender_name or sender_email}\n'
            f"Subject: {subject or '(no subject)'}\nDate: {date_sent}\nID: {item_id}")


@mcp.tool()
def search_email_memory(query: str,
                        sender_email: str = '',
                        start_date: str = '',
                        end_date: str = '',
                        thread_id: str = '',
                        has_attachments: bool = False,
                        owner: str = '') -> str:
    """Semantic search over stored emails with optional filters.

    Args:
        query: Search query, natural language works
        sender_email: Only emails from this sender
        start_date: Start of date range (ISO), requires end_date
        end_date: End of date range (ISO), requires start_date
        thread_id: Only emails in this thread
        has_attachments: Only emails with attachments
        owner: Namespace to search (defaults to the configured owner)
    """
    _, search, _ = _services()
    filters = SearchFilters(sender_email=sender_email or None,
                            thread_id=thread_id or None,
                            start_date=start_date or None,
                            end_date=end_date or None,
                            has_attachments=has_attachments)
    try:
        matches = search.search(query, _owner(owner), filters)
    except EmailMemoryError as e:
        logger.error(f'Error searching emails: {e}')
        return f'Failed to search emails: {e}'

    if not matches:
        return 'No emails found matching your search criteria.'
    results = '\n\n'.join(_format_match(m) for m in matches)
    return f'Found {len(matches)} emails:\n\n{results}'


@mcp.tool()
def find_similar_emails(email_id: str, limit: int = 5, owner: str = '') -> str:
    """Find emails similar to a stored email.

    Args:
        email_id: ID of the email to compare against
        limit: Maximum number of similar emails to return
        owner: Namespace (defaults to the configured owner)
    """
    _, search, _ = _services()
    try:
        similar = search.find_similar(email_id, _owner(owner), limit)
    except EmailMemoryError as e:
        logger.error(f'Error finding similar emails for {email_id}: {e}')
        return f'Failed to find similar emails: {e}'

    if not similar:
        return 'No similar emails found.'
    results = '\n\n'.join(f"Similarity: {_pct(m.score)}\n"
                          f"From: {m.metadata.get('sender_name') or m.metadata.get('sender_email')}\n"
                          f"Subject: {m.metadata.get('subject') or '(no subject)'}\n"
                          f"Date: {m.metadata.get('date_sent')}\n"
                          f'ID: {m.id}' for m in similar)
    return f'Found {len(similar)} similar emails:\n\n{results}'


@mcp.tool()
def update_email(email_id: str,
                 sender_email: Optional[str] = None,
                 sender_name: Optional[str] = None,
                 subject: Optional[str] = None,
                 body: Optional[str] = None,
                 attachments: Optional[str] = None,
                 date_sent: Optional[str] = None,
                 thread_id: Optional[str] = None,
                 conversation_id: Optional[str] = None,
                 owner: str = '') -> str:
    """Change some fields of a stored email; omitted fields keep their values.

    Args:
        email_id: ID of the email to update
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    supplied = {
        'sender_email': sender_email,
        'sender_name': sender_name,
        'subject': subject,
        'body': body,
        'attachments': attachments,
        'date_sent': date_sent,
        'thread_id': thread_id,
        'conversation_id': conversation_id,
    }
    changes = EmailUpdate.from_dict({k: v for k, v in supplied.items() if v is not None})
    try:
        records.update(email_id, _owner(owner), changes)
    except EmailMemoryError as e:
        logger.error(f'Error updating email {email_id}: {e}')
        return f'Failed to update email: {e}'
    return f"Updated email {email_id}: {', '.join(sorted(changes.supplied()))}"


@mcp.tool()
def delete_email(email_id: str, owner: str = '') -> str:
    """Delete a stored email, its relationships and its embedding.

    Args:
        email_id: ID of the email to delete
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        records.delete(email_id, _owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error deleting email {email_id}: {e}')
        return f'Failed to delete email: {e}'
    return f'Deleted email {email_id}'


@mcp.tool()
def link_related_emails(email_id1: str, email_id2: str, relationship_type: str) -> str:
    """Create a relationship between two emails that are related but not in the same thread.

    Args:
        email_id1: First email ID
        email_id2: Second email ID
        relationship_type: e.g. 'follow-up', 'reference', 'related-topic'
    """
    records, _, _ = _services()
    try:
        records.add_relationship(email_id1, email_id2, relationship_type)
    except EmailMemoryError as e:
        logger.error(f'Error creating email relationship: {e}')
        return f'Failed to link emails: {e}'
    return f'Successfully linked emails {email_id1} and {email_id2} with relationship: {relationship_type}'


@mcp.tool()
def get_emails_by_sender(sender_email: str, owner: str = '') -> str:
    """Retrieve all emails from one sender, newest first.

    Args:
        sender_email: Email address of the sender
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        emails = records.emails_by_sender(_owner(owner), sender_email)
    except EmailMemoryError as e:
        logger.error(f'Error getting emails by sender: {e}')
        return f'Failed to retrieve emails: {e}'

    if not emails:
        return f'No emails found from {sender_email}'
    summary = '\n---\n'.join(f"Subject: {e.subject or '(no subject)'}\nDate: {e.date_sent}\n{_preview(e.body, 100)}"
                             for e in emails)
    return f'Found {len(emails)} emails from {sender_email}:\n\n{summary}'


@mcp.tool()
def get_email_thread(thread_id: str, owner: str = '') -> str:
    """Retrieve every email in a thread, oldest first.

    Args:
        thread_id: Thread ID to retrieve
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        emails = records.emails_by_thread(_owner(owner), thread_id)
    except EmailMemoryError as e:
        logger.error(f'Error getting email thread: {e}')
        return f'Failed to retrieve thread: {e}'

    if not emails:
        return f'No emails found in thread {thread_id}'
    thread = '\n\n========================================\n\n'.join(
        f"From: {e.sender_name or e.sender_email}\nDate: {e.date_sent}\nSubject: {e.subject or '(no subject)'}\n\n{e.body}"
        for e in emails)
    return f'Thread {thread_id} contains {len(emails)} emails:\n\n{thread}'


@mcp.tool()
def get_related_emails(email_id: str, owner: str = '') -> str:
    """List emails explicitly linked from an email.

    Args:
        email_id: ID of the email whose links to follow
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        emails = records.related_emails(email_id, _owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error retrieving related emails: {e}')
        return f'Failed to retrieve related emails: {e}'

    if not emails:
        return f'No emails linked from {email_id}'
    lines = [f"{e.id}: {e.subject or '(no subject)'} ({e.sender_email}, {e.date_sent})" for e in emails]
    return f'{len(emails)} emails linked from {email_id}:\n' + '\n'.join(lines)


@mcp.tool()
def analyze_email_patterns(owner: str = '') -> str:
    """Group stored emails into threads by thread ID or normalized subject.

    Args:
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        groups = records.group_threads(_owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error analyzing email patterns: {e}')
        return f'Failed to analyze patterns: {e}'

    sections = []
    for key, emails in groups.items():
        subjects = list(dict.fromkeys(e.subject or '(no subject)' for e in emails))
        senders = list(dict.fromkeys(e.sender_email for e in emails))
        dates = sorted(e.date_sent for e in emails)
        sections.append(f'Thread: {key}\nEmails: {len(emails)}\n'
                        f"Subjects: {', '.join(subjects)}\nSenders: {', '.join(senders)}\n"
                        f'Date range: {dates[0]} to {dates[-1]}')
    return 'Email pattern analysis:\n\n' + '\n\n'.join(sections) + f'\n\nTotal threads identified: {len(groups)}'


@mcp.tool()
def analyze_email_with_ai(email_id: str = '',
                          email_content: str = '',
                          analysis_type: str = 'comprehensive',
                          owner: str = '') -> str:
    """Extract topics, sentiment, entities and action items from one email.

    Args:
        email_id: ID of a stored email to analyze
        email_content: Email content to analyze directly (wins over email_id)
        analysis_type: comprehensive, sentiment, topics, entities or actions
        owner: Namespace (defaults to the configured owner)
    """
    records, _, analysis = _services()
    try:
        content = email_content
        if not content and email_id:
            content = records.get_email(email_id, _owner(owner)).body
        result = analysis.analyze_email(content, analysis_type)
    except EmailMemoryError as e:
        logger.error(f'Error analyzing email: {e}')
        return f'Failed to analyze email: {e}'
    return f'AI Analysis ({analysis_type}):\n\n{result}'


@mcp.tool()
def summarize_emails_with_ai(sender_email: str = '',
                             thread_id: str = '',
                             start_date: str = '',
                             end_date: str = '',
                             limit: int = 10,
                             owner: str = '') -> str:
    """Summarize several emails and identify patterns, themes and action items.

    Args:
        sender_email: Summarize emails from this sender
        thread_id: Summarize emails from this thread
        start_date: Start of date range (with end_date)
        end_date: End of date range (with start_date)
        limit: Maximum number of emails to include
        owner: Namespace (defaults to the configured owner)
    """
    records, _, analysis = _services()
    owner = _owner(owner)
    try:
        if sender_email:
            emails = records.emails_by_sender(owner, sender_email)
        elif thread_id:
            emails = records.emails_by_thread(owner, thread_id)
        elif start_date and end_date:
            emails = records.emails_by_date_range(owner, start_date, end_date)
        else:
            emails = records.list_emails(owner)

        if not emails:
            return 'No emails found for summarization.'
        selected = emails[:limit or config.memory.summary_limit]
        summary = analysis.summarize_emails(selected)
    except EmailMemoryError as e:
        logger.error(f'Error summarizing emails: {e}')
        return f'Failed to summarize emails: {e}'
    return f'AI Summary of {len(selected)} emails:\n\n{summary}'


@mcp.tool()
def suggest_email_relationships(limit: int = 20, owner: str = '') -> str:
    """Suggest relationships between stored emails based on content and context.

    Args:
        limit: Maximum number of emails to analyze
        owner: Namespace (defaults to the configured owner)
    """
    records, _, analysis = _services()
    try:
        emails = records.list_emails(_owner(owner))
        if len(emails) < 2:
            return 'Need at least 2 emails to suggest relationships.'
        suggestions = analysis.suggest_relationships(emails[:limit or config.memory.suggestion_limit])
    except EmailMemoryError as e:
        logger.error(f'Error suggesting relationships: {e}')
        return f'Failed to suggest relationships: {e}'

    if not suggestions:
        return 'No strong relationships found between emails.'
    formatted = '\n\n'.join(f'Emails: {s.email1} <-> {s.email2}\nRelationship: {s.relationship}\n'
                            f'Confidence: {_pct(s.confidence)}' for s in suggestions)
    return f'Suggested {len(suggestions)} email relationships:\n\n{formatted}'


@mcp.tool()
def add_to_memory(thing_to_remember: str, owner: str = '') -> str:
    """Store a general note. For emails use ingest_email instead.

    Args:
        thing_to_remember: Information to remember
        owner: Namespace (defaults to the configured owner)
    """
    records, _, _ = _services()
    try:
        records.add_note(thing_to_remember, _owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error storing note: {e}')
        return f'Failed to remember: {e}'
    return f'Remembered: {thing_to_remember}'


@mcp.tool()
def search_memory(information_to_get: str, owner: str = '') -> str:
    """Search everything stored, emails and notes alike.

    Args:
        information_to_get: What to search for
        owner: Namespace (defaults to the configured owner)
    """
    _, search, _ = _services()
    try:
        matches = search.search(information_to_get, _owner(owner))
    except EmailMemoryError as e:
        logger.error(f'Error searching memories: {e}')
        return f'Failed to search memories: {e}'

    if not matches:
        return 'No relevant memories found.'
    lines = []
    for m in matches:
        meta = m.metadata
        if meta.get('email_type') == 'note' or meta.get('sender_email') == NOTE_SENDER_EMAIL:
            lines.append(f'{m.body} (relevance: {_pct(m.score)})')
        else:
            lines.append(f"Email from {meta.get('sender_name') or meta.get('sender_email')}: "
                         f"{meta.get('subject') or '(no subject)'}\n{_preview(m.body, 100)} (relevance: {_pct(m.score)})")
    return 'Found memories:\n' + '\n\n'.join(lines)


@mcp.tool()
def get_service_health() -> str:
    """Report configuration and the health of Bedrock, OpenSearch and the relational store."""
    info = get_system_info()
    lines = [f"{name}: {'healthy' if status.get('healthy') else 'UNHEALTHY'} ({status.get('service')})"
             for name, status in info['health_status'].items()]
    settings = [f'{key}: {value}' for key, value in info['configuration'].items()]
    return 'Service health:\n' + '\n'.join(lines) + '\n\nConfiguration:\n' + '\n'.join(settings)


def bootstrap() -> None:
    """Ensure the relational schema and the vector index exist. Idempotent."""
    records, _, _ = _services()
    records.store.ensure_schema()
    records.vectors.create_index_if_not_exists()
    logger.info('Email memory stores ready')


def main() -> None:
    bootstrap()
    if config.mcp.transport == 'stdio':
        mcp.run(transport='stdio')
    else:
        mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)


if __name__ == '__main__':
    main()
