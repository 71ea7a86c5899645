"""
Record Synchronizer: keeps the relational row and the vector entry of each email in step.

The two stores are written independently and in a fixed order (vector first,
then relational). A failure between the two writes is reported, never hidden,
and is left for the caller or an out-of-band repair pass to reconcile.
"""

import re
import uuid
from typing import Any, Dict, List, Mapping, Optional

from ..models.core import (DEFAULT_EMAIL_TYPE, EMAIL_FIELDS, NOTE_EMAIL_TYPE, REQUIRED_FIELDS, EmailMemory,
                           EmailRelationship, EmailUpdate, merge_fields)
from ..utils.bedrock_embed import BedrockEmbed
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.relational_store import RelationalStore, RelationalStoreError
from ..utils.timestamp_utils import now_iso, parse_iso, within
from .embedding import check_dimensions, embed_text
from .errors import NoFieldsError, NotFoundError, StorageError, ValidationError

logger = get_logger(__name__)

FRAGMENT_SEPARATOR = ' | '

NOTE_SENDER_EMAIL = 'notes@system.internal'
NOTE_SENDER_NAME = 'Personal Notes'
NOTE_SUBJECT = 'Memory Note'

_REPLY_PREFIX = re.compile(r'^(?:(?:re|fwd|fw):\s*)+', re.IGNORECASE)


def derive_embedding_text(fields: Mapping[str, Any]) -> str:
    """Build the text blob that gets embedded for an email.

    Body first, then labeled fragments for subject, sender, date and
    attachments. Fragments whose source field is empty are left out.

    Args:
        fields: Structured email fields; missing keys count as empty

    Returns:
        Fragments joined with ' | '
    """

    def value(name: str) -> str:
        raw = fields.get(name)
        return str(raw).strip() if raw else ''

    sender_email = value('sender_email')
    display = value('sender_name') or sender_email
    parts = [
        value('body'),
        f"Subject: {value('subject')}" if value('subject') else '',
        f'From: {display}' if display else '',
        f'Sender: {sender_email}' if sender_email else '',
        f"Date: {value('date_sent')}" if value('date_sent') else '',
        f"Attachments: {value('attachments')}" if value('attachments') else '',
    ]
    return FRAGMENT_SEPARATOR.join(part for part in parts if part)


def _validate_owner(owner: Optional[str]) -> None:
    if not owner or not str(owner).strip():
        raise ValidationError('owner is required')


def _validate_fields(fields: Mapping[str, Any], required: tuple) -> None:
    missing = [name for name in required if not str(fields.get(name) or '').strip()]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

    if 'date_sent' in fields and parse_iso(fields['date_sent']) is None:
        raise ValidationError(f"date_sent is not an ISO-8601 date: {fields['date_sent']!r}")


def _full_metadata(fields: Mapping[str, Any]) -> Dict[str, str]:
    metadata = {name: fields.get(name) or '' for name in EMAIL_FIELDS}
    metadata['email_type'] = fields.get('email_type') or DEFAULT_EMAIL_TYPE
    return metadata


def thread_key(email: EmailMemory) -> Optional[str]:
    """Grouping key for an email: its thread id, else a key derived from its subject."""
    if email.thread_id:
        return email.thread_id
    subject = _REPLY_PREFIX.sub('', email.subject or '').strip()
    if not subject:
        return None
    return 'thread_' + re.sub(r'\s+', '_', subject.lower())


class RecordSyncService:
    """Create, update and delete emails across the relational store and the vector index."""

    def __init__(self,
                 store: Optional[RelationalStore] = None,
                 vectors: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None):
        """Initialize the synchronizer; collaborators default to the configured AWS/SQL clients."""
        self.store = store or RelationalStore(config.database)
        self.vectors = vectors or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)

        check_dimensions(self.embed.output_embedding_length, self.vectors.dimension)

        logger.info('Initialized RecordSyncService')

    def ingest(self, email: EmailMemory, owner: str) -> str:
        """Store a new email in both stores.

        Args:
            email: Email content; ``id`` is generated when not supplied
            owner: Owner namespace

        Returns:
            The email id

        Raises:
            ValidationError: Missing required field, unparseable date_sent or an id already in use
            EmbeddingError: Provider failure or wrong-dimension vector
            StorageError: Vector or relational write failed
        """
        _validate_owner(owner)
        fields = email.structured_fields()
        _validate_fields(fields, REQUIRED_FIELDS)

        item_id = email.id or str(uuid.uuid4())
        if email.id:
            try:
                taken = self.store.email_exists(item_id)
            except RelationalStoreError as e:
                raise StorageError(f'Failed to check email id {item_id}: {e}')
            if taken:
                raise ValidationError(f'Email id {item_id} is already in use')

        metadata = email.vector_metadata()

        vector = embed_text(self.embed, derive_embedding_text(fields), self.vectors.dimension)

        try:
            self.vectors.upsert(item_id, vector, owner, metadata)
        except OpenSearchError as e:
            logger.error(f'Vector write failed for email {item_id}: {e}')
            raise StorageError(f'Failed to store vector for email {item_id}: {e}')

        row = {**metadata, 'id': item_id, 'owner': owner, 'created_at': email.created_at or now_iso()}
        try:
            self.store.insert_email(row)
        except RelationalStoreError as e:
            logger.error(f'Relational write failed for email {item_id} after vector upsert: {e}')
            raise StorageError(f'Failed to store email {item_id} in relational store; '
                               f'its vector entry is now orphaned: {e}')

        logger.info(f'Email ingested with ID: {item_id}')
        return item_id

    def add_note(self, text: str, owner: str) -> str:
        """Store a free-form note as a note-typed email."""
        note = EmailMemory(sender_email=NOTE_SENDER_EMAIL,
                           sender_name=NOTE_SENDER_NAME,
                           subject=NOTE_SUBJECT,
                           body=text,
                           date_sent=now_iso(),
                           email_type=NOTE_EMAIL_TYPE)
        return self.ingest(note, owner)

    def update(self, item_id: str, owner: str, changes: EmailUpdate) -> None:
        """Merge ``changes`` into an existing email and re-embed it.

        Raises:
            NoFieldsError: ``changes`` supplies nothing
            ValidationError: A required field set to empty or a bad date_sent
            NotFoundError: No row for this id and owner
            EmbeddingError: Provider failure
            StorageError: A store read or write failed
        """
        supplied = changes.supplied()
        if not supplied:
            raise NoFieldsError('No fields to update')
        _validate_owner(owner)
        _validate_fields(supplied, tuple(name for name in REQUIRED_FIELDS if name in supplied))

        try:
            row = self.store.get_email(item_id, owner)
        except RelationalStoreError as e:
            raise StorageError(f'Failed to read email {item_id}: {e}')
        if row is None:
            raise NotFoundError(f'Email memory with ID {item_id} not found')

        try:
            entries = self.vectors.get_by_ids([item_id], owner)
        except OpenSearchError as e:
            raise StorageError(f'Failed to read vector for email {item_id}: {e}')

        if entries:
            base = entries[0]['metadata']
        else:
            logger.warning(f'No vector entry for email {item_id}; rebuilding it from the relational row')
            base = row

        merged = _full_metadata(merge_fields(base, changes))
        vector = embed_text(self.embed, derive_embedding_text(merged), self.vectors.dimension)

        try:
            self.vectors.upsert(item_id, vector, owner, merged)
        except OpenSearchError as e:
            raise StorageError(f'Failed to update vector for email {item_id}: {e}')

        try:
            affected = self.store.update_email(item_id, owner, supplied)
        except RelationalStoreError as e:
            logger.error(f'Relational update failed for email {item_id} after vector upsert: {e}')
            raise StorageError(f'Failed to update email {item_id} in relational store; '
                               f'its vector entry already holds the new fields: {e}')
        if affected == 0:
            raise NotFoundError(f'Email memory with ID {item_id} not found')

        logger.info(f'Email {item_id} updated: {sorted(supplied)}')

    def delete(self, item_id: str, owner: str) -> None:
        """Remove an email, its relationships and its vector entry.

        Both stores are attempted even when one fails; failures are reported
        together afterwards.

        Raises:
            StorageError: Either side failed
            NotFoundError: Neither store held the id for this owner
        """
        _validate_owner(owner)
        failures: List[str] = []
        row = None
        entries: List[Dict[str, Any]] = []
        row_deleted = 0
        vector_deleted = 0

        try:
            row = self.store.get_email(item_id, owner)
        except RelationalStoreError as e:
            failures.append(f'relational store: {e}')
        try:
            entries = self.vectors.get_by_ids([item_id], owner)
        except OpenSearchError as e:
            failures.append(f'vector index: {e}')

        # relationships carry no owner; clear them only for ids this owner holds in either store
        if row is not None or entries:
            try:
                self.store.delete_relationships_for(item_id)
                if row is not None:
                    row_deleted = self.store.delete_email(item_id, owner)
            except RelationalStoreError as e:
                logger.error(f'Relational delete failed for email {item_id}: {e}')
                failures.append(f'relational store: {e}')

        if entries:
            try:
                vector_deleted = self.vectors.delete_by_ids([item_id])
            except OpenSearchError as e:
                logger.error(f'Vector delete failed for email {item_id}: {e}')
                failures.append(f'vector index: {e}')

        if failures:
            raise StorageError(f"Delete of email {item_id} incomplete: {'; '.join(failures)}")
        if not row_deleted and not vector_deleted:
            raise NotFoundError(f'Email memory with ID {item_id} not found')

        logger.info(f'Email {item_id} deleted')

    def add_relationship(self, from_id: str, to_id: str, kind: str) -> str:
        """Link two emails. Endpoints are not checked for existence."""
        if not from_id or not to_id or not kind or not kind.strip():
            raise ValidationError('from_id, to_id and kind are required')

        relationship = EmailRelationship(id=str(uuid.uuid4()),
                                         from_item=from_id,
                                         to_item=to_id,
                                         relationship_kind=kind.strip(),
                                         created_at=now_iso())
        try:
            self.store.insert_relationship(vars(relationship))
        except RelationalStoreError as e:
            raise StorageError(f'Failed to link {from_id} and {to_id}: {e}')

        logger.info(f'Email relationship created between {from_id} and {to_id}')
        return relationship.id

    # Relational reads

    def _rows(self, fetch, *args, **kwargs) -> List[EmailMemory]:
        try:
            return [EmailMemory.from_row(row) for row in fetch(*args, **kwargs)]
        except RelationalStoreError as e:
            raise StorageError(str(e))

    def get_email(self, item_id: str, owner: str) -> EmailMemory:
        try:
            row = self.store.get_email(item_id, owner)
        except RelationalStoreError as e:
            raise StorageError(str(e))
        if row is None:
            raise NotFoundError(f'Email memory with ID {item_id} not found')
        return EmailMemory.from_row(row)

    def list_emails(self, owner: str) -> List[EmailMemory]:
        return self._rows(self.store.select_emails, owner)

    def emails_by_sender(self, owner: str, sender_email: str) -> List[EmailMemory]:
        return self._rows(self.store.select_emails, owner, sender_email=sender_email)

    def emails_by_thread(self, owner: str, thread_id: str) -> List[EmailMemory]:
        return self._rows(self.store.select_emails, owner, thread_id=thread_id, ascending=True)

    def emails_by_date_range(self, owner: str, start: str, end: str) -> List[EmailMemory]:
        """Emails whose date_sent lies in [start, end], compared as instants, newest first."""
        if not start or not end:
            raise ValidationError('Start and end dates required')
        lower, upper = parse_iso(start), parse_iso(end)
        if lower is None or upper is None:
            raise ValidationError(f'Invalid date range: {start!r} - {end!r}')

        matches = [e for e in self.list_emails(owner) if within(e.date_sent, lower, upper)]
        return sorted(matches, key=lambda e: parse_iso(e.date_sent), reverse=True)

    def related_emails(self, item_id: str, owner: str) -> List[EmailMemory]:
        return self._rows(self.store.related_emails, item_id, owner)

    def relationships_from(self, item_id: str) -> List[EmailRelationship]:
        try:
            return [EmailRelationship(**row) for row in self.store.relationships_from(item_id)]
        except RelationalStoreError as e:
            raise StorageError(str(e))

    def group_threads(self, owner: str) -> Dict[str, List[EmailMemory]]:
        """Group an owner's emails by thread id, falling back to normalized subject."""
        groups: Dict[str, List[EmailMemory]] = {}
        emails = self.list_emails(owner)
        for email in [e for e in emails if e.thread_id] + [e for e in emails if not e.thread_id]:
            key = thread_key(email)
            if key:
                groups.setdefault(key, []).append(email)
        return groups
