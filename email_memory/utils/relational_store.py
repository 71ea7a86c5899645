"""
Relational store for email rows and email relationships, built on SQLAlchemy Core.

Works against any SQLAlchemy URL; SQLite locally, a hosted PostgreSQL or
MySQL in deployment.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import (Column, Index, MetaData, String, Table, Text, and_, create_engine, delete, insert, or_,
                        select, text, update)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseConfig
from .logging_config import get_logger

logger = get_logger(__name__)

metadata = MetaData()

email_memories = Table(
    'email_memories',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('owner', String(128), nullable=False),
    Column('sender_email', String(320), nullable=False),
    Column('sender_name', Text, nullable=False, default=''),
    Column('subject', Text, nullable=False, default=''),
    Column('body', Text, nullable=False),
    Column('attachments', Text, nullable=False, default=''),
    Column('date_sent', String(64), nullable=False),
    Column('thread_id', String(256), nullable=False, default=''),
    Column('conversation_id', String(256), nullable=False, default=''),
    Column('email_type', String(32), nullable=False, default='inbound'),
    Column('created_at', String(64), nullable=False),
    Index('idx_email_owner_sender', 'owner', 'sender_email'),
    Index('idx_email_owner_thread', 'owner', 'thread_id'),
    Index('idx_email_owner_conversation', 'owner', 'conversation_id'),
    Index('idx_email_owner_date', 'owner', 'date_sent'),
)

email_relationships = Table(
    'email_relationships',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('from_item', String(64), nullable=False),
    Column('to_item', String(64), nullable=False),
    Column('relationship_kind', String(128), nullable=False),
    Column('created_at', String(64), nullable=False),
    Index('idx_relationship_from', 'from_item'),
    Index('idx_relationship_to', 'to_item'),
)


class RelationalStoreError(Exception):
    """Custom exception for relational store errors."""
    pass


class RelationalStore:
    """SQLAlchemy Core access to the email tables, every item query scoped by owner."""

    def __init__(self, config: DatabaseConfig, engine: Optional[Engine] = None):
        """
        Initialize the relational store.

        Args:
            config: DatabaseConfig with the SQLAlchemy URL
            engine: Pre-built engine (used by tests with in-memory SQLite)
        """
        self.config = config
        self.engine = engine or create_engine(config.url, echo=config.echo, future=True)

        logger.info(f'Initialized relational store on {self.engine.url.render_as_string(hide_password=True)}')

    def ensure_schema(self) -> None:
        """Create tables and indexes that do not exist yet. Safe to call repeatedly."""
        try:
            metadata.create_all(self.engine, checkfirst=True)
            logger.debug('Relational schema ensured')
        except SQLAlchemyError as e:
            logger.error(f'Error ensuring relational schema: {e}')
            raise RelationalStoreError(f'Failed to ensure schema: {e}')

    def insert_email(self, row: Dict[str, Any]) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(email_memories).values(**row))
            logger.debug(f"Inserted email row {row.get('id')}")
        except SQLAlchemyError as e:
            logger.error(f"Error inserting email row {row.get('id')}: {e}")
            raise RelationalStoreError(f'Failed to insert email: {e}')

    def update_email(self, item_id: str, owner: str, changes: Dict[str, Any]) -> int:
        """
        Apply ``changes`` to one row.

        Returns:
            Number of rows affected (0 when the id is unknown for this owner)
        """
        if not changes:
            raise RelationalStoreError('No fields to update')

        stmt = (update(email_memories).where(and_(email_memories.c.id == item_id,
                                                  email_memories.c.owner == owner)).values(**changes))
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
            logger.debug(f'Updated email row {item_id}: {sorted(changes)} ({result.rowcount} rows)')
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f'Error updating email row {item_id}: {e}')
            raise RelationalStoreError(f'Failed to update email: {e}')

    def get_email(self, item_id: str, owner: str) -> Optional[Dict[str, Any]]:
        stmt = select(email_memories).where(and_(email_memories.c.id == item_id, email_memories.c.owner == owner))
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
            return dict(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f'Error reading email row {item_id}: {e}')
            raise RelationalStoreError(f'Failed to read email: {e}')

    def email_exists(self, item_id: str) -> bool:
        """True when any owner already holds a row with this id."""
        stmt = select(email_memories.c.id).where(email_memories.c.id == item_id)
        try:
            with self.engine.connect() as conn:
                return conn.execute(stmt).first() is not None
        except SQLAlchemyError as e:
            logger.error(f'Error checking email id {item_id}: {e}')
            raise RelationalStoreError(f'Failed to check email id: {e}')

    def select_emails(self,
                      owner: str,
                      sender_email: Optional[str] = None,
                      thread_id: Optional[str] = None,
                      ascending: bool = False) -> List[Dict[str, Any]]:
        """
        Select an owner's emails with optional equality conditions.

        Args:
            owner: Owner namespace
            sender_email: Exact sender match
            thread_id: Exact thread match
            ascending: Order by date_sent ascending instead of descending

        Returns:
            Row dicts ordered by date_sent
        """
        conditions = [email_memories.c.owner == owner]
        if sender_email is not None:
            conditions.append(email_memories.c.sender_email == sender_email)
        if thread_id is not None:
            conditions.append(email_memories.c.thread_id == thread_id)

        order = email_memories.c.date_sent.asc() if ascending else email_memories.c.date_sent.desc()
        stmt = select(email_memories).where(and_(*conditions)).order_by(order)
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as e:
            logger.error(f'Error selecting emails for owner {owner}: {e}')
            raise RelationalStoreError(f'Failed to select emails: {e}')

    def delete_email(self, item_id: str, owner: str) -> int:
        stmt = delete(email_memories).where(and_(email_memories.c.id == item_id, email_memories.c.owner == owner))
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
            logger.debug(f'Deleted email row {item_id} ({result.rowcount} rows)')
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f'Error deleting email row {item_id}: {e}')
            raise RelationalStoreError(f'Failed to delete email: {e}')

    def insert_relationship(self, row: Dict[str, Any]) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(email_relationships).values(**row))
            logger.debug(f"Inserted relationship {row.get('id')}")
        except SQLAlchemyError as e:
            logger.error(f"Error inserting relationship {row.get('id')}: {e}")
            raise RelationalStoreError(f'Failed to insert relationship: {e}')

    def delete_relationships_for(self, item_id: str) -> int:
        """Delete relationships where ``item_id`` is either endpoint."""
        stmt = delete(email_relationships).where(
            or_(email_relationships.c.from_item == item_id, email_relationships.c.to_item == item_id))
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f'Error deleting relationships for {item_id}: {e}')
            raise RelationalStoreError(f'Failed to delete relationships: {e}')

    def relationships_from(self, item_id: str) -> List[Dict[str, Any]]:
        stmt = (select(email_relationships).where(email_relationships.c.from_item == item_id).order_by(
            email_relationships.c.created_at.asc()))
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as e:
            logger.error(f'Error reading relationships from {item_id}: {e}')
            raise RelationalStoreError(f'Failed to read relationships: {e}')

    def related_emails(self, item_id: str, owner: str) -> List[Dict[str, Any]]:
        """Emails linked from ``item_id``, newest first."""
        stmt = (select(email_memories).join(email_relationships,
                                            email_memories.c.id == email_relationships.c.to_item).where(
                                                and_(email_relationships.c.from_item == item_id,
                                                     email_memories.c.owner == owner)).order_by(
                                                         email_memories.c.date_sent.desc()))
        try:
            with self.engine.connect() as conn:
                return [dict(row) for row in conn.execute(stmt).mappings()]
        except SQLAlchemyError as e:
            logger.error(f'Error reading related emails for {item_id}: {e}')
            raise RelationalStoreError(f'Failed to read related emails: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the relational store.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text('SELECT 1'))
            return True

        except Exception as e:
            logger.error(f'Relational store health check failed: {e}')
            return False
