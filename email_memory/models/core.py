"""
Core data models for the email memory system.
"""

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

# Structured fields shared by the relational row and the vector metadata
EMAIL_FIELDS = ('sender_email', 'sender_name', 'subject', 'body', 'attachments', 'date_sent', 'thread_id',
                'conversation_id')
REQUIRED_FIELDS = ('sender_email', 'body', 'date_sent')

DEFAULT_EMAIL_TYPE = 'inbound'
NOTE_EMAIL_TYPE = 'note'


class _Unset:
    """Marker for a partial-update field the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class EmailMemory:
    """One stored email (or note), mirrored as a relational row and a vector entry.

    Optional fields are normalized to empty strings so a row read back from the
    store compares equal to what was ingested.
    """
    sender_email: str
    body: str
    date_sent: str  # ISO-8601
    sender_name: str = ''
    subject: str = ''
    attachments: str = ''  # comma-separated filenames
    thread_id: str = ''
    conversation_id: str = ''
    email_type: str = DEFAULT_EMAIL_TYPE
    id: Optional[str] = None
    owner: Optional[str] = None
    created_at: Optional[str] = None

    def __post_init__(self):
        for name in EMAIL_FIELDS:
            if getattr(self, name) is None:
                setattr(self, name, '')

    def structured_fields(self) -> Dict[str, str]:
        """Return the structured fields only, absent optionals as ''."""
        return {name: getattr(self, name) or '' for name in EMAIL_FIELDS}

    def vector_metadata(self) -> Dict[str, str]:
        """Return the metadata payload stored next to the vector."""
        return {**self.structured_fields(), 'email_type': self.email_type or DEFAULT_EMAIL_TYPE}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'EmailMemory':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in known})


@dataclass
class EmailRelationship:
    """Directed, informational link between two stored emails."""
    id: str
    from_item: str
    to_item: str
    relationship_kind: str  # follow-up, reference, related-topic, ...
    created_at: Optional[str] = None


@dataclass
class EmailUpdate:
    """Partial update: every field is either UNSET or the new value."""
    sender_email: Any = UNSET
    sender_name: Any = UNSET
    subject: Any = UNSET
    body: Any = UNSET
    attachments: Any = UNSET
    date_sent: Any = UNSET
    thread_id: Any = UNSET
    conversation_id: Any = UNSET

    def supplied(self) -> Dict[str, str]:
        """Return only the fields that were set, None normalized to ''."""
        changes = {}
        for f in fields(self):
            name, value = f.name, getattr(self, f.name)
            if value is UNSET:
                continue
            changes[name] = '' if value is None else value
        return changes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmailUpdate':
        """Build an update from a loose mapping, ignoring unknown keys such as id or owner."""
        return cls(**{k: v for k, v in data.items() if k in EMAIL_FIELDS})


def merge_fields(existing: Dict[str, Any], update: EmailUpdate) -> Dict[str, Any]:
    """Overlay the supplied fields of ``update`` on ``existing`` without mutating either."""
    merged = dict(existing)
    merged.update(update.supplied())
    return merged


@dataclass
class SearchFilters:
    """Post-query predicates applied to nearest-neighbour matches."""
    sender_email: Optional[str] = None
    thread_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    has_attachments: bool = False

    def is_empty(self) -> bool:
        return not (self.sender_email or self.thread_id or self.start_date or self.end_date or self.has_attachments)


@dataclass
class SearchResult:
    """One similarity match with its stored metadata."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def body(self) -> str:
        return self.metadata.get('body') or ''


@dataclass
class RelationshipSuggestion:
    """LLM-proposed link between two emails."""
    email1: str
    email2: str
    relationship: str
    confidence: float
