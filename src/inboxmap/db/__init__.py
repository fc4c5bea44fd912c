"""SQLite persistence for mailbox mappings."""

from inboxmap.db.models import init_database, verify_schema
from inboxmap.db.store import MailboxMapping, MappingReference, MappingStore, validate_mapping

__all__ = [
    "MailboxMapping",
    "MappingReference",
    "MappingStore",
    "init_database",
    "validate_mapping",
    "verify_schema",
]
