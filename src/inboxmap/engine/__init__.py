"""Suggestion engine and the async mailbox service."""

from inboxmap.engine.service import MailboxService
from inboxmap.engine.suggest import SuggestionEngine, SuggestionResult, name_similarity

__all__ = ["MailboxService", "SuggestionEngine", "SuggestionResult", "name_similarity"]
