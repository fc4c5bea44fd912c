"""JSON API for inboxmap.

Provides a FastAPI application exposing:
- Mailbox discovery with a suggested taxonomy mapping
- Idempotent label/folder provisioning
- Saved mapping storage and retrieval
- The canonical taxonomy and a health check
"""

from inboxmap.web.app import create_app

__all__ = ["create_app"]
