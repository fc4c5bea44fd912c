"""FastAPI dependency injection helpers.

Shared objects are built once in the lifespan and stored on app.state;
route handlers receive them through these getters.

Usage:
    from inboxmap.web.dependencies import get_service

    @router.get("/mailbox/mapping")
    async def get_mapping(service: MailboxService = Depends(get_service)):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from inboxmap.config_schema import AppConfig
    from inboxmap.db.store import MappingStore
    from inboxmap.engine.service import MailboxService
    from inboxmap.taxonomy.registry import TaxonomyRegistry

USER_ID_HEADER = "X-User-Id"
PROVIDER_TOKEN_HEADER = "X-Provider-Token"


def get_service(request: Request) -> MailboxService:
    """Get the shared MailboxService from app state."""
    return request.app.state.service


def get_store(request: Request) -> MappingStore:
    """Get the shared MappingStore from app state."""
    return request.app.state.store


def get_registry(request: Request) -> TaxonomyRegistry:
    """Get the TaxonomyRegistry from app state."""
    return request.app.state.registry


def get_config(request: Request) -> AppConfig:
    """Get the current AppConfig from app state."""
    return request.app.state.config


def get_user_id(request: Request) -> str:
    """Authenticated user id, set by the upstream auth middleware.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=401,
            detail={
                "error": "AUTH_REQUIRED",
                "message": f"Missing {USER_ID_HEADER} header. Requests must be authenticated.",
            },
        )
    return user_id


def get_provider_token(request: Request) -> str | None:
    """Caller-supplied provider access token, if any."""
    token = (request.headers.get(PROVIDER_TOKEN_HEADER) or "").strip()
    return token or None
