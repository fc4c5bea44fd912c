"""JSON API routes.

All routes live under /api:
- GET  /api/mailbox/discover   discover + suggest
- POST /api/mailbox/provision  create missing labels/folders
- PUT  /api/mailbox/mapping    save the approved mapping
- GET  /api/mailbox/mapping    fetch the saved mapping
- GET  /api/taxonomy           canonical taxonomy for a business type
- GET  /api/health             liveness and database check

Errors use {"detail": {"error": CODE, "message": ..., "details": ...}}.
Provider and server failures also carry the request id as "requestId".
"""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from inboxmap import __version__
from inboxmap.core.errors import (
    AuthRequired,
    DatabaseError,
    ExternalServiceError,
    InboxMapError,
    NotFound,
    ValidationError,
    VersionConflictError,
)
from inboxmap.core.logging import get_logger, get_request_id
from inboxmap.db.models import verify_schema
from inboxmap.db.store import MappingStore
from inboxmap.engine.service import MailboxService, validate_business_type
from inboxmap.taxonomy.registry import DEFAULT_BUSINESS_TYPE, TaxonomyRegistry
from inboxmap.web.dependencies import (
    get_provider_token,
    get_registry,
    get_service,
    get_store,
    get_user_id,
)

logger = get_logger(__name__)

api_router = APIRouter(prefix="/api")

ProviderName = Literal["gmail", "o365"]


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class ProvisionItemBody(BaseModel):
    """One label/folder to provision."""

    path: list[str]
    color: str | None = None


class ProvisionRequest(BaseModel):
    """Request body for provisioning."""

    provider: ProviderName
    items: list[ProvisionItemBody]


class SaveMappingRequest(BaseModel):
    """Request body for saving the approved mapping."""

    provider: ProviderName
    client_id: str | None = Field(default=None, alias="clientId")
    mapping: dict[str, Any]
    expected_version: int | None = Field(default=None, alias="expectedVersion", ge=0)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _http_error(error: InboxMapError, failure_code: str) -> HTTPException:
    """Translate an inboxmap exception into an HTTPException."""
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=400,
            detail={"error": "VALIDATION_ERROR", "message": str(error), "details": error.details},
        )
    if isinstance(error, AuthRequired):
        return HTTPException(
            status_code=401,
            detail={"error": "AUTH_REQUIRED", "message": str(error), "provider": error.provider},
        )
    if isinstance(error, NotFound):
        return HTTPException(
            status_code=404, detail={"error": "MAPPING_NOT_FOUND", "message": str(error)}
        )
    if isinstance(error, VersionConflictError):
        return HTTPException(
            status_code=409,
            detail={
                "error": "VERSION_CONFLICT",
                "message": str(error),
                "expectedVersion": error.expected_version,
                "actualVersion": error.actual_version,
            },
        )
    if isinstance(error, ExternalServiceError):
        return HTTPException(
            status_code=502,
            detail={
                "error": failure_code,
                "message": str(error),
                "provider": error.provider,
                "statusCode": error.status_code,
                "errorCode": error.error_code,
                "requestId": get_request_id(),
            },
        )
    if isinstance(error, DatabaseError):
        return HTTPException(
            status_code=500,
            detail={
                "error": "DATABASE_ERROR",
                "message": str(error),
                "requestId": get_request_id(),
            },
        )
    return HTTPException(
        status_code=500,
        detail={"error": failure_code, "message": str(error), "requestId": get_request_id()},
    )


# ---------------------------------------------------------------------------
# Mailbox routes
# ---------------------------------------------------------------------------


@api_router.get("/mailbox/discover")
async def discover_mailbox(
    provider: ProviderName = Query(...),
    business_type: str = Query(default=DEFAULT_BUSINESS_TYPE, alias="businessType"),
    user_id: str = Depends(get_user_id),
    access_token: str | None = Depends(get_provider_token),
    service: MailboxService = Depends(get_service),
):
    """Discover existing labels/folders and suggest a mapping."""
    try:
        return await service.discover(user_id, provider, business_type, access_token)
    except InboxMapError as e:
        logger.error("discovery_failed", provider=provider, user_id=user_id, error=str(e))
        raise _http_error(e, "DISCOVERY_FAILED") from None


@api_router.post("/mailbox/provision")
async def provision_mailbox(
    body: ProvisionRequest,
    user_id: str = Depends(get_user_id),
    access_token: str | None = Depends(get_provider_token),
    service: MailboxService = Depends(get_service),
):
    """Create missing labels/folders, parents first.

    Returns 200 with per-item outcomes unless every item failed (502).
    """
    items = [item.model_dump() for item in body.items]
    try:
        result = await service.provision(user_id, body.provider, items, access_token)
    except InboxMapError as e:
        logger.error("provisioning_failed", provider=body.provider, user_id=user_id, error=str(e))
        raise _http_error(e, "PROVISION_FAILED") from None

    if not result["ok"]:
        raise HTTPException(
            status_code=502,
            detail={
                "error": "PROVISION_FAILED",
                "message": "Every provisioning item failed",
                "details": result,
            },
        )
    return result


@api_router.put("/mailbox/mapping")
async def save_mailbox_mapping(
    body: SaveMappingRequest,
    user_id: str = Depends(get_user_id),
    service: MailboxService = Depends(get_service),
):
    """Save the approved canonical-key mapping (version bumps on every save)."""
    try:
        return await service.save_mapping(
            user_id,
            body.provider,
            body.client_id,
            body.mapping,
            expected_version=body.expected_version,
        )
    except InboxMapError as e:
        raise _http_error(e, "MAPPING_SAVE_FAILED") from None


@api_router.get("/mailbox/mapping")
async def get_mailbox_mapping(
    provider: ProviderName = Query(...),
    user_id: str = Depends(get_user_id),
    service: MailboxService = Depends(get_service),
):
    """Fetch the saved mapping for the user and provider."""
    try:
        mapping = await service.get_mapping(user_id, provider)
    except InboxMapError as e:
        raise _http_error(e, "MAPPING_FETCH_FAILED") from None
    return mapping.to_dict()


# ---------------------------------------------------------------------------
# Taxonomy and health
# ---------------------------------------------------------------------------


@api_router.get("/taxonomy")
async def get_taxonomy(
    business_type: str = Query(default=DEFAULT_BUSINESS_TYPE, alias="businessType"),
    registry: TaxonomyRegistry = Depends(get_registry),
):
    """Canonical taxonomy tree for a business type."""
    try:
        business_type = validate_business_type(business_type)
    except ValidationError as e:
        raise _http_error(e, "VALIDATION_ERROR") from None

    resolved = registry.resolve_business_type(business_type)
    return {
        "businessType": resolved,
        "businessTypes": registry.business_types(),
        "items": registry.to_dict(resolved),
        "itemCount": len(registry.flatten(resolved)),
    }


@api_router.get("/health")
async def health_check(store: MappingStore = Depends(get_store)):
    """Health check endpoint for container orchestration and monitoring."""
    database_ok = await verify_schema(store.db_path)
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
        "version": __version__,
    }
