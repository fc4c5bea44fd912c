"""Boundary operations: discover, provision, save and fetch mappings.

MailboxService wires the taxonomy registry, provider adapters, suggestion
engine, mapping store and credential provider together. Everything is
injected; the web app and CLI each build one service at startup.

Adapters do blocking HTTP, so discovery and provisioning run in worker
threads via asyncio.to_thread. If the awaiting task is cancelled while
provisioning, the cancel event is set: in-flight provider calls finish but
no further items start.

Usage:
    service = MailboxService(registry, adapters, store, credentials)
    result = await service.discover("user-1", "gmail", "default")
    report = await service.provision("user-1", "gmail", [{"path": ["SALES"]}])
"""

import asyncio
import threading
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from inboxmap.auth.credentials import CredentialProvider
from inboxmap.core.errors import ValidationError
from inboxmap.core.logging import get_logger
from inboxmap.db.store import MailboxMapping, MappingStore, validate_mapping
from inboxmap.engine.suggest import SuggestionEngine
from inboxmap.providers.base import ProviderAdapter, ProvisionItem
from inboxmap.providers.factory import parse_provider
from inboxmap.taxonomy.models import Provider
from inboxmap.taxonomy.registry import DEFAULT_BUSINESS_TYPE, TaxonomyRegistry

logger = get_logger(__name__)

MAX_BUSINESS_TYPE_LENGTH = 50


def validate_business_type(business_type: str | None) -> str:
    """Default to "default"; otherwise require 1-50 characters."""
    if business_type is None:
        return DEFAULT_BUSINESS_TYPE
    business_type = business_type.strip()
    if not 1 <= len(business_type) <= MAX_BUSINESS_TYPE_LENGTH:
        raise ValidationError(
            f"Business type must be 1 to {MAX_BUSINESS_TYPE_LENGTH} characters",
            details=[
                {
                    "field": "businessType",
                    "message": f"must be 1 to {MAX_BUSINESS_TYPE_LENGTH} characters",
                }
            ],
        )
    return business_type


def validate_client_id(client_id: str | None) -> str | None:
    """Client ids are optional but must be UUIDs when given."""
    if client_id is None:
        return None
    try:
        return str(uuid.UUID(client_id))
    except (ValueError, AttributeError, TypeError):
        raise ValidationError(
            "Client ID must be a valid UUID",
            details=[{"field": "clientId", "message": "must be a valid UUID"}],
        ) from None


class MailboxService:
    """Async facade over the discovery, suggestion, provisioning and mapping components."""

    def __init__(
        self,
        registry: TaxonomyRegistry,
        adapters: Mapping[Provider, ProviderAdapter],
        store: MappingStore,
        credentials: CredentialProvider,
        engine: SuggestionEngine | None = None,
    ):
        self.registry = registry
        self.adapters = dict(adapters)
        self.store = store
        self.credentials = credentials
        self.engine = engine or SuggestionEngine(registry)

    def _adapter(self, provider: Provider) -> ProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ValidationError(
                f"Provider '{provider.value}' is not configured",
                details=[{"field": "provider", "message": "provider not configured"}],
            )
        return adapter

    def _token(self, user_id: str, provider: Provider, access_token: str | None) -> str:
        if access_token:
            return access_token
        return self.credentials.get_access_token(user_id, provider)

    async def discover(
        self,
        user_id: str,
        provider: Provider | str,
        business_type: str | None = DEFAULT_BUSINESS_TYPE,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        """Discover the mailbox and suggest a mapping onto the canonical taxonomy.

        Raises:
            ValidationError: Unsupported provider or bad business type
            AuthRequired: No usable credential
            ExternalServiceError: Provider call failed
        """
        provider = parse_provider(provider)
        business_type = validate_business_type(business_type)
        adapter = self._adapter(provider)
        token = self._token(user_id, provider, access_token)

        discovery = await asyncio.to_thread(adapter.discover, user_id, token)
        suggestion = self.engine.suggest(discovery, business_type)

        return {
            "provider": provider.value,
            "businessType": suggestion.business_type,
            "existing": discovery.to_dict(),
            "matches": suggestion.matches,
            "suggestedMapping": suggestion.suggested_mapping,
            "suggestions": suggestion.suggestions,
            "analysis": suggestion.analysis(),
            "missingCount": suggestion.missing_count,
            "discoveredAt": discovery.discovered_at.isoformat(),
        }

    async def provision(
        self,
        user_id: str,
        provider: Provider | str,
        items: Sequence[ProvisionItem | Mapping[str, Any]],
        access_token: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Create missing labels/folders and report per-item outcomes.

        Returns:
            The report with "ok" (False only if every item failed) and "provisionedAt"

        Raises:
            ValidationError: Malformed items (before any network call)
            AuthRequired: No usable credential
            ExternalServiceError: The existence listing failed
        """
        provider = parse_provider(provider)
        adapter = self._adapter(provider)
        adapter.validate_items(items)
        token = self._token(user_id, provider, access_token)

        cancel_event = cancel_event or threading.Event()
        try:
            report = await asyncio.to_thread(
                adapter.provision, user_id, token, items, cancel_event
            )
        except asyncio.CancelledError:
            cancel_event.set()
            logger.warning("provision_cancelled", user_id=user_id, provider=provider.value)
            raise

        result = report.to_dict()
        result["ok"] = not report.all_failed
        result["provisionedAt"] = datetime.now(UTC).isoformat()
        return result

    async def save_mapping(
        self,
        user_id: str,
        provider: Provider | str,
        client_id: str | None,
        mapping: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Validate and persist the approved mapping.

        Keys must be canonical keys known to the registry.

        Raises:
            ValidationError: Bad provider, client id, key or reference
            VersionConflictError: expected_version is stale
            DatabaseError: Persistence failed
        """
        provider = parse_provider(provider)
        client_id = validate_client_id(client_id)
        references = validate_mapping(mapping)

        known_keys = self.registry.all_keys()
        unknown = [key for key in references if key not in known_keys]
        if unknown:
            raise ValidationError(
                f"Unknown canonical keys: {', '.join(unknown)}",
                details=[
                    {"field": f"mapping.{key}", "message": "not a canonical taxonomy key"}
                    for key in unknown
                ],
            )

        version, updated_at = await self.store.save(
            user_id, provider, client_id, references, expected_version=expected_version
        )
        return {
            "ok": True,
            "provider": provider.value,
            "version": version,
            "updatedAt": updated_at.isoformat(),
            "mappingKeys": list(references),
        }

    async def get_mapping(self, user_id: str, provider: Provider | str) -> MailboxMapping:
        """Fetch the saved mapping.

        Raises:
            NotFound: If none has been saved
        """
        return await self.store.get(user_id, parse_provider(provider))

    async def find_mapping(self, user_id: str, provider: Provider | str) -> MailboxMapping | None:
        """Fetch the saved mapping, or None."""
        return await self.store.find(user_id, parse_provider(provider))
