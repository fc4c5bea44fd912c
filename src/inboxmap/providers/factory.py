"""Adapter factory: the one place that maps a Provider to its adapter class."""

from typing import assert_never

import requests

from inboxmap.config_schema import AppConfig
from inboxmap.core.errors import ValidationError
from inboxmap.providers.base import ProviderAdapter
from inboxmap.providers.client import ProviderHTTPClient
from inboxmap.providers.gmail import GmailAdapter
from inboxmap.providers.o365 import O365Adapter
from inboxmap.taxonomy.models import Provider
from inboxmap.taxonomy.registry import PROVIDER_CONFIGS


def parse_provider(value: Provider | str) -> Provider:
    """Convert a provider name to the Provider enum.

    Raises:
        ValidationError: If the provider is not supported
    """
    try:
        return Provider(value)
    except ValueError:
        raise ValidationError(
            f"Provider must be one of: {', '.join(p.value for p in Provider)}",
            details=[{"field": "provider", "message": f"unsupported provider '{value}'"}],
        ) from None


def create_adapter(
    provider: Provider | str,
    config: AppConfig | None = None,
    session: requests.Session | None = None,
) -> ProviderAdapter:
    """Build the adapter for a provider with its own HTTP client.

    Args:
        provider: Provider enum member or its name ("gmail", "o365")
        config: Application config (defaults apply when omitted)
        session: Shared requests.Session for connection pooling

    Raises:
        ValidationError: If the provider is not supported
    """
    provider = parse_provider(provider)
    config = config or AppConfig()
    transport = config.providers

    match provider:
        case Provider.GMAIL:
            adapter_class: type[ProviderAdapter] = GmailAdapter
            base_url = transport.gmail_base_url
        case Provider.O365:
            adapter_class = O365Adapter
            base_url = transport.graph_base_url
        case _:
            assert_never(provider)

    client = ProviderHTTPClient(
        provider=provider.value,
        base_url=base_url,
        timeout=transport.timeout_seconds,
        max_retries=transport.max_retries,
        session=session,
    )
    return adapter_class(
        client,
        PROVIDER_CONFIGS[provider],
        max_items=config.provisioning.max_items,
        max_concurrency=config.provisioning.max_concurrency,
    )


def create_adapters(
    config: AppConfig | None = None,
    session: requests.Session | None = None,
) -> dict[Provider, ProviderAdapter]:
    """One adapter per supported provider, built once at startup."""
    return {provider: create_adapter(provider, config, session) for provider in Provider}
