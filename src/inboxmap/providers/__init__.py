"""Provider adapters for Gmail labels and Outlook mail folders.

Usage:
    from inboxmap.providers import create_adapter

    adapter = create_adapter("gmail", config)
    result = adapter.discover(user_id, access_token)
    report = adapter.provision(user_id, access_token, [{"path": ["SALES"]}])
"""

from inboxmap.providers.base import (
    DiscoveredItem,
    DiscoveryResult,
    ProviderAdapter,
    ProvisionItem,
    ProvisionReport,
    TaxonomyNode,
)
from inboxmap.providers.client import ProviderHTTPClient
from inboxmap.providers.factory import create_adapter, create_adapters, parse_provider
from inboxmap.providers.gmail import GmailAdapter
from inboxmap.providers.o365 import O365Adapter, parse_folder_path

__all__ = [
    "DiscoveredItem",
    "DiscoveryResult",
    "GmailAdapter",
    "O365Adapter",
    "ProviderAdapter",
    "ProviderHTTPClient",
    "ProvisionItem",
    "ProvisionReport",
    "TaxonomyNode",
    "create_adapter",
    "create_adapters",
    "parse_folder_path",
    "parse_provider",
]
