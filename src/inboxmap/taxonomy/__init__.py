"""Canonical taxonomy registry, provider limits and color conversion.

Usage:
    from inboxmap.taxonomy import TaxonomyRegistry, Provider

    registry = TaxonomyRegistry.builtin()
    items = list(registry.flatten("default"))
    limits = registry.get_provider_config(Provider.GMAIL)
"""

from inboxmap.taxonomy.colors import (
    hex_to_o365_color,
    is_valid_color,
    nearest_gmail_color,
)
from inboxmap.taxonomy.models import CanonicalTaxonomyItem, Provider, ProviderConfig
from inboxmap.taxonomy.registry import (
    BUILTIN_TAXONOMIES,
    DEFAULT_BUSINESS_TYPE,
    MAX_TAXONOMY_DEPTH,
    FlatTaxonomy,
    TaxonomyEntry,
    TaxonomyRegistry,
)

__all__ = [
    "BUILTIN_TAXONOMIES",
    "DEFAULT_BUSINESS_TYPE",
    "MAX_TAXONOMY_DEPTH",
    "CanonicalTaxonomyItem",
    "FlatTaxonomy",
    "Provider",
    "ProviderConfig",
    "TaxonomyEntry",
    "TaxonomyRegistry",
    "hex_to_o365_color",
    "is_valid_color",
    "nearest_gmail_color",
]
