"""Canonical business taxonomy and the registry that serves it.

The registry holds one taxonomy tree per business type. Trees are immutable
and validated when the module is imported: a malformed built-in definition
raises TaxonomyInvalid and the process never starts serving requests.

Usage:
    from inboxmap.taxonomy import TaxonomyRegistry

    registry = TaxonomyRegistry.builtin()

    for item in registry.flatten("default"):
        print(item.key, item.display_name)

    urgent = registry.get_item("URGENT")
    gmail_limits = registry.get_provider_config("gmail")
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from inboxmap.core.errors import NotFound, TaxonomyInvalid
from inboxmap.core.logging import get_logger
from inboxmap.taxonomy.colors import is_valid_color
from inboxmap.taxonomy.models import CanonicalTaxonomyItem, Provider, ProviderConfig

logger = get_logger(__name__)

DEFAULT_BUSINESS_TYPE = "default"

# Deepest hierarchy any supported provider handles well
MAX_TAXONOMY_DEPTH = 5

PROVIDER_CONFIGS: dict[Provider, ProviderConfig] = {
    Provider.GMAIL: ProviderConfig(
        provider=Provider.GMAIL,
        max_name_length=225,
        path_separator="/",
        native_nesting=False,
        max_depth=MAX_TAXONOMY_DEPTH,
        color_model="palette",
    ),
    Provider.O365: ProviderConfig(
        provider=Provider.O365,
        max_name_length=255,
        path_separator="\\",
        native_nesting=True,
        max_depth=MAX_TAXONOMY_DEPTH,
        color_model="preset",
    ),
}


def _item(
    key: str,
    name: str,
    color: str,
    *children: CanonicalTaxonomyItem,
    description: str = "",
) -> CanonicalTaxonomyItem:
    return CanonicalTaxonomyItem(
        key=key,
        display_name=name,
        color=color,
        children=tuple(children),
        description=description,
    )


# --- Built-in taxonomies ---

_URGENT = _item("URGENT", "URGENT", "#fb4c2f", description="Emergencies and same-day requests")
_SALES = _item(
    "SALES",
    "SALES",
    "#16a766",
    _item("SALES_NEW_LEADS", "New Leads", "#43d692", description="First contact from prospects"),
    _item("SALES_QUOTES", "Quotes", "#68dfa9", description="Quote requests and follow-ups"),
    description="Prospects, quotes and orders",
)
_SUPPORT = _item(
    "SUPPORT",
    "SUPPORT",
    "#4a86e8",
    _item("SUPPORT_TECHNICAL", "Technical", "#6d9eeb"),
    _item("SUPPORT_PARTS", "Parts & Chemicals", "#a4c2f4"),
    _item("SUPPORT_APPOINTMENTS", "Appointments", "#c9daf8"),
    _item("SUPPORT_GENERAL", "General", "#3c78d8"),
    description="Existing customers asking for help",
)
_MANAGER = _item(
    "MANAGER",
    "MANAGER",
    "#ffad47",
    _item("MANAGER_UNASSIGNED", "Unassigned", "#ffbc6b"),
    description="Mail that needs a manager's decision",
)
_BANKING = _item(
    "BANKING",
    "BANKING",
    "#a479e2",
    _item(
        "BANKING_ETRANSFER",
        "E-Transfer",
        "#b694e8",
        _item("BANKING_ETRANSFER_FROM", "From Business", "#d0bcf1"),
        _item("BANKING_ETRANSFER_TO", "To Business", "#e4d7f5"),
    ),
    _item("BANKING_INVOICES", "Invoices", "#8e63ce"),
    _item("BANKING_ALERTS", "Bank Alerts", "#653e9b"),
    _item("BANKING_REFUNDS", "Refunds", "#41236d"),
    _item(
        "BANKING_RECEIPTS",
        "Receipts",
        "#d0bcf1",
        _item("BANKING_RECEIPTS_SENT", "Payment Sent", "#e4d7f5"),
        _item("BANKING_RECEIPTS_RECEIVED", "Payment Received", "#b694e8"),
    ),
    description="Payments, invoices and bank notifications",
)
_SUPPLIERS = _item("SUPPLIERS", "SUPPLIERS", "#cf8933", description="Vendors and distributors")
_FORMSUB = _item(
    "FORMSUB",
    "FORMSUB",
    "#f691b3",
    _item("FORMSUB_NEW", "New Submission", "#f7a7c0"),
    _item("FORMSUB_WORK_ORDERS", "Work Order Forms", "#fbc8d9"),
    description="Website form submissions",
)
_RECRUITMENT = _item("RECRUITMENT", "RECRUITMENT", "#2a9c68", description="Job applications")
_PROMO = _item("PROMO", "PROMO", "#fad165", description="Marketing and promotions")
_SOCIALMEDIA = _item("SOCIALMEDIA", "SOCIALMEDIA", "#e07798", description="Social networks")
_GOOGLE_REVIEWS = _item(
    "GOOGLE_REVIEWS", "GOOGLE REVIEWS", "#f2c960", description="Review notifications"
)
_PHONE = _item("PHONE", "PHONE", "#285bac", description="Voicemail and call notifications")
_MISC = _item("MISC", "MISC", "#999999", description="Everything else")

DEFAULT_TAXONOMY: tuple[CanonicalTaxonomyItem, ...] = (
    _URGENT,
    _SALES,
    _SUPPORT,
    _MANAGER,
    _BANKING,
    _SUPPLIERS,
    _FORMSUB,
    _RECRUITMENT,
    _PROMO,
    _SOCIALMEDIA,
    _GOOGLE_REVIEWS,
    _PHONE,
    _MISC,
)

BANKING_TAXONOMY: tuple[CanonicalTaxonomyItem, ...] = (
    _URGENT,
    _item(
        "CLIENTS",
        "CLIENTS",
        "#16a766",
        _item("CLIENTS_ONBOARDING", "Onboarding", "#43d692"),
        _item("CLIENTS_ACCOUNTS", "Accounts", "#68dfa9"),
        description="Client relationships",
    ),
    _item(
        "COMPLIANCE",
        "COMPLIANCE",
        "#cc3a21",
        _item("COMPLIANCE_KYC", "KYC", "#e66550"),
        _item("COMPLIANCE_AUDIT", "Audit", "#efa093"),
        description="Regulatory and audit correspondence",
    ),
    _BANKING,
    _SUPPORT,
    _MANAGER,
    _MISC,
)

HEALTHCARE_TAXONOMY: tuple[CanonicalTaxonomyItem, ...] = (
    _URGENT,
    _item(
        "PATIENTS",
        "PATIENTS",
        "#4a86e8",
        _item("PATIENTS_APPOINTMENTS", "Appointments", "#6d9eeb"),
        _item("PATIENTS_RECORDS", "Records", "#a4c2f4"),
        _item("PATIENTS_PRESCRIPTIONS", "Prescriptions", "#c9daf8"),
        description="Patient correspondence",
    ),
    _item(
        "INSURANCE",
        "INSURANCE",
        "#a479e2",
        _item("INSURANCE_CLAIMS", "Claims", "#b694e8"),
        _item("INSURANCE_AUTHORIZATIONS", "Authorizations", "#d0bcf1"),
        description="Insurers and claims",
    ),
    _BANKING,
    _SUPPLIERS,
    _RECRUITMENT,
    _MISC,
)

BUILTIN_TAXONOMIES: dict[str, tuple[CanonicalTaxonomyItem, ...]] = {
    DEFAULT_BUSINESS_TYPE: DEFAULT_TAXONOMY,
    "banking": BANKING_TAXONOMY,
    "healthcare": HEALTHCARE_TAXONOMY,
}


@dataclass(frozen=True, slots=True)
class TaxonomyEntry:
    """A flattened taxonomy item together with its position in the tree.

    Attributes:
        item: The canonical item
        path: Display names from the root down to (and including) this item
        parent_key: Key of the parent item, None for top-level items
        depth: 1 for top-level items
    """

    item: CanonicalTaxonomyItem
    path: tuple[str, ...]
    parent_key: str | None

    @property
    def depth(self) -> int:
        return len(self.path)


class FlatTaxonomy:
    """Lazy pre-order view over a taxonomy tree.

    Every iteration walks the tree again, so the view can be consumed any
    number of times without being materialized.
    """

    def __init__(self, roots: tuple[CanonicalTaxonomyItem, ...]):
        self._roots = roots

    def entries(self) -> Iterator[TaxonomyEntry]:
        """Yield TaxonomyEntry objects in pre-order."""
        stack: list[tuple[CanonicalTaxonomyItem, tuple[str, ...], str | None]] = [
            (root, (root.display_name,), None) for root in reversed(self._roots)
        ]
        while stack:
            item, path, parent_key = stack.pop()
            yield TaxonomyEntry(item=item, path=path, parent_key=parent_key)
            for child in reversed(item.children):
                stack.append((child, path + (child.display_name,), item.key))

    def __iter__(self) -> Iterator[CanonicalTaxonomyItem]:
        for entry in self.entries():
            yield entry.item

    def __len__(self) -> int:
        return sum(1 for _ in self.entries())


class TaxonomyRegistry:
    """Serves canonical taxonomies by business type.

    Attributes:
        default_business_type: Variant used when a caller asks for an unknown type
    """

    def __init__(
        self,
        taxonomies: Mapping[str, tuple[CanonicalTaxonomyItem, ...]],
        default_business_type: str = DEFAULT_BUSINESS_TYPE,
        max_depth: int = MAX_TAXONOMY_DEPTH,
    ):
        """Initialize and validate every taxonomy.

        Raises:
            TaxonomyInvalid: If any taxonomy is malformed or the default is missing
        """
        if default_business_type not in taxonomies:
            raise TaxonomyInvalid(
                f"Default business type '{default_business_type}' has no taxonomy. "
                f"Known types: {sorted(taxonomies)}"
            )
        for business_type, roots in taxonomies.items():
            self.validate(roots, max_depth=max_depth, name=business_type)

        self._taxonomies = dict(taxonomies)
        self.default_business_type = default_business_type
        self._max_depth = max_depth

    @classmethod
    def builtin(cls) -> TaxonomyRegistry:
        """Registry over the built-in taxonomies."""
        return cls(BUILTIN_TAXONOMIES)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(
        taxonomy: tuple[CanonicalTaxonomyItem, ...],
        max_depth: int = MAX_TAXONOMY_DEPTH,
        name: str = "taxonomy",
    ) -> None:
        """Check a taxonomy tree for duplicate keys, bad colors and excess depth.

        Args:
            taxonomy: Top-level items of the tree
            max_depth: Deepest level allowed (top level is depth 1)
            name: Label used in error messages

        Raises:
            TaxonomyInvalid: Listing every problem found
        """
        problems: list[str] = []
        seen: set[str] = set()

        for entry in FlatTaxonomy(taxonomy).entries():
            item = entry.item
            if item.key in seen:
                problems.append(f"duplicate key '{item.key}'")
            seen.add(item.key)
            if not item.key or not item.display_name.strip():
                problems.append(f"item at {'/'.join(entry.path)!r} has an empty key or name")
            if not is_valid_color(item.color):
                problems.append(f"'{item.key}' has invalid color {item.color!r}")
            if entry.depth > max_depth:
                problems.append(f"'{item.key}' is at depth {entry.depth}, maximum is {max_depth}")

        if problems:
            raise TaxonomyInvalid(
                f"Canonical {name} is invalid: " + "; ".join(problems),
                problems=problems,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def business_types(self) -> list[str]:
        """Known business types, sorted."""
        return sorted(self._taxonomies)

    def resolve_business_type(self, business_type: str | None) -> str:
        """Return business_type if known, else the default business type."""
        if business_type and business_type in self._taxonomies:
            return business_type
        if business_type:
            logger.info(
                "Unknown business type, using default taxonomy",
                business_type=business_type,
                default=self.default_business_type,
            )
        return self.default_business_type

    def get_taxonomy(self, business_type: str | None = None) -> tuple[CanonicalTaxonomyItem, ...]:
        """Top-level items for a business type (falls back to the default)."""
        return self._taxonomies[self.resolve_business_type(business_type)]

    def flatten(self, business_type: str | None = None) -> FlatTaxonomy:
        """All items of a business type's taxonomy in pre-order.

        The returned view is lazy and can be iterated repeatedly.
        """
        return FlatTaxonomy(self.get_taxonomy(business_type))

    def find_item(
        self, key: str, business_type: str | None = None
    ) -> CanonicalTaxonomyItem | None:
        """Look up an item by key, returning None if absent."""
        entry = self.find_entry(key, business_type)
        return entry.item if entry else None

    def find_entry(self, key: str, business_type: str | None = None) -> TaxonomyEntry | None:
        """Look up an item and its tree position by key, returning None if absent."""
        for entry in self.flatten(business_type).entries():
            if entry.item.key == key:
                return entry
        return None

    def get_item(self, key: str, business_type: str | None = None) -> CanonicalTaxonomyItem:
        """Look up an item by key.

        Raises:
            NotFound: If no item has that key in the selected taxonomy
        """
        item = self.find_item(key, business_type)
        if item is None:
            raise NotFound(
                f"Taxonomy item '{key}' not found in the "
                f"'{self.resolve_business_type(business_type)}' taxonomy"
            )
        return item

    def path_of(self, key: str, business_type: str | None = None) -> tuple[str, ...]:
        """Display-name path of an item, root first.

        Raises:
            NotFound: If no item has that key
        """
        entry = self.find_entry(key, business_type)
        if entry is None:
            raise NotFound(f"Taxonomy item '{key}' not found")
        return entry.path

    def all_keys(self) -> set[str]:
        """Every key used by any business type."""
        return {
            item.key for roots in self._taxonomies.values() for item in FlatTaxonomy(roots)
        }

    def get_provider_config(self, provider: Provider | str) -> ProviderConfig:
        """Provider limits (name length, separator, nesting model, colors).

        Raises:
            NotFound: If the provider is not supported
        """
        try:
            return PROVIDER_CONFIGS[Provider(provider)]
        except ValueError:
            raise NotFound(
                f"Unsupported provider '{provider}'. "
                f"Supported providers: {', '.join(p.value for p in Provider)}"
            ) from None

    def to_provision_items(self, business_type: str | None = None) -> list[dict[str, Any]]:
        """Every item of a taxonomy as a provisioning request, parents first."""
        return [
            {"path": list(entry.path), "color": entry.item.color}
            for entry in self.flatten(business_type).entries()
        ]

    def to_dict(self, business_type: str | None = None) -> list[dict[str, Any]]:
        """JSON-friendly nested representation of a taxonomy."""

        def _serialize(item: CanonicalTaxonomyItem) -> dict[str, Any]:
            return {
                "key": item.key,
                "displayName": item.display_name,
                "color": item.color,
                "description": item.description,
                "children": [_serialize(child) for child in item.children],
            }

        return [_serialize(root) for root in self.get_taxonomy(business_type)]


# Fail at import if a built-in definition is malformed
for _business_type, _roots in BUILTIN_TAXONOMIES.items():
    TaxonomyRegistry.validate(_roots, name=_business_type)
