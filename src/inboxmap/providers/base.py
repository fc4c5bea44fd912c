"""Provider adapter contract and the discovery/provisioning logic shared by all providers.

Gmail and Outlook model hierarchy differently (slash-named flat labels vs.
nested folders), but once a provider can list its resources as
DiscoveredItem objects and create one path segment, everything else is
common: tree building, input validation, parent-first ordering, the
existence index, per-item failure isolation, bounded concurrency and
cancellation.

Subclasses implement:
    parse_item()      -- raw provider resource -> DiscoveredItem
    list_items()      -- every label/folder of the mailbox, system ones included
    _create_segment() -- create one label/folder and return its id
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from inboxmap.core.errors import AuthRequired, ExternalServiceError, ValidationError
from inboxmap.core.logging import get_logger
from inboxmap.providers.client import ProviderHTTPClient
from inboxmap.taxonomy.colors import is_valid_color
from inboxmap.taxonomy.models import Provider, ProviderConfig

logger = get_logger(__name__)

USER_ITEM = "user"
SYSTEM_ITEM = "system"

DEFAULT_MAX_ITEMS = 50
MAX_SEGMENT_LENGTH = 100

REASON_ALREADY_EXISTS = "already_exists"
REASON_DUPLICATE = "duplicate_in_request"
REASON_CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DiscoveredItem:
    """A label or folder as found in the user's mailbox.

    Attributes:
        id: Provider-native identifier
        name: Raw provider name (Gmail: full slash path; O365: folder display name)
        path: Hierarchical decomposition, root first
        type: "user" or "system"
        messages_total: Message count, when the provider reports it
        messages_unread: Unread count, when the provider reports it
        color: Provider-native color, when the provider reports one
        parent_id: Parent folder id (O365 only)
    """

    id: str
    name: str
    path: tuple[str, ...]
    type: str = USER_ITEM
    messages_total: int | None = None
    messages_unread: int | None = None
    color: str | None = None
    parent_id: str | None = None

    @property
    def is_system(self) -> bool:
        return self.type == SYSTEM_ITEM

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "path": list(self.path),
            "type": self.type,
            "messagesTotal": self.messages_total,
            "messagesUnread": self.messages_unread,
            "color": self.color,
            "parentId": self.parent_id,
        }


@dataclass
class TaxonomyNode:
    """One node of the discovered tree.

    Nodes implied by a deeper path but with no provider resource of their
    own (e.g. "SALES" when only the label "SALES/New Leads" exists) have
    item=None.
    """

    name: str
    path: tuple[str, ...]
    item: DiscoveredItem | None = None
    children: list[TaxonomyNode] = field(default_factory=list)

    @property
    def item_id(self) -> str | None:
        return self.item.id if self.item else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": list(self.path),
            "itemId": self.item_id,
            "children": [child.to_dict() for child in self.children],
        }


def build_taxonomy(items: Sequence[DiscoveredItem]) -> list[TaxonomyNode]:
    """Group items into a tree by shared path prefix.

    Segments are matched case-insensitively; the first spelling seen names
    the node. Sibling order follows first appearance in `items`.
    """
    roots: list[TaxonomyNode] = []
    index: dict[tuple[str, ...], TaxonomyNode] = {}

    for item in items:
        siblings = roots
        for depth in range(1, len(item.path) + 1):
            prefix = item.path[:depth]
            key = casefold_path(prefix)
            node = index.get(key)
            if node is None:
                node = TaxonomyNode(name=prefix[-1], path=prefix)
                index[key] = node
                siblings.append(node)
            siblings = node.children
        if item.path and index[casefold_path(item.path)].item is None:
            index[casefold_path(item.path)].item = item

    return roots


def iter_nodes(roots: Sequence[TaxonomyNode]) -> Iterator[TaxonomyNode]:
    """Yield every node of a discovered tree in pre-order."""
    for node in roots:
        yield node
        yield from iter_nodes(node.children)


def casefold_path(path: Sequence[str]) -> tuple[str, ...]:
    return tuple(segment.casefold() for segment in path)


@dataclass(frozen=True)
class DiscoveryResult:
    """Normalized view of one mailbox at one point in time.

    Attributes:
        provider: Provider the items came from
        items: User items, in provider order
        total_items: Number of user items
        user_items: Number of user items
        system_items: Number of system items (excluded from `items`)
        taxonomy: Tree of user items grouped by path prefix
        discovered_at: When the listing completed
    """

    provider: Provider
    items: tuple[DiscoveredItem, ...]
    total_items: int
    user_items: int
    system_items: int
    taxonomy: tuple[TaxonomyNode, ...]
    discovered_at: datetime

    @property
    def max_depth(self) -> int:
        return max((len(item.path) for item in self.items), default=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalItems": self.total_items,
            "userItems": self.user_items,
            "systemItems": self.system_items,
            "maxDepth": self.max_depth,
            "items": [item.to_dict() for item in self.items],
            "taxonomy": [node.to_dict() for node in self.taxonomy],
        }


@dataclass(frozen=True, slots=True)
class ProvisionItem:
    """A label/folder the caller wants to exist.

    Attributes:
        path: 1-5 segments, root first
        color: Optional hex color; invalid values fall back to the provider default
    """

    path: tuple[str, ...]
    color: str | None = None


@dataclass
class ProvisionReport:
    """Outcome of one provisioning call, in parent-first order."""

    provider: Provider
    requested: int
    created: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.created and not self.skipped

    def summary(self) -> dict[str, int]:
        return {
            "totalRequested": self.requested,
            "totalCreated": len(self.created),
            "totalSkipped": len(self.skipped),
            "totalFailed": len(self.failed),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "summary": self.summary(),
        }


# ---------------------------------------------------------------------------
# Adapter contract
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Formal contract every provider implements.

    Attributes:
        provider: Which provider this adapter talks to
        client: HTTP transport bound to the provider's API
        config: Provider limits (name length, separator, nesting model)
        max_items: Maximum provisioning items per call
        max_concurrency: Worker threads for independent subtrees (1 = sequential)
    """

    provider: Provider

    def __init__(
        self,
        client: ProviderHTTPClient,
        config: ProviderConfig,
        max_items: int = DEFAULT_MAX_ITEMS,
        max_concurrency: int = 1,
    ):
        self.client = client
        self.config = config
        self.max_items = max_items
        self.max_concurrency = max(1, max_concurrency)

    # --- provider-specific hooks ---

    @abstractmethod
    def parse_item(self, raw: Mapping[str, Any], *args: Any) -> DiscoveredItem:
        """Convert one raw provider resource into a DiscoveredItem."""

    @abstractmethod
    def list_items(self, access_token: str | None) -> list[DiscoveredItem]:
        """List every label/folder in the mailbox, system ones included."""

    @abstractmethod
    def _create_segment(
        self,
        access_token: str | None,
        path: tuple[str, ...],
        parent_id: str | None,
        color: str | None,
    ) -> str:
        """Create the last segment of `path` under `parent_id`; return the new id.

        `color` is the provider-native color returned by resolve_color(), or None.
        """

    @abstractmethod
    def resolve_color(self, hex_color: str | None) -> Any:
        """Convert a hex color to the provider's color value (None for default)."""

    # --- discovery ---

    def discover(self, user_id: str, access_token: str | None) -> DiscoveryResult:
        """List and normalize the user's labels/folders.

        Raises:
            AuthRequired: No token, or the provider rejected it
            ExternalServiceError: Non-2xx or network failure
        """
        if not access_token:
            raise AuthRequired(
                f"No {self.provider.value} access token for user {user_id}. "
                "Connect the mailbox first.",
                provider=self.provider.value,
            )

        all_items = self.list_items(access_token)
        user_items = tuple(item for item in all_items if not item.is_system)
        result = DiscoveryResult(
            provider=self.provider,
            items=user_items,
            total_items=len(user_items),
            user_items=len(user_items),
            system_items=len(all_items) - len(user_items),
            taxonomy=tuple(build_taxonomy(user_items)),
            discovered_at=datetime.now(UTC),
        )

        logger.info(
            "discovery_complete",
            provider=self.provider.value,
            user_id=user_id,
            user_items=result.user_items,
            system_items=result.system_items,
            max_depth=result.max_depth,
        )
        return result

    # --- provisioning ---

    def validate_items(
        self, items: Sequence[ProvisionItem | Mapping[str, Any]]
    ) -> tuple[list[ProvisionItem], list[ProvisionItem]]:
        """Normalize and check provisioning input before any network call.

        Segments are stripped of surrounding whitespace. Duplicate paths
        (case-insensitive) collapse to their first occurrence.

        Returns:
            (unique items, dropped duplicates)

        Raises:
            ValidationError: Listing every offending field
        """
        if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
            raise ValidationError(
                "Provisioning items must be a list",
                details=[{"field": "items", "message": "must be a list"}],
            )
        if not 1 <= len(items) <= self.max_items:
            raise ValidationError(
                f"Provisioning accepts 1 to {self.max_items} items, got {len(items)}",
                details=[
                    {"field": "items", "message": f"must contain 1 to {self.max_items} items"}
                ],
            )

        details: list[dict[str, Any]] = []
        normalized: list[ProvisionItem] = []

        for position, raw in enumerate(items):
            prefix = f"items.{position}"
            if isinstance(raw, ProvisionItem):
                raw_path, color = raw.path, raw.color
            elif isinstance(raw, Mapping):
                raw_path, color = raw.get("path"), raw.get("color")
            else:
                details.append({"field": prefix, "message": "must be an object"})
                continue

            if not isinstance(raw_path, Sequence) or isinstance(raw_path, (str, bytes)):
                details.append({"field": f"{prefix}.path", "message": "must be a list of strings"})
                continue
            if not 1 <= len(raw_path) <= self.config.max_depth:
                details.append(
                    {
                        "field": f"{prefix}.path",
                        "message": f"must have 1 to {self.config.max_depth} segments",
                    }
                )
                continue

            path: list[str] = []
            for index, segment in enumerate(raw_path):
                field_name = f"{prefix}.path.{index}"
                if not isinstance(segment, str):
                    details.append({"field": field_name, "message": "must be a string"})
                    continue
                segment = segment.strip()
                if not 1 <= len(segment) <= MAX_SEGMENT_LENGTH:
                    details.append(
                        {
                            "field": field_name,
                            "message": f"must be 1 to {MAX_SEGMENT_LENGTH} characters",
                        }
                    )
                elif not self.config.native_nesting and self.config.path_separator in segment:
                    details.append(
                        {
                            "field": field_name,
                            "message": f"must not contain '{self.config.path_separator}'",
                        }
                    )
                path.append(segment)

            if len(path) != len(raw_path):
                continue
            if self.config.name_length(path) > self.config.max_name_length:
                details.append(
                    {
                        "field": f"{prefix}.path",
                        "message": (
                            f"name exceeds the {self.provider.value} limit of "
                            f"{self.config.max_name_length} characters"
                        ),
                    }
                )
                continue

            normalized.append(
                ProvisionItem(path=tuple(path), color=color if isinstance(color, str) else None)
            )

        if details:
            raise ValidationError(
                f"Invalid provisioning request: {len(details)} problem(s) found",
                details=details,
            )

        unique: list[ProvisionItem] = []
        duplicates: list[ProvisionItem] = []
        seen: set[tuple[str, ...]] = set()
        for item in normalized:
            key = casefold_path(item.path)
            if key in seen:
                duplicates.append(item)
            else:
                seen.add(key)
                unique.append(item)
        return unique, duplicates

    @staticmethod
    def order_items(items: Sequence[ProvisionItem]) -> list[ProvisionItem]:
        """Parent-first order: by depth, then case-folded path."""
        return sorted(items, key=lambda item: (len(item.path), casefold_path(item.path)))

    def provision(
        self,
        user_id: str,
        access_token: str | None,
        items: Sequence[ProvisionItem | Mapping[str, Any]],
        cancel_event: threading.Event | None = None,
    ) -> ProvisionReport:
        """Create missing labels/folders, parents before children.

        Safe to re-run: items whose exact path already exists are skipped
        with reason "already_exists". Per-item failures are recorded and the
        remaining items still run.

        Args:
            user_id: Mailbox owner (for logging)
            access_token: Bearer token for the provider
            items: ProvisionItem objects or {"path": [...], "color": "#RRGGBB"} dicts
            cancel_event: When set, no further items are started

        Raises:
            ValidationError: Malformed input (before any network call)
            AuthRequired: No token, or the listing was rejected
            ExternalServiceError: The existence listing failed
        """
        unique, duplicates = self.validate_items(items)
        if not access_token:
            raise AuthRequired(
                f"No {self.provider.value} access token for user {user_id}. "
                "Connect the mailbox first.",
                provider=self.provider.value,
            )

        ordered = self.order_items(unique)
        report = ProvisionReport(provider=self.provider, requested=len(items))

        # One fresh listing per call; the index grows as segments are created
        index: dict[tuple[str, ...], str] = {
            casefold_path(item.path): item.id for item in self.list_items(access_token)
        }
        lock = threading.Lock()

        # Items sharing a root segment form one sequential group
        groups: dict[str, list[int]] = {}
        for position, item in enumerate(ordered):
            groups.setdefault(item.path[0].casefold(), []).append(position)

        outcomes: list[tuple[str, dict[str, Any]] | None] = [None] * len(ordered)

        def run_group(positions: list[int]) -> None:
            for position in positions:
                if cancel_event is not None and cancel_event.is_set():
                    return
                outcomes[position] = self._provision_one(
                    user_id, access_token, ordered[position], index, lock
                )

        workers = min(self.max_concurrency, len(groups))
        if workers <= 1:
            for positions in groups.values():
                run_group(positions)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                # list() re-raises any unexpected exception from a worker
                list(executor.map(run_group, groups.values()))

        for item, outcome in zip(ordered, outcomes, strict=True):
            if outcome is None:
                report.cancelled = True
                report.skipped.append(
                    {"path": list(item.path), "providerId": None, "reason": REASON_CANCELLED}
                )
                continue
            kind, entry = outcome
            getattr(report, kind).append(entry)

        for item in duplicates:
            report.skipped.append(
                {"path": list(item.path), "providerId": None, "reason": REASON_DUPLICATE}
            )

        logger.info(
            "provision_complete",
            provider=self.provider.value,
            user_id=user_id,
            cancelled=report.cancelled,
            **report.summary(),
        )
        return report

    def _provision_one(
        self,
        user_id: str,
        access_token: str,
        item: ProvisionItem,
        index: dict[tuple[str, ...], str],
        lock: threading.Lock,
    ) -> tuple[str, dict[str, Any]]:
        """Provision one item; returns ("created"|"skipped"|"failed", report entry)."""
        path = list(item.path)
        with lock:
            existing = index.get(casefold_path(item.path))
        if existing is not None:
            return "skipped", {
                "path": path,
                "providerId": existing,
                "reason": REASON_ALREADY_EXISTS,
            }

        color = self.resolve_color(item.color)
        created_ancestors: list[list[str]] = []
        parent_id: str | None = None

        try:
            for depth in range(1, len(item.path) + 1):
                prefix = item.path[:depth]
                key = casefold_path(prefix)
                with lock:
                    found = index.get(key)
                if found is not None:
                    parent_id = found
                    continue

                is_leaf = depth == len(item.path)
                new_id, created = self._create_or_adopt(
                    access_token, prefix, parent_id, color if is_leaf else None
                )
                with lock:
                    index[key] = new_id
                parent_id = new_id

                if not created and is_leaf:
                    return "skipped", {
                        "path": path,
                        "providerId": new_id,
                        "reason": REASON_ALREADY_EXISTS,
                    }
                if created and not is_leaf:
                    created_ancestors.append(list(prefix))

        except (ExternalServiceError, AuthRequired) as e:
            logger.warning(
                "provision_item_failed",
                provider=self.provider.value,
                user_id=user_id,
                path=path,
                error=str(e),
            )
            return "failed", {
                "path": path,
                "error": str(e),
                "statusCode": getattr(e, "status_code", None),
            }

        return "created", {
            "path": path,
            "providerId": parent_id,
            "color": color,
            "createdAncestors": created_ancestors,
        }

    def _create_or_adopt(
        self,
        access_token: str,
        path: tuple[str, ...],
        parent_id: str | None,
        color: Any,
    ) -> tuple[str, bool]:
        """Create a segment; if the provider says it already exists, adopt it.

        A concurrent provisioning run for the same mailbox can create the
        segment between our listing and our create call (409).

        Returns:
            (provider id, True if this call created it)
        """
        try:
            return self._create_segment(access_token, path, parent_id, color), True
        except ExternalServiceError as e:
            if e.status_code != 409:
                raise
            key = casefold_path(path)
            for existing in self.list_items(access_token):
                if casefold_path(existing.path) == key:
                    logger.info(
                        "provision_segment_adopted",
                        provider=self.provider.value,
                        path=list(path),
                        provider_id=existing.id,
                    )
                    return existing.id, False
            raise

    def _created_id(self, resource: Mapping[str, Any], path: tuple[str, ...]) -> str:
        """Id of a freshly created label/folder; a 2xx without one is a failure."""
        resource_id = resource.get("id") if isinstance(resource, Mapping) else None
        if not resource_id:
            raise ExternalServiceError(
                f"{self.provider.value} accepted the create for "
                f"{'/'.join(path)} but returned no id",
                provider=self.provider.value,
                error_code="invalid_response",
            )
        return resource_id

    def _default_color_warning(self, hex_color: str | None) -> None:
        if hex_color is not None and not is_valid_color(hex_color):
            logger.warning(
                "invalid_color_using_default",
                provider=self.provider.value,
                color=hex_color,
            )
