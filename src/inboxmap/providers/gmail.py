"""Gmail label adapter.

Gmail has a flat label namespace: hierarchy exists only by naming convention,
"SALES/New Leads" being a label whose name contains a slash. Nested labels
show up under their parent in the Gmail UI only if the parent label exists,
so provisioning creates every missing prefix as its own label.
"""

from collections.abc import Mapping
from typing import Any

from inboxmap.core.logging import get_logger
from inboxmap.providers.base import SYSTEM_ITEM, USER_ITEM, DiscoveredItem, ProviderAdapter
from inboxmap.taxonomy.colors import nearest_gmail_color
from inboxmap.taxonomy.models import Provider

logger = get_logger(__name__)

LABELS_ENDPOINT = "/gmail/v1/users/me/labels"

# Built-in labels Gmail may report without type == "system"
RESERVED_LABEL_NAMES = frozenset(
    {
        "INBOX",
        "SENT",
        "DRAFT",
        "SPAM",
        "TRASH",
        "STARRED",
        "IMPORTANT",
        "UNREAD",
        "CHAT",
    }
)


def is_system_label(raw: Mapping[str, Any]) -> bool:
    name = raw.get("name") or ""
    return (
        raw.get("type") == SYSTEM_ITEM
        or name.startswith("CATEGORY_")
        or name.upper() in RESERVED_LABEL_NAMES
    )


class GmailAdapter(ProviderAdapter):
    """Discovers and provisions Gmail labels.

    Example:
        adapter = GmailAdapter(client, registry.get_provider_config("gmail"))
        result = adapter.discover("user-1", token)
        report = adapter.provision("user-1", token, [{"path": ["SALES", "Quotes"]}])
    """

    provider = Provider.GMAIL

    def parse_item(self, raw: Mapping[str, Any], *args: Any) -> DiscoveredItem:
        """Convert a Gmail label resource into a DiscoveredItem.

        The name is split on "/" with each segment trimmed; empty segments
        (leading, trailing or doubled slashes) are dropped.
        """
        name = raw.get("name") or ""
        path = tuple(segment.strip() for segment in name.split("/") if segment.strip())
        color = raw.get("color") or {}
        return DiscoveredItem(
            id=raw["id"],
            name=name,
            path=path or (name,),
            type=SYSTEM_ITEM if is_system_label(raw) else USER_ITEM,
            messages_total=raw.get("messagesTotal"),
            messages_unread=raw.get("messagesUnread"),
            color=color.get("backgroundColor"),
        )

    def list_items(self, access_token: str | None) -> list[DiscoveredItem]:
        response = self.client.get(LABELS_ENDPOINT, access_token)
        labels = response.get("labels", [])
        logger.debug("Gmail labels fetched", count=len(labels))
        return [self.parse_item(label) for label in labels]

    def resolve_color(self, hex_color: str | None) -> dict[str, str] | None:
        """Nearest Gmail palette color pair, or None for Gmail's default."""
        if hex_color is None:
            return None
        self._default_color_warning(hex_color)
        return nearest_gmail_color(hex_color)

    def _create_segment(
        self,
        access_token: str | None,
        path: tuple[str, ...],
        parent_id: str | None,
        color: dict[str, str] | None,
    ) -> str:
        name = self.config.path_separator.join(path)
        body: dict[str, Any] = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        if color:
            body["color"] = color

        label = self.client.post(LABELS_ENDPOINT, access_token, json=body)
        label_id = self._created_id(label, path)
        logger.info("label_created", provider=self.provider.value, name=name, id=label_id)
        return label_id
