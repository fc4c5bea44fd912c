"""Office 365 (Outlook) mail folder adapter.

Outlook has real nested folders: each folder has a parentFolderId and its
own displayName, so a folder's path is found by walking the parent chain.
Folders carry no color; the color is attached to an Outlook master category
named after the folder path, on a best-effort basis.
"""

from collections import deque
from collections.abc import Mapping
from typing import Any

from inboxmap.core.errors import AuthRequired, ExternalServiceError
from inboxmap.core.logging import get_logger
from inboxmap.providers.base import SYSTEM_ITEM, USER_ITEM, DiscoveredItem, ProviderAdapter
from inboxmap.taxonomy.colors import hex_to_o365_color
from inboxmap.taxonomy.models import Provider

logger = get_logger(__name__)

MAIL_FOLDERS_ENDPOINT = "/me/mailFolders"
MASTER_CATEGORIES_ENDPOINT = "/me/outlook/masterCategories"

# Default folders of every mailbox, compared case-insensitively at the root
WELL_KNOWN_FOLDER_NAMES = frozenset(
    {
        "inbox",
        "drafts",
        "sent items",
        "deleted items",
        "junk email",
        "archive",
        "outbox",
        "conversation history",
        "clutter",
        "sync issues",
        "scheduled",
        "rss feeds",
        "rss subscriptions",
        "notes",
    }
)


def parse_folder_path(value: str) -> tuple[str, ...]:
    """Split a backslash-delimited folder path ("A\\\\B\\\\C") into segments.

    Segments are trimmed and empty segments dropped.
    """
    return tuple(segment.strip() for segment in value.split("\\") if segment.strip())


class O365Adapter(ProviderAdapter):
    """Discovers and provisions Outlook mail folders through Microsoft Graph.

    Example:
        adapter = O365Adapter(client, registry.get_provider_config("o365"))
        result = adapter.discover("user-1", token)
    """

    provider = Provider.O365

    def parse_item(
        self,
        raw: Mapping[str, Any],
        folders_by_id: Mapping[str, Mapping[str, Any]] | None = None,
        *args: Any,
    ) -> DiscoveredItem:
        """Convert a Graph mailFolder resource into a DiscoveredItem.

        The path comes from walking parentFolderId through folders_by_id. A
        raw folder carrying a "path" string ("A\\\\B") uses that instead.
        """
        display_name = raw.get("displayName") or ""

        if isinstance(raw.get("path"), str):
            path = parse_folder_path(raw["path"])
            is_root = len(path) <= 1
        else:
            folders_by_id = folders_by_id or {}
            segments = [display_name.strip()]
            seen = {raw.get("id")}
            parent_id = raw.get("parentFolderId")
            while parent_id in folders_by_id and parent_id not in seen:
                seen.add(parent_id)
                parent = folders_by_id[parent_id]
                segments.insert(0, (parent.get("displayName") or "").strip())
                parent_id = parent.get("parentFolderId")
            path = tuple(segments)
            is_root = len(path) == 1

        is_system = bool(raw.get("isHidden")) or (
            is_root and display_name.strip().casefold() in WELL_KNOWN_FOLDER_NAMES
        )

        return DiscoveredItem(
            id=raw["id"],
            name=display_name,
            path=path or (display_name,),
            type=SYSTEM_ITEM if is_system else USER_ITEM,
            messages_total=raw.get("totalItemCount"),
            messages_unread=raw.get("unreadItemCount"),
            parent_id=raw.get("parentFolderId"),
        )

    def _list_raw_folders(self, access_token: str | None) -> list[dict[str, Any]]:
        """Every folder of the mailbox, breadth-first, following pagination."""
        folders = self.client.paginate(MAIL_FOLDERS_ENDPOINT, access_token, params={"$top": 100})
        pending = deque(f for f in folders if f.get("childFolderCount", 0) > 0)

        while pending:
            parent = pending.popleft()
            children = self.client.paginate(
                f"{MAIL_FOLDERS_ENDPOINT}/{parent['id']}/childFolders",
                access_token,
                params={"$top": 100},
            )
            for child in children:
                child.setdefault("parentFolderId", parent["id"])
                folders.append(child)
                if child.get("childFolderCount", 0) > 0:
                    pending.append(child)

        return folders

    def list_items(self, access_token: str | None) -> list[DiscoveredItem]:
        folders = self._list_raw_folders(access_token)
        folders_by_id = {folder["id"]: folder for folder in folders}
        logger.debug("Outlook folders fetched", count=len(folders))
        return [self.parse_item(folder, folders_by_id) for folder in folders]

    def resolve_color(self, hex_color: str | None) -> str | None:
        """Nearest Outlook category preset, or None for no category."""
        if hex_color is None:
            return None
        self._default_color_warning(hex_color)
        preset = hex_to_o365_color(hex_color)
        return None if preset == "none" else preset

    def _create_segment(
        self,
        access_token: str | None,
        path: tuple[str, ...],
        parent_id: str | None,
        color: str | None,
    ) -> str:
        if parent_id is None:
            endpoint = MAIL_FOLDERS_ENDPOINT
        else:
            endpoint = f"{MAIL_FOLDERS_ENDPOINT}/{parent_id}/childFolders"

        folder = self.client.post(
            endpoint,
            access_token,
            json={"displayName": path[-1], "isHidden": False},
        )
        folder_id = self._created_id(folder, path)
        logger.info(
            "folder_created",
            provider=self.provider.value,
            path=list(path),
            id=folder_id,
        )

        if color:
            self._apply_category(access_token, path, color)
        return folder_id

    def _apply_category(self, access_token: str | None, path: tuple[str, ...], preset: str) -> None:
        """Create a master category carrying the folder's color.

        An existing category (409) is left as is. Other failures are logged
        and do not fail the folder.
        """
        name = self.config.path_separator.join(path)
        try:
            self.client.post(
                MASTER_CATEGORIES_ENDPOINT,
                access_token,
                json={"displayName": name, "color": preset},
            )
        except (ExternalServiceError, AuthRequired) as e:
            if getattr(e, "status_code", None) == 409:
                return
            logger.warning(
                "category_color_failed",
                provider=self.provider.value,
                category=name,
                error=str(e),
            )
