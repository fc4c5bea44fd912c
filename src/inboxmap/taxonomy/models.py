"""Immutable types for the canonical taxonomy and provider limits."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Provider(StrEnum):
    """Supported email providers.

    A closed set: adding a provider means adding a member here, a
    ProviderConfig entry, and an adapter in inboxmap.providers.factory.
    """

    GMAIL = "gmail"
    O365 = "o365"


@dataclass(frozen=True, slots=True)
class CanonicalTaxonomyItem:
    """One slot of the canonical business taxonomy.

    Attributes:
        key: Unique slot identifier across the whole tree (e.g. "URGENT")
        display_name: Name used when the slot is provisioned
        color: Provider-agnostic hex color ("#RRGGBB")
        children: Ordered child slots
        description: What kind of mail belongs here
    """

    key: str
    display_name: str
    color: str
    children: tuple[CanonicalTaxonomyItem, ...] = field(default=())
    description: str = ""


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Provider-imposed limits used for validation and provisioning.

    Attributes:
        provider: Provider this configuration applies to
        max_name_length: Maximum length of a label name (Gmail: full path) or
            folder display name (O365: one segment)
        path_separator: Separator used to express hierarchy in names
        native_nesting: True if the provider has real parent/child resources
        max_depth: Deepest hierarchy the engine will provision
        color_model: "palette" (Gmail background colors) or "preset" (Outlook presetN)
    """

    provider: Provider
    max_name_length: int
    path_separator: str
    native_nesting: bool
    max_depth: int
    color_model: str

    def name_length(self, path: tuple[str, ...] | list[str]) -> int:
        """Length the provider will check for a given path.

        Gmail stores the full slash-joined path as the label name; O365
        stores one folder per segment, so only the longest segment matters.
        """
        if self.native_nesting:
            return max((len(segment) for segment in path), default=0)
        return len(self.path_separator.join(path))
