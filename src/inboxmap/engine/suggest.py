"""Suggestion engine: map a discovered mailbox onto the canonical taxonomy.

For every canonical item the engine decides whether an existing label/folder
can be reused or a new one must be created:

1. Exact pass, in taxonomy pre-order: a discovered node whose last segment
   equals the item's display name or key (case-insensitive) is reused with
   confidence 1.0. Nodes implied by deeper paths count too ("SALES" exists
   as soon as "SALES/New Leads" does). Among several candidates the one
   under the matching parent wins, then real items over implied ones, then
   shorter paths, then the lexicographically smaller path.
2. Partial pass: remaining items are scored against the still-unused
   discovered items by normalized Levenshtein similarity. Scores above
   the threshold (0.6) are reused with confidence = score.
3. Everything else is marked for creation.

Discovered items that end up backing no canonical item are reported as
unmatched, in discovery order.

Each discovered node is used at most once. The output contains no
timestamps and depends only on input order, so repeated calls serialize
identically.

Usage:
    engine = SuggestionEngine(registry)
    result = engine.suggest(discovery, "default")
    print(result.missing_count, result.to_dict()["analysis"])
"""

from dataclasses import dataclass, field
from typing import Any

from rapidfuzz.distance import Levenshtein

from inboxmap.core.logging import get_logger
from inboxmap.providers.base import DiscoveryResult, TaxonomyNode, casefold_path, iter_nodes
from inboxmap.taxonomy.registry import TaxonomyEntry, TaxonomyRegistry

logger = get_logger(__name__)

DEFAULT_PARTIAL_THRESHOLD = 0.6
CONFIDENCE_PRECISION = 4

ACTION_REUSE = "reuse"
ACTION_CREATE = "create"

REASON_NO_MATCH = "no_suitable_match"


def normalize(value: str) -> str:
    """Case-fold and collapse runs of whitespace to one space."""
    return " ".join(value.casefold().split())


def name_similarity(a: str, b: str) -> float:
    """Levenshtein similarity of two normalized names, in [0, 1].

    1 - edit distance / length of the longer name.

    Example:
        name_similarity("Support", "support")   # 1.0
        name_similarity("Invoices", "Invoice")  # 0.875
    """
    return Levenshtein.normalized_similarity(normalize(a), normalize(b))


def _names_for(entry_key: str, display_name: str) -> set[str]:
    """Spellings an exact match accepts for a canonical item."""
    return {
        normalize(display_name),
        normalize(entry_key),
        normalize(entry_key.replace("_", " ")),
    }


@dataclass
class SuggestionResult:
    """Suggested mapping plus the evidence behind it."""

    provider: str
    business_type: str
    suggested_mapping: dict[str, dict[str, Any]] = field(default_factory=dict)
    exact: list[dict[str, Any]] = field(default_factory=list)
    partial: list[dict[str, Any]] = field(default_factory=list)
    unmatched: list[dict[str, Any]] = field(default_factory=list)
    reuse: list[dict[str, Any]] = field(default_factory=list)
    create: list[dict[str, Any]] = field(default_factory=list)
    existing_count: int = 0

    @property
    def suggestions(self) -> dict[str, list[dict[str, Any]]]:
        return {"reuse": self.reuse, "create": self.create}

    @property
    def matches(self) -> dict[str, list[dict[str, Any]]]:
        return {"exact": self.exact, "partial": self.partial, "unmatched": self.unmatched}

    @property
    def canonical_count(self) -> int:
        return len(self.suggested_mapping)

    @property
    def missing_count(self) -> int:
        return sum(
            1 for entry in self.suggested_mapping.values() if entry["action"] == ACTION_CREATE
        )

    @property
    def matched_count(self) -> int:
        return self.canonical_count - self.missing_count

    def analysis(self) -> dict[str, Any]:
        canonical = self.canonical_count
        score = self.matched_count / canonical if canonical else 0.0
        return {
            "existingCount": self.existing_count,
            "canonicalCount": canonical,
            "matchedCount": self.matched_count,
            "exactCount": len(self.exact),
            "partialCount": len(self.partial),
            "unmatchedCount": len(self.unmatched),
            "automationScore": round(score, CONFIDENCE_PRECISION),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "businessType": self.business_type,
            "matches": self.matches,
            "suggestedMapping": self.suggested_mapping,
            "suggestions": self.suggestions,
            "analysis": self.analysis(),
            "missingCount": self.missing_count,
        }


class SuggestionEngine:
    """Computes reuse-vs-create suggestions for one business taxonomy.

    Attributes:
        registry: Source of canonical taxonomies
        partial_threshold: Partial matches must score strictly above this
    """

    def __init__(
        self,
        registry: TaxonomyRegistry,
        partial_threshold: float = DEFAULT_PARTIAL_THRESHOLD,
    ):
        self.registry = registry
        self.partial_threshold = partial_threshold

    def suggest(self, discovery: DiscoveryResult, business_type: str | None = None) -> SuggestionResult:
        """Suggest a mapping from the canonical taxonomy onto a discovered mailbox.

        Args:
            discovery: Result of ProviderAdapter.discover()
            business_type: Taxonomy variant; unknown types use the default

        Returns:
            SuggestionResult covering every canonical key exactly once
        """
        resolved_type = self.registry.resolve_business_type(business_type)
        entries = list(self.registry.flatten(resolved_type).entries())
        parents = {entry.item.key: entry for entry in entries}
        nodes = list(iter_nodes(discovery.taxonomy))

        used: set[tuple[str, ...]] = set()
        decisions: dict[str, tuple[str, TaxonomyNode, float] | None] = {}

        for entry in entries:
            node = self._best_exact(entry, parents.get(entry.parent_key or ""), nodes, used)
            if node is not None:
                used.add(casefold_path(node.path))
                decisions[entry.item.key] = ("exact", node, 1.0)
            else:
                decisions[entry.item.key] = None

        for entry in entries:
            if decisions[entry.item.key] is not None:
                continue
            scored = self._best_partial(entry, nodes, used)
            if scored is not None:
                node, score = scored
                used.add(casefold_path(node.path))
                decisions[entry.item.key] = ("partial", node, score)

        result = SuggestionResult(
            provider=discovery.provider.value,
            business_type=resolved_type,
            existing_count=discovery.user_items,
        )
        for entry in entries:
            self._record(result, entry, decisions[entry.item.key])

        matched_ids = {
            decision[1].item_id
            for decision in decisions.values()
            if decision is not None and decision[1].item is not None
        }
        result.unmatched = [
            {"itemId": item.id, "path": list(item.path), "reason": REASON_NO_MATCH}
            for item in discovery.items
            if item.id not in matched_ids
        ]

        logger.info(
            "suggestion_complete",
            provider=result.provider,
            business_type=resolved_type,
            canonical_count=result.canonical_count,
            matched=result.matched_count,
            missing=result.missing_count,
            unmatched=len(result.unmatched),
        )
        return result

    def _best_exact(
        self,
        entry: TaxonomyEntry,
        parent: TaxonomyEntry | None,
        nodes: list[TaxonomyNode],
        used: set[tuple[str, ...]],
    ) -> TaxonomyNode | None:
        names = _names_for(entry.item.key, entry.item.display_name)
        parent_names = _names_for(parent.item.key, parent.item.display_name) if parent else set()

        def context_match(node: TaxonomyNode) -> bool:
            if parent is None:
                return len(node.path) == 1
            return len(node.path) > 1 and normalize(node.path[-2]) in parent_names

        candidates = [
            node
            for node in nodes
            if casefold_path(node.path) not in used and normalize(node.name) in names
        ]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda node: (
                not context_match(node),
                node.item is None,
                len(node.path),
                casefold_path(node.path),
                node.path,
            ),
        )

    def _best_partial(
        self,
        entry: TaxonomyEntry,
        nodes: list[TaxonomyNode],
        used: set[tuple[str, ...]],
    ) -> tuple[TaxonomyNode, float] | None:
        best: tuple[tuple[Any, ...], TaxonomyNode, float] | None = None
        targets = (entry.item.display_name, entry.item.key.replace("_", " "))

        for node in nodes:
            # Only real provider items can be reused by similarity
            if node.item is None or casefold_path(node.path) in used:
                continue
            score = round(
                max(name_similarity(target, node.name) for target in targets),
                CONFIDENCE_PRECISION,
            )
            if score <= self.partial_threshold:
                continue
            rank = (-score, len(node.path), casefold_path(node.path), node.item.id)
            if best is None or rank < best[0]:
                best = (rank, node, score)

        return (best[1], best[2]) if best else None

    @staticmethod
    def _record(
        result: SuggestionResult,
        entry: TaxonomyEntry,
        decision: tuple[str, TaxonomyNode, float] | None,
    ) -> None:
        key = entry.item.key
        canonical_path = list(entry.path)

        if decision is None:
            result.suggested_mapping[key] = {
                "action": ACTION_CREATE,
                "matchedItemId": None,
                "matchedPath": None,
                "confidence": 0.0,
                "canonicalPath": canonical_path,
                "color": entry.item.color,
            }
            result.create.append(
                {
                    "key": key,
                    "action": ACTION_CREATE,
                    "path": canonical_path,
                    "color": entry.item.color,
                    "description": entry.item.description,
                }
            )
            return

        kind, node, score = decision
        result.suggested_mapping[key] = {
            "action": ACTION_REUSE,
            "matchedItemId": node.item_id,
            "matchedPath": list(node.path),
            "confidence": score,
            "canonicalPath": canonical_path,
            "color": entry.item.color,
        }
        match = {
            "key": key,
            "itemId": node.item_id,
            "path": list(node.path),
            "confidence": score,
        }
        (result.exact if kind == "exact" else result.partial).append(match)
        result.reuse.append(
            {
                "key": key,
                "action": ACTION_REUSE,
                "itemId": node.item_id,
                "path": list(node.path),
                "canonicalPath": canonical_path,
                "confidence": score,
                "requiresConfirmation": kind == "partial",
            }
        )
