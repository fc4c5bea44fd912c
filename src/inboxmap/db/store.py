"""Versioned mailbox mapping store.

Each (user, provider) pair has at most one mapping row. The first save
creates it at version 1; every later save bumps the version by exactly one.

Saves run inside BEGIN IMMEDIATE, which takes SQLite's write lock before
the current version is read, and the UPDATE is a compare-and-swap on that
version. Two concurrent saves therefore never both produce version N+1.
Callers that read a mapping before changing it pass expected_version and
get VersionConflictError if someone else saved in between.

Usage:
    from inboxmap.db.store import MappingStore

    store = MappingStore("data/inboxmap.db")
    await store.initialize()

    version, updated_at = await store.save(
        "user-1", "gmail", None, {"URGENT": {"path": ["URGENT"], "providerId": "Label_1"}}
    )
    mapping = await store.get("user-1", "gmail")
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

import aiosqlite
import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from inboxmap.core.errors import DatabaseError, NotFound, ValidationError, VersionConflictError
from inboxmap.core.logging import get_logger
from inboxmap.db.models import init_database
from inboxmap.taxonomy.colors import is_valid_color
from inboxmap.taxonomy.models import Provider

logger = get_logger(__name__)

CANONICAL_KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
MAX_PATH_SEGMENTS = 5
MAX_SEGMENT_LENGTH = 100


class MappingReference(BaseModel):
    """Where one canonical slot lives in the user's mailbox."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    path: list[str] = Field(min_length=1, max_length=MAX_PATH_SEGMENTS)
    provider_id: str | None = Field(default=None, alias="providerId")
    action: Literal["reuse", "create"] = "reuse"
    color: str | None = None

    @field_validator("path")
    @classmethod
    def validate_segments(cls, v: list[str]) -> list[str]:
        """Each segment is 1-100 characters after trimming."""
        segments = [segment.strip() for segment in v]
        if any(not 1 <= len(segment) <= MAX_SEGMENT_LENGTH for segment in segments):
            raise ValueError(f"each path segment must be 1 to {MAX_SEGMENT_LENGTH} characters")
        return segments

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        if v is not None and not is_valid_color(v):
            raise ValueError("color must be a hex color like #RRGGBB")
        return v


def validate_mapping(mapping: Any) -> dict[str, MappingReference]:
    """Validate a raw mapping (canonical key -> reference).

    Returns:
        Mapping with every value parsed into a MappingReference, keys sorted

    Raises:
        ValidationError: Listing every malformed key and field
    """
    if not isinstance(mapping, Mapping):
        raise ValidationError(
            "Mapping must be an object of canonical key to reference",
            details=[{"field": "mapping", "message": "must be an object"}],
        )

    details: list[dict[str, Any]] = []
    parsed: dict[str, MappingReference] = {}

    for key in sorted(mapping, key=str):
        value = mapping[key]
        if not isinstance(key, str) or not CANONICAL_KEY_RE.match(key):
            details.append(
                {
                    "field": f"mapping.{key}",
                    "message": "key must be an upper-case canonical key like SALES_NEW_LEADS",
                }
            )
            continue
        if isinstance(value, MappingReference):
            parsed[key] = value
            continue
        try:
            parsed[key] = MappingReference.model_validate(value)
        except pydantic.ValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in err["loc"])
                details.append(
                    {
                        "field": f"mapping.{key}" + (f".{location}" if location else ""),
                        "message": err["msg"],
                    }
                )

    if details:
        raise ValidationError(
            f"Invalid mailbox mapping: {len(details)} problem(s) found", details=details
        )
    return parsed


@dataclass
class MailboxMapping:
    """Mailbox mapping record from the database."""

    user_id: str
    provider: Provider
    mapping: dict[str, MappingReference]
    version: int
    created_at: datetime
    updated_at: datetime
    client_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "provider": self.provider.value,
            "clientId": self.client_id,
            "mapping": {
                key: reference.model_dump(by_alias=True, exclude_none=True)
                for key, reference in self.mapping.items()
            },
            "version": self.version,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _serialize_mapping(mapping: dict[str, MappingReference]) -> str:
    return json.dumps(
        {
            key: reference.model_dump(by_alias=True, exclude_none=True)
            for key, reference in mapping.items()
        },
        sort_keys=True,
    )


class MappingStore:
    """Async store for mailbox mappings.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the database and tables if needed. Call before any other operation."""
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured connection in autocommit mode.

        Transactions are opened explicitly (BEGIN IMMEDIATE) where needed.
        """
        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA synchronous = NORMAL")
            db.row_factory = aiosqlite.Row
            yield db

    async def save(
        self,
        user_id: str,
        provider: Provider | str,
        client_id: str | None,
        mapping: Mapping[str, Any],
        expected_version: int | None = None,
    ) -> tuple[int, datetime]:
        """Insert or update the mapping for (user_id, provider).

        Args:
            user_id: Mapping owner
            provider: "gmail" or "o365"
            client_id: Optional correlation id
            mapping: Canonical key -> MappingReference (or equivalent dict)
            expected_version: Version the caller based this write on
                (0 = must not exist yet, None = no check)

        Returns:
            (new version, updated_at)

        Raises:
            ValidationError: Malformed mapping (nothing is written)
            VersionConflictError: expected_version is stale, or a concurrent
                write won the compare-and-swap
            DatabaseError: Any SQLite failure
        """
        provider = Provider(provider)
        payload = _serialize_mapping(validate_mapping(mapping))
        now = datetime.now(UTC)

        try:
            async with self._db() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    version = await self._write(
                        db, user_id, provider, client_id, payload, now, expected_version
                    )
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")

        except aiosqlite.Error as e:
            logger.error(
                "Failed to save mapping", user_id=user_id, provider=provider.value, error=str(e)
            )
            raise DatabaseError(f"Failed to save mailbox mapping: {e}") from e

        logger.info(
            "mapping_saved",
            user_id=user_id,
            provider=provider.value,
            version=version,
            keys=len(json.loads(payload)),
        )
        return version, now

    async def _write(
        self,
        db: aiosqlite.Connection,
        user_id: str,
        provider: Provider,
        client_id: str | None,
        payload: str,
        now: datetime,
        expected_version: int | None,
    ) -> int:
        cursor = await db.execute(
            "SELECT version FROM mailbox_mappings WHERE user_id = ? AND provider = ?",
            (user_id, provider.value),
        )
        row = await cursor.fetchone()
        current = row["version"] if row else None

        if expected_version is not None and expected_version != (current or 0):
            raise VersionConflictError(
                f"Mapping for user {user_id} on {provider.value} is at version "
                f"{current or 0}, not {expected_version}. Reload the mapping and retry.",
                user_id=user_id,
                provider=provider.value,
                expected_version=expected_version,
                actual_version=current,
            )

        if current is None:
            await db.execute(
                """
                INSERT INTO mailbox_mappings (
                    user_id, provider, client_id, mapping, version, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 1, ?, ?)
                """,
                (user_id, provider.value, client_id, payload, now.isoformat(), now.isoformat()),
            )
            return 1

        cursor = await db.execute(
            """
            UPDATE mailbox_mappings
            SET client_id = ?, mapping = ?, version = version + 1, updated_at = ?
            WHERE user_id = ? AND provider = ? AND version = ?
            """,
            (client_id, payload, now.isoformat(), user_id, provider.value, current),
        )
        if cursor.rowcount != 1:
            raise VersionConflictError(
                f"Mapping for user {user_id} on {provider.value} changed during save. Retry.",
                user_id=user_id,
                provider=provider.value,
                expected_version=current,
            )
        return current + 1

    async def find(self, user_id: str, provider: Provider | str) -> MailboxMapping | None:
        """Get the mapping for (user_id, provider), or None if never saved."""
        provider = Provider(provider)
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM mailbox_mappings WHERE user_id = ? AND provider = ?",
                    (user_id, provider.value),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error(
                "Failed to get mapping", user_id=user_id, provider=provider.value, error=str(e)
            )
            raise DatabaseError(f"Failed to get mailbox mapping: {e}") from e

        return self._row_to_mapping(row) if row else None

    async def get(self, user_id: str, provider: Provider | str) -> MailboxMapping:
        """Get the mapping for (user_id, provider).

        Raises:
            NotFound: If no mapping has been saved yet
        """
        mapping = await self.find(user_id, provider)
        if mapping is None:
            raise NotFound(
                f"No mailbox mapping for user {user_id} on {Provider(provider).value}. "
                "Run discovery and save a mapping first."
            )
        return mapping

    def _row_to_mapping(self, row: aiosqlite.Row) -> MailboxMapping:
        try:
            raw = json.loads(row["mapping"])
            mapping = {key: MappingReference.model_validate(value) for key, value in raw.items()}
        except (ValueError, pydantic.ValidationError) as e:
            raise DatabaseError(
                f"Stored mapping for user {row['user_id']} on {row['provider']} is corrupt: {e}"
            ) from e

        return MailboxMapping(
            user_id=row["user_id"],
            provider=Provider(row["provider"]),
            client_id=row["client_id"],
            mapping=mapping,
            version=row["version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
