"""Tests for the mailbox mapping store.

Covers schema initialization, version bumping, compare-and-swap conflicts,
concurrent saves, mapping validation at the store boundary and corrupt rows.
"""

import asyncio
import stat
from pathlib import Path

import aiosqlite
import pytest

from inboxmap.core.errors import DatabaseError, NotFound, ValidationError, VersionConflictError
from inboxmap.db import MappingReference, MappingStore, init_database, validate_mapping, verify_schema
from inboxmap.taxonomy import Provider

MAPPING = {
    "URGENT": {"path": ["URGENT"], "providerId": "Label_1"},
    "NEW_LEADS": {"path": ["SALES", "New Leads"], "providerId": "Label_2", "color": "#16a766"},
}


@pytest.fixture
async def db_path(data_dir: Path) -> Path:
    """Create a test database path."""
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> MappingStore:
    """Create and initialize a MappingStore."""
    store = MappingStore(db_path)
    await store.initialize()
    return store


class TestDatabaseInitialization:
    """Tests for database initialization."""

    @pytest.mark.asyncio
    async def test_init_database_creates_file(self, db_path: Path) -> None:
        assert not db_path.exists()
        await init_database(db_path)
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_init_database_enables_wal_mode(self, db_path: Path) -> None:
        await init_database(db_path)

        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()
            assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_file_is_owner_only(self, db_path: Path) -> None:
        await init_database(db_path)
        assert stat.S_IMODE(db_path.stat().st_mode) == 0o600

    @pytest.mark.asyncio
    async def test_init_is_idempotent(self, db_path: Path) -> None:
        await init_database(db_path)
        await init_database(db_path)
        assert await verify_schema(db_path)

    @pytest.mark.asyncio
    async def test_verify_schema_missing_tables(self, db_path: Path) -> None:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("CREATE TABLE other (id INTEGER)")
            await db.commit()
        assert not await verify_schema(db_path)


class TestSaveAndVersioning:
    """Tests for MappingStore.save()."""

    @pytest.mark.asyncio
    async def test_first_save_is_version_one(self, store: MappingStore) -> None:
        version, updated_at = await store.save("user-1", "gmail", None, MAPPING)

        assert version == 1
        mapping = await store.get("user-1", Provider.GMAIL)
        assert mapping.version == 1
        assert mapping.updated_at == updated_at
        assert mapping.mapping["NEW_LEADS"].path == ["SALES", "New Leads"]
        assert mapping.mapping["URGENT"].provider_id == "Label_1"

    @pytest.mark.asyncio
    async def test_versions_increase_by_one(self, store: MappingStore) -> None:
        versions = [
            (await store.save("user-1", "gmail", None, MAPPING))[0] for _ in range(4)
        ]
        assert versions == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_update_keeps_created_at(self, store: MappingStore) -> None:
        await store.save("user-1", "gmail", None, MAPPING)
        first = await store.get("user-1", "gmail")

        await store.save("user-1", "gmail", "client-2", {"URGENT": {"path": ["Urgent"]}})
        second = await store.get("user-1", "gmail")

        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert second.client_id == "client-2"
        assert list(second.mapping) == ["URGENT"]

    @pytest.mark.asyncio
    async def test_providers_stored_separately(self, store: MappingStore) -> None:
        await store.save("user-1", "gmail", None, MAPPING)
        version, _ = await store.save("user-1", "o365", None, MAPPING)

        assert version == 1
        assert (await store.get("user-1", "gmail")).version == 1

    @pytest.mark.asyncio
    async def test_concurrent_saves_serialize(self, store: MappingStore) -> None:
        """Five simultaneous saves each get their own version."""
        results = await asyncio.gather(
            *(store.save("user-1", "gmail", None, MAPPING) for _ in range(5))
        )

        assert sorted(version for version, _ in results) == [1, 2, 3, 4, 5]
        assert (await store.get("user-1", "gmail")).version == 5


class TestExpectedVersion:
    """Tests for optimistic concurrency via expected_version."""

    @pytest.mark.asyncio
    async def test_matching_version_accepted(self, store: MappingStore) -> None:
        await store.save("user-1", "gmail", None, MAPPING)
        version, _ = await store.save("user-1", "gmail", None, MAPPING, expected_version=1)
        assert version == 2

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, store: MappingStore) -> None:
        await store.save("user-1", "gmail", None, MAPPING)
        await store.save("user-1", "gmail", None, MAPPING)

        with pytest.raises(VersionConflictError) as exc_info:
            await store.save("user-1", "gmail", None, MAPPING, expected_version=1)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        assert (await store.get("user-1", "gmail")).version == 2

    @pytest.mark.asyncio
    async def test_zero_means_must_not_exist(self, store: MappingStore) -> None:
        version, _ = await store.save("user-1", "gmail", None, MAPPING, expected_version=0)
        assert version == 1

        with pytest.raises(VersionConflictError) as exc_info:
            await store.save("user-1", "gmail", None, MAPPING, expected_version=0)
        assert exc_info.value.actual_version == 1

    @pytest.mark.asyncio
    async def test_expected_version_on_missing_row(self, store: MappingStore) -> None:
        with pytest.raises(VersionConflictError):
            await store.save("user-1", "gmail", None, MAPPING, expected_version=3)
        assert await store.find("user-1", "gmail") is None


class TestRead:
    """Tests for find() and get()."""

    @pytest.mark.asyncio
    async def test_find_missing_returns_none(self, store: MappingStore) -> None:
        assert await store.find("nobody", "gmail") is None

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, store: MappingStore) -> None:
        with pytest.raises(NotFound, match="No mailbox mapping"):
            await store.get("nobody", "o365")

    @pytest.mark.asyncio
    async def test_to_dict(self, store: MappingStore) -> None:
        await store.save("user-1", "gmail", "4b6f2c1e-0000-4000-8000-000000000000", MAPPING)
        data = (await store.get("user-1", "gmail")).to_dict()

        assert data["provider"] == "gmail"
        assert data["clientId"] == "4b6f2c1e-0000-4000-8000-000000000000"
        assert data["version"] == 1
        assert data["mapping"]["URGENT"] == {
            "path": ["URGENT"],
            "providerId": "Label_1",
            "action": "reuse",
        }

    @pytest.mark.asyncio
    async def test_corrupt_row_raises(self, store: MappingStore, db_path: Path) -> None:
        async with aiosqlite.connect(db_path) as db:
            await db.execute(
                """
                INSERT INTO mailbox_mappings
                    (user_id, provider, mapping, version, created_at, updated_at)
                VALUES ('user-1', 'gmail', '{not json', 1, '2024-01-01T00:00:00+00:00',
                        '2024-01-01T00:00:00+00:00')
                """
            )
            await db.commit()

        with pytest.raises(DatabaseError, match="corrupt"):
            await store.find("user-1", "gmail")


class TestMappingValidation:
    """Malformed mappings are rejected before anything is written."""

    @pytest.mark.parametrize(
        "mapping, field",
        [
            ({"sales": {"path": ["SALES"]}}, "mapping.sales"),
            ({"SALES": {"path": []}}, "mapping.SALES.path"),
            ({"SALES": {"path": ["SALES", " "]}}, "mapping.SALES.path"),
            ({"SALES": {"path": ["SALES"], "color": "red"}}, "mapping.SALES.color"),
            ({"SALES": {"path": ["SALES"], "folder": "x"}}, "mapping.SALES.folder"),
            ({"SALES": {"path": ["SALES"], "action": "delete"}}, "mapping.SALES.action"),
        ],
    )
    def test_rejected(self, mapping: dict, field: str) -> None:
        with pytest.raises(ValidationError) as exc_info:
            validate_mapping(mapping)
        assert field in [detail["field"] for detail in exc_info.value.details]

    def test_not_an_object(self) -> None:
        with pytest.raises(ValidationError, match="must be an object"):
            validate_mapping(["URGENT"])

    def test_references_parsed(self) -> None:
        parsed = validate_mapping({"URGENT": {"path": [" URGENT "], "providerId": "Label_1"}})
        assert parsed["URGENT"] == MappingReference(path=["URGENT"], provider_id="Label_1")

    @pytest.mark.asyncio
    async def test_invalid_save_writes_nothing(self, store: MappingStore) -> None:
        with pytest.raises(ValidationError):
            await store.save("user-1", "gmail", None, {"URGENT": {"path": ["URGENT"], "x": 1}})
        assert await store.find("user-1", "gmail") is None

    @pytest.mark.asyncio
    async def test_unknown_provider(self, store: MappingStore) -> None:
        with pytest.raises(ValueError):
            await store.save("user-1", "yahoo", None, MAPPING)
