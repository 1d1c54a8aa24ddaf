"""
Unit tests for MemoryStorage eviction and lifecycle.
"""
import pytest

from schema_explorer.config import StorageSettings
from schema_explorer.exceptions import StorageError
from schema_explorer.models.schema import utc_now
from schema_explorer.storage import MemoryStorage, create_storage


@pytest.mark.asyncio
async def test_operations_require_initialize(make_schema):
    storage = MemoryStorage()

    with pytest.raises(StorageError):
        await storage.store(make_schema())


@pytest.mark.asyncio
async def test_overflow_evicts_oldest_tenth_without_max_age(make_schema):
    storage = MemoryStorage(max_schemas=10, auto_cleanup=False, max_age_seconds=None)
    await storage.initialize()
    schemas = [make_schema(source_url=f"https://api{i}.example.com/openapi.json", minutes=i) for i in range(11)]

    for schema in schemas:
        await storage.store(schema)

    ids = await storage.list_ids()
    assert len(ids) == 10
    assert schemas[0].id not in ids
    assert schemas[10].id in ids


@pytest.mark.asyncio
async def test_overflow_sweeps_expired_schemas_first(make_schema):
    storage = MemoryStorage(max_schemas=3, auto_cleanup=False, max_age_seconds=3600)
    await storage.initialize()
    for i in range(3):
        await storage.store(make_schema(source_url=f"https://old{i}.example.com/openapi.json", minutes=i))
    fresh = make_schema(source_url="https://fresh.example.com/openapi.json").model_copy(
        update={"id": "rest_fresh", "discovered_at": utc_now()}
    )

    await storage.store(fresh)

    assert await storage.list_ids() == ["rest_fresh"]


@pytest.mark.asyncio
async def test_replacing_an_existing_id_never_evicts(make_schema):
    storage = MemoryStorage(max_schemas=2, auto_cleanup=False, max_age_seconds=None)
    await storage.initialize()
    first = make_schema(minutes=0)
    second = make_schema(source_url="https://other.example.com/openapi.json", minutes=1)
    await storage.store(first)
    await storage.store(second)

    await storage.store(first.model_copy(update={"name": "Again"}))

    assert set(await storage.list_ids()) == {first.id, second.id}


@pytest.mark.asyncio
async def test_returned_schemas_are_copies(make_schema):
    storage = MemoryStorage(auto_cleanup=False)
    await storage.initialize()
    schema = make_schema()
    await storage.store(schema)

    schema.name = "mutated after store"
    retrieved = await storage.retrieve(schema.id)
    retrieved.types["Pet"].properties.clear()

    again = await storage.retrieve(schema.id)
    assert again.name == "Petstore"
    assert set(again.types["Pet"].properties) == {"id", "name", "tags"}


@pytest.mark.asyncio
async def test_background_sweep_is_started_and_cancelled():
    storage = MemoryStorage(auto_cleanup=True, max_age_seconds=60, cleanup_interval_seconds=3600)
    await storage.initialize()
    task = storage._cleanup_task

    assert task is not None and not task.done()

    await storage.close()
    assert task.cancelled()
    with pytest.raises(StorageError):
        await storage.list_ids()


def test_create_storage_uses_settings(tmp_path):
    memory = create_storage(StorageSettings(type="memory", max_schemas=5, max_age_seconds=None))
    file_backend = create_storage(StorageSettings(type="file", base_directory=tmp_path, max_backups=2))

    assert isinstance(memory, MemoryStorage)
    assert memory.max_schemas == 5
    assert memory.max_age_seconds is None
    assert file_backend.base_directory == tmp_path
    assert file_backend.max_backups == 2
