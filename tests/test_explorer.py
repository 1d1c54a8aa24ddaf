"""
Unit tests for SchemaExplorer: connector dispatch, option layering and auto-save.
"""
from unittest.mock import AsyncMock

import pytest

from schema_explorer.config import Config
from schema_explorer.connectors.base import BaseConnector
from schema_explorer.connectors.http_client import HTTPClient
from schema_explorer.exceptions import (
    ConfigurationError,
    ExplorerConnectionError,
    IntrospectionError,
    StorageError,
)
from schema_explorer.explorer import SchemaExplorer, merge_options
from schema_explorer.models import APIProtocol, ConnectionTestResult, IntrospectionResult
from schema_explorer.storage import MemoryStorage

from conftest import build_schema


class FakeConnector(BaseConnector):
    """Returns a canned schema and remembers the configs it was called with."""

    def __init__(self, protocol=APIProtocol.REST, scheme="http", fail_with=None):
        self.protocol = protocol
        self.name = f"Fake {protocol.value}"
        super().__init__()
        self.scheme = scheme
        self.fail_with = fail_with
        self.configs = []
        self.closed = False

    def can_handle(self, url):
        return url.startswith(f"{self.scheme}://")

    async def _test_connection(self, config):
        return ConnectionTestResult(success=True, response_time_ms=1.0)

    async def _introspect(self, config, connection):
        self.configs.append(config)
        if self.fail_with is not None:
            raise self.fail_with
        return IntrospectionResult(success=True, schema_=build_schema(protocol=self.protocol, source_url=config.url))

    async def close(self):
        self.closed = True


@pytest.fixture
def config():
    cfg = Config()
    cfg.storage.type = "memory"
    return cfg


@pytest.fixture
def storage():
    return MemoryStorage(auto_cleanup=False)


@pytest.fixture
def http_client():
    return AsyncMock(spec=HTTPClient)


# --- Option Layering Tests ---

def test_merge_options_merges_nested_mappings():
    merged = merge_options(
        {"headers": {"A": "1", "B": "1"}, "timeout_seconds": 30},
        None,
        {"headers": {"B": "2"}},
        {"timeout_seconds": 5, "introspection": {"max_messages": 3}},
    )

    assert merged == {
        "headers": {"A": "1", "B": "2"},
        "timeout_seconds": 5,
        "introspection": {"max_messages": 3},
    }


def test_build_options_layer_order(config, storage, http_client):
    config.explorer.default_timeout_seconds = 20
    config.explorer.connector_overrides = {"rest": {"headers": {"X-Team": "api"}, "timeout_seconds": 15}}
    connector = FakeConnector()
    explorer = SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client)

    options = explorer.build_options(connector, "http://api.example.com", {"headers": {"X-Call": "1"}})

    assert options["url"] == "http://api.example.com"
    assert options["timeout_seconds"] == 15
    assert options["headers"] == {"X-Team": "api", "X-Call": "1"}
    assert options["follow_redirects"] is True


def test_explorer_defaults_override_connector_defaults(config, storage, http_client):
    config.explorer.default_timeout_seconds = 42
    connector = FakeConnector()
    explorer = SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client)

    options = explorer.build_options(connector, "http://api.example.com", {"timeout_seconds": 7})

    assert options["timeout_seconds"] == 7
    assert explorer.build_options(connector, "http://api.example.com")["timeout_seconds"] == 42


# --- Introspection Tests ---

@pytest.mark.asyncio
async def test_introspect_auto_saves(config, storage, http_client):
    connector = FakeConnector()
    async with SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client) as explorer:
        result = await explorer.introspect("REST", "http://api.example.com", {"timeout_seconds": 3})

        assert result.success
        assert result.metadata["saved"] is True
        assert await explorer.get_schema(result.schema_.id) == result.schema_
        assert connector.configs[0].timeout_seconds == 3
        assert connector.configs[0].url == "http://api.example.com"


@pytest.mark.asyncio
async def test_introspect_without_auto_save(config, storage, http_client):
    config.explorer.auto_save = False
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        result = await explorer.introspect(APIProtocol.REST, "http://api.example.com")

        assert result.success
        assert "saved" not in result.metadata
        assert (await explorer.list_schemas()).total_count == 0


@pytest.mark.asyncio
async def test_failed_introspection_is_not_saved(config, storage, http_client):
    connector = FakeConnector(fail_with=ExplorerConnectionError("refused"))
    async with SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client) as explorer:
        result = await explorer.introspect("rest", "http://api.example.com")

        assert result.success is False
        assert result.error == "refused"
        assert result.metadata["error_code"] == "CONNECTION_ERROR"
        assert (await explorer.get_storage_stats()).total_schemas == 0


@pytest.mark.asyncio
async def test_auto_save_failure_is_reported_not_raised(config, http_client):
    storage = MemoryStorage(auto_cleanup=False)
    storage.store = AsyncMock(side_effect=StorageError("disk full"))
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        result = await explorer.introspect("rest", "http://api.example.com")

    assert result.success
    assert result.metadata["saved"] is False


@pytest.mark.asyncio
async def test_unexpected_connector_error_is_wrapped(config, storage, http_client):
    connector = FakeConnector(fail_with=RuntimeError("boom"))
    explorer = SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client)

    with pytest.raises(IntrospectionError):
        await explorer.introspect("rest", "http://api.example.com")
    await explorer.close()


@pytest.mark.asyncio
async def test_unknown_protocol_is_rejected_before_storage_starts(config, http_client):
    storage = AsyncMock(spec=MemoryStorage)
    storage.name = "Mock Storage"
    explorer = SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client)

    with pytest.raises(ConfigurationError):
        await explorer.introspect("soap", "http://api.example.com")
    with pytest.raises(ConfigurationError):
        await explorer.introspect("graphql", "http://api.example.com")
    storage.initialize.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_options_raise_configuration_error(config, storage, http_client):
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        with pytest.raises(ConfigurationError):
            await explorer.introspect("rest", "http://api.example.com", {"no_such_option": True})


# --- Protocol Detection Tests ---

@pytest.mark.asyncio
async def test_auto_introspect_uses_registration_order(config, storage, http_client):
    ws = FakeConnector(APIProtocol.WEBSOCKET, scheme="ws")
    rest = FakeConnector(APIProtocol.REST, scheme="http")
    async with SchemaExplorer(config, storage=storage, connectors=[ws, rest], http_client=http_client) as explorer:
        ws_result = await explorer.auto_introspect("ws://stream.example.com")
        rest_result = await explorer.auto_introspect("http://api.example.com")

        assert ws_result.schema_.protocol == "websocket"
        assert rest_result.schema_.protocol == "rest"

        with pytest.raises(ConfigurationError):
            await explorer.auto_introspect("ftp://files.example.com")


@pytest.mark.parametrize(
    "url, protocol",
    [
        ("https://api.example.com/graphql", "graphql"),
        ("https://api.example.com/v1/pets", "rest"),
        ("wss://stream.example.com/feed", "websocket"),
    ],
)
def test_default_connectors_detect_protocol(config, storage, http_client, url, protocol):
    explorer = SchemaExplorer(config, storage=storage, http_client=http_client)

    assert [c.protocol.value for c in explorer.get_connectors()] == ["websocket", "graphql", "rest"]
    assert explorer.registry.find_for_url(url).protocol.value == protocol


@pytest.mark.asyncio
async def test_register_connector_replaces_protocol(config, storage, http_client):
    explorer = SchemaExplorer(config, storage=storage, http_client=http_client)
    replacement = FakeConnector(APIProtocol.REST)

    explorer.register_connector(replacement)

    assert explorer.registry.get("rest") is replacement
    assert len(explorer.get_connectors()) == 3
    await explorer.close()


# --- Storage Facade Tests ---

@pytest.mark.asyncio
async def test_storage_facade_round_trip(config, storage, http_client, make_schema):
    schema = make_schema()
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        assert await explorer.save_schema(schema) == schema.id
        assert (await explorer.list_schemas()).total_count == 1
        assert (await explorer.get_storage_stats()).schemas_by_protocol == {"rest": 1}
        assert await explorer.delete_schema(schema.id) is True
        assert await explorer.get_schema(schema.id) is None


@pytest.mark.asyncio
async def test_storage_faults_are_wrapped(config, http_client, make_schema):
    storage = MemoryStorage(auto_cleanup=False)
    storage.retrieve = AsyncMock(side_effect=OSError("disk gone"))
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        with pytest.raises(StorageError) as exc_info:
            await explorer.get_schema("rest_x")

    assert exc_info.value.context["schema_id"] == "rest_x"
    assert "disk gone" in exc_info.value.message


@pytest.mark.asyncio
async def test_close_releases_connectors_and_storage(config, storage, http_client):
    connector = FakeConnector()
    explorer = SchemaExplorer(config, storage=storage, connectors=[connector], http_client=http_client)
    await explorer.initialize()

    await explorer.close()

    assert connector.closed
    http_client.close.assert_not_awaited()
    with pytest.raises(StorageError):
        await storage.list_ids()


@pytest.mark.asyncio
async def test_test_connection_delegates_to_connector(config, storage, http_client):
    async with SchemaExplorer(config, storage=storage, connectors=[FakeConnector()], http_client=http_client) as explorer:
        result = await explorer.test_connection("rest", "http://api.example.com")

    assert result.success
    assert result.response_time_ms == 1.0
