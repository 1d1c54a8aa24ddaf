"""
SchemaExplorer: the façade that wires connectors and storage together.
"""
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

import structlog

from .config import Config
from .connectors.base import BaseConnector, ConnectorRegistry
from .connectors.graphql import GraphQLConnector
from .connectors.http_client import HTTPClient
from .connectors.rest import RESTConnector
from .connectors.websocket import AiohttpWebSocketTransport, WebSocketConnector
from .exceptions import ConfigurationError, ExplorerError, IntrospectionError, StorageError
from .models.common import APIProtocol
from .models.connector import ConnectionTestResult, IntrospectionResult
from .models.schema import UniversalSchema
from .models.storage import SchemaQuery, SchemaQueryResult, StorageStats
from .storage import SchemaStorage, create_storage

logger = structlog.get_logger(__name__)


def merge_options(*layers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merges option mappings left to right; nested mappings are merged key by key."""
    merged: Dict[str, Any] = {}
    for layer in layers:
        for key, value in (layer or {}).items():
            if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
                merged[key] = merge_options(merged[key], value)
            else:
                merged[key] = value
    return merged


class SchemaExplorer:
    """
    Entry point for embedding applications and the CLI.

    Usage::

        async with SchemaExplorer(config) as explorer:
            result = await explorer.introspect("rest", "https://petstore.swagger.io/v2")
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        storage: Optional[SchemaStorage] = None,
        connectors: Optional[List[BaseConnector]] = None,
        http_client: Optional[HTTPClient] = None,
    ):
        self.config = config or Config()
        self.storage = storage or create_storage(self.config.storage)
        self.registry = ConnectorRegistry()
        self._owns_http_client = http_client is None
        self.http_client = http_client or HTTPClient(self.config.http_client)
        self._initialized = False
        self.logger = logger.bind(storage=self.storage.name)

        self._owned_transports = []
        if connectors is None:
            transport = AiohttpWebSocketTransport(ssl_verify=self.config.http_client.ssl_verify)
            self._owned_transports.append(transport)
            # Auto-detection walks this order; REST accepts any http(s) URL so it goes last.
            connectors = [
                WebSocketConnector(transport),
                GraphQLConnector(self.http_client),
                RESTConnector(self.http_client),
            ]
        for connector in connectors:
            self.registry.register(connector)

    async def initialize(self) -> None:
        if self._initialized:
            return
        await self.storage.initialize()
        self._initialized = True
        self.logger.info(
            "Schema explorer initialized",
            connectors=[c.protocol.value for c in self.registry.get_all()],
            auto_save=self.config.explorer.auto_save,
        )

    async def close(self) -> None:
        for connector in self.registry.get_all():
            try:
                await connector.close()
            except Exception as e:
                self.logger.warning("Failed to close connector", connector=connector.name, error=str(e))
        for transport in self._owned_transports:
            await transport.close()
        if self._owns_http_client:
            await self.http_client.close()
        if self._initialized:
            await self.storage.close()
            self._initialized = False
        self.logger.debug("Schema explorer closed")

    async def __aenter__(self) -> "SchemaExplorer":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def register_connector(self, connector: BaseConnector) -> None:
        self.registry.register(connector)

    def get_connectors(self) -> List[BaseConnector]:
        return self.registry.get_all()

    def _get_connector(self, protocol: Union[APIProtocol, str]) -> BaseConnector:
        connector = self.registry.get(protocol)
        if connector is None:
            raise ConfigurationError(
                f"No connector registered for protocol: {protocol}",
                context={"protocol": str(protocol)},
            )
        return connector

    def build_options(self, connector: BaseConnector, url: str, options: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """connector defaults < explorer defaults < per-protocol overrides < caller options."""
        settings = self.config.explorer
        return merge_options(
            connector.get_default_config(),
            {"timeout_seconds": settings.default_timeout_seconds, "follow_redirects": settings.follow_redirects},
            settings.connector_overrides.get(connector.protocol.value),
            options,
            {"url": url},
        )

    async def introspect(
        self,
        protocol: Union[APIProtocol, str],
        url: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> IntrospectionResult:
        connector = self._get_connector(protocol)
        await self.initialize()
        try:
            result = await connector.introspect(self.build_options(connector, url, options))
        except ExplorerError:
            raise
        except Exception as e:
            self.logger.exception("Unexpected introspection failure", url=url)
            raise IntrospectionError(
                f"Introspection failed: {e}",
                context={"protocol": connector.protocol.value, "url": url, "error": str(e)},
            ) from e

        if result.success and result.schema_ is not None and self.config.explorer.auto_save:
            try:
                await self.save_schema(result.schema_)
                result.metadata["saved"] = True
            except StorageError as e:
                self.logger.warning("Failed to auto-save schema", schema_id=result.schema_.id, error=e.message)
                result.metadata["saved"] = False
        return result

    async def auto_introspect(self, url: str, options: Optional[Mapping[str, Any]] = None) -> IntrospectionResult:
        connector = self.registry.find_for_url(url)
        if connector is None:
            raise ConfigurationError(f"Could not determine API protocol for URL: {url}", context={"url": url})
        self.logger.debug("Protocol detected from URL", url=url, protocol=connector.protocol.value)
        return await self.introspect(connector.protocol, url, options)

    async def test_connection(
        self,
        protocol: Union[APIProtocol, str],
        url: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ConnectionTestResult:
        connector = self._get_connector(protocol)
        return await connector.test_connection(self.build_options(connector, url, options))

    async def _storage_call(self, action: str, method: Callable[..., Awaitable[Any]], *args: Any, **context: Any) -> Any:
        await self.initialize()
        try:
            return await method(*args)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to {action}: {e}", context={**context, "error": str(e)}) from e

    async def save_schema(self, schema: UniversalSchema) -> str:
        schema_id = await self._storage_call("save schema", self.storage.store, schema, schema_id=schema.id)
        self.logger.info("Schema saved", schema_id=schema_id, name=schema.name)
        return schema_id

    async def get_schema(self, schema_id: str) -> Optional[UniversalSchema]:
        return await self._storage_call("retrieve schema", self.storage.retrieve, schema_id, schema_id=schema_id)

    async def list_schemas(self, query: Optional[SchemaQuery] = None) -> SchemaQueryResult:
        return await self._storage_call("list schemas", self.storage.query, query or SchemaQuery())

    async def delete_schema(self, schema_id: str) -> bool:
        return await self._storage_call("delete schema", self.storage.delete, schema_id, schema_id=schema_id)

    async def get_storage_stats(self) -> StorageStats:
        return await self._storage_call("get storage stats", self.storage.get_stats)
