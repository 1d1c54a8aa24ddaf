"""
Connector contract shared by every protocol, plus the registry the explorer
uses to pick a connector for a protocol or a URL.
"""
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Type, Union
from urllib.parse import urlparse

import structlog
from pydantic import ValidationError

from ..exceptions import (
    RECOVERABLE_ERRORS,
    ConfigurationError,
    ConnectorError,
    ExplorerError,
    IntrospectionError,
)
from ..models.common import APIProtocol
from ..models.connector import ConnectionTestResult, ConnectorConfig, IntrospectionResult

logger = structlog.get_logger(__name__)

ConfigInput = Union[ConnectorConfig, Mapping[str, Any]]


def normalize_protocol(protocol: Union[APIProtocol, str]) -> APIProtocol:
    try:
        return APIProtocol(str(protocol.value if isinstance(protocol, APIProtocol) else protocol).lower())
    except ValueError as e:
        supported = ", ".join(p.value for p in APIProtocol)
        raise ConfigurationError(
            f"Unsupported protocol: {protocol}. Supported protocols: {supported}",
            context={"protocol": str(protocol)},
        ) from e


def hostname_from_url(url: str, default: str = "Unknown API") -> str:
    hostname = urlparse(url).hostname
    if not hostname:
        return default
    return hostname[4:] if hostname.startswith("www.") else hostname


class BaseConnector(ABC):
    """
    Base class for protocol connectors.

    Subclasses implement ``_test_connection`` and ``_introspect`` and may raise the
    typed explorer errors freely: connection, authentication, parsing and
    validation errors are turned into failed results here, configuration errors
    propagate, and anything unexpected is wrapped.
    """

    protocol: APIProtocol
    name: str
    version: str = "1.0.0"
    config_model: Type[ConnectorConfig] = ConnectorConfig

    def __init__(self) -> None:
        self.logger = logger.bind(connector=self.name, protocol=self.protocol.value)

    @abstractmethod
    def can_handle(self, url: str) -> bool:
        """Cheap syntactic check; never touches the network."""

    @abstractmethod
    async def _test_connection(self, config: ConnectorConfig) -> ConnectionTestResult:
        ...

    @abstractmethod
    async def _introspect(self, config: ConnectorConfig, connection: ConnectionTestResult) -> IntrospectionResult:
        ...

    def get_default_config(self) -> Dict[str, Any]:
        """Default values of every recognised option (everything but the URL)."""
        defaults = {}
        for field_name, field_info in self.config_model.model_fields.items():
            if field_info.is_required():
                continue
            value = field_info.get_default(call_default_factory=True)
            defaults[field_name] = value.model_dump() if hasattr(value, "model_dump") else value
        return defaults

    def prepare_config(self, config: ConfigInput) -> ConnectorConfig:
        """Validates a caller's config into this connector's typed config model."""
        if isinstance(config, self.config_model):
            return config
        if isinstance(config, ConnectorConfig):
            data = config.model_dump(exclude_unset=True)
        else:
            data = dict(config)
        try:
            return self.config_model.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid {self.protocol.value} connector configuration: {e.error_count()} error(s)",
                context={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    async def test_connection(self, config: ConfigInput) -> ConnectionTestResult:
        cfg = self.prepare_config(config)
        started = time.monotonic()
        self.logger.debug("Testing connection", url=cfg.url)
        try:
            result = await self._test_connection(cfg)
        except RECOVERABLE_ERRORS as e:
            self.logger.warning("Connection test failed", url=cfg.url, error=e.message, error_code=e.code)
            result = ConnectionTestResult(
                success=False,
                error=e.message,
                metadata={"endpoint": cfg.url, "error_code": e.code, **e.context},
            )
        except ExplorerError:
            raise
        except Exception as e:
            self.logger.exception("Unexpected error while testing connection", url=cfg.url)
            raise ConnectorError(
                f"Failed to connect to {self.protocol.value} endpoint: {e}",
                context={"url": cfg.url, "error": str(e)},
            ) from e

        if result.response_time_ms is None:
            result.response_time_ms = (time.monotonic() - started) * 1000
        return result

    async def introspect(self, config: ConfigInput) -> IntrospectionResult:
        cfg = self.prepare_config(config)
        connection = await self.test_connection(cfg)
        if not connection.success:
            return IntrospectionResult(
                success=False,
                error=f"Connection test failed: {connection.error}",
                metadata=connection.metadata,
            )

        self.logger.info("Starting introspection", url=cfg.url)
        try:
            result = await self._introspect(cfg, connection)
        except RECOVERABLE_ERRORS as e:
            self.logger.warning("Introspection failed", url=cfg.url, error=e.message, error_code=e.code)
            return IntrospectionResult(
                success=False,
                error=e.message,
                metadata={"endpoint": cfg.url, "error_code": e.code, **e.context},
            )
        except ExplorerError:
            raise
        except Exception as e:
            self.logger.exception("Unexpected error during introspection", url=cfg.url)
            raise IntrospectionError(
                f"{self.protocol.value} introspection failed: {e}",
                context={"url": cfg.url, "error": str(e)},
            ) from e

        if result.success and result.schema_ is not None:
            self.logger.info(
                "Introspection complete",
                url=cfg.url,
                operations=len(result.schema_.operations),
                types=len(result.schema_.types),
                warnings=len(result.warnings),
            )
        return result

    async def close(self) -> None:
        """Releases any transport resources held by the connector."""


class ConnectorRegistry:
    """Holds one connector per protocol, in registration order."""

    def __init__(self) -> None:
        self._connectors: Dict[APIProtocol, BaseConnector] = {}

    def register(self, connector: BaseConnector) -> None:
        protocol = normalize_protocol(connector.protocol)
        if protocol in self._connectors:
            logger.info("Replacing registered connector", protocol=protocol.value, connector=connector.name)
        self._connectors[protocol] = connector

    def get(self, protocol: Union[APIProtocol, str]) -> Optional[BaseConnector]:
        return self._connectors.get(normalize_protocol(protocol))

    def get_all(self) -> List[BaseConnector]:
        return list(self._connectors.values())

    def find_for_url(self, url: str) -> Optional[BaseConnector]:
        for connector in self._connectors.values():
            if connector.can_handle(url):
                return connector
        return None
