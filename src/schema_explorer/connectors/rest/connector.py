"""
REST connector: discovers an OpenAPI/Swagger document for an endpoint, parses
it as JSON or YAML, validates it and converts it into a UniversalSchema.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import structlog
import yaml

from ...exceptions import AuthenticationError, ExplorerConnectionError, SchemaParsingError, SchemaValidationError
from ...models.common import APIProtocol
from ...models.connector import ConnectionTestResult, IntrospectionResult, RESTConnectorConfig
from ...models.schema import utc_now
from ..base import BaseConnector
from ..http_client import HTTPClient, HTTPResponse
from .converter import OpenAPISchemaConverter

logger = structlog.get_logger(__name__)

COMMON_OPENAPI_PATHS = [
    "/openapi.json",
    "/openapi.yaml",
    "/swagger.json",
    "/swagger.yaml",
    "/api-docs",
    "/api/docs",
    "/docs/openapi.json",
    "/docs/swagger.json",
    "/v1/openapi.json",
    "/v1/swagger.json",
    "/api/v1/openapi.json",
    "/api/v1/swagger.json",
]

SPEC_ACCEPT_HEADER = "application/json, application/yaml, text/yaml"
SPEC_CONTENT_TYPE_MARKERS = ("json", "yaml", "text")
SPEC_URL_MARKERS = ("swagger", "openapi", "api-docs")
SPEC_URL_SUFFIXES = (".json", ".yaml", ".yml")
OPENAPI_VERSION_PATTERN = re.compile(r"^3\.\d+\.\d+$")


def looks_like_spec_url(url: str) -> bool:
    lowered = url.lower()
    return any(marker in lowered for marker in SPEC_URL_MARKERS) or lowered.endswith(SPEC_URL_SUFFIXES)


def paths_to_try(config: RESTConnectorConfig) -> List[str]:
    paths = list(config.custom_paths)
    if config.try_common_paths:
        paths.extend(COMMON_OPENAPI_PATHS)
    return paths


def parse_specification(text: str, parse_yaml: bool = True) -> Dict[str, Any]:
    """Parses a document as JSON, falling back to YAML, and checks it is an OpenAPI/Swagger document."""
    try:
        document = json.loads(text)
    except json.JSONDecodeError as json_error:
        if not parse_yaml:
            raise SchemaParsingError(f"Failed to parse OpenAPI specification as JSON: {json_error}") from json_error
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as yaml_error:
            raise SchemaParsingError(f"Failed to parse OpenAPI specification: {yaml_error}") from yaml_error

    if not isinstance(document, dict) or not (
        "openapi" in document or "swagger" in document or ("info" in document and "paths" in document)
    ):
        raise SchemaParsingError("Document does not look like an OpenAPI/Swagger specification")
    return document


def validate_specification(document: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """Returns (errors, warnings). All missing required fields are reported together."""
    errors: List[str] = []
    warnings: List[str] = []

    info = document.get("info")
    if not info:
        errors.append("Missing required field: info")
    elif not isinstance(info, dict):
        errors.append("Invalid field: info must be an object")
    else:
        if not info.get("title"):
            errors.append("Missing required field: info.title")
        if not info.get("version"):
            errors.append("Missing required field: info.version")

    paths = document.get("paths")
    if paths is None:
        errors.append("Missing required field: paths")
    elif not isinstance(paths, dict):
        errors.append("Invalid field: paths must be an object")
    elif not paths:
        warnings.append("No paths defined in specification")

    openapi_version = document.get("openapi")
    swagger_version = document.get("swagger")
    if openapi_version is None and swagger_version is None:
        warnings.append("Missing version field (openapi or swagger)")
    if openapi_version is not None and not OPENAPI_VERSION_PATTERN.match(str(openapi_version)):
        warnings.append(f"Unsupported OpenAPI version: {openapi_version}")
    if swagger_version is not None and str(swagger_version) != "2.0":
        warnings.append(f"Unsupported Swagger version: {swagger_version}")

    return errors, warnings


def detect_specification_format(document: Dict[str, Any]) -> str:
    if document.get("openapi"):
        return f"OpenAPI {document['openapi']}"
    if document.get("swagger"):
        return f"Swagger {document['swagger']}"
    return "Unknown"


class RESTConnector(BaseConnector):
    protocol = APIProtocol.REST
    name = "REST/OpenAPI Connector"
    version = "1.0.0"
    config_model = RESTConnectorConfig

    def __init__(self, http_client: Optional[HTTPClient] = None):
        super().__init__()
        self._owns_client = http_client is None
        self.http_client = http_client or HTTPClient()

    def can_handle(self, url: str) -> bool:
        # Any HTTP(S) endpoint can be probed for a specification.
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)

    async def discover_specification_url(self, config: RESTConnectorConfig) -> Optional[str]:
        if config.spec_url:
            return config.spec_url
        if looks_like_spec_url(config.url):
            return config.url

        base_url = config.url.rstrip("/")
        for path in paths_to_try(config):
            candidate = f"{base_url}{path}"
            try:
                response = await self.http_client.head(
                    candidate,
                    headers=config.headers,
                    timeout_seconds=config.timeout_seconds,
                    follow_redirects=config.follow_redirects,
                )
            except ExplorerConnectionError as e:
                self.logger.debug("Discovery probe failed", candidate=candidate, error=e.message)
                continue
            if response.ok and any(marker in response.content_type for marker in SPEC_CONTENT_TYPE_MARKERS):
                self.logger.info("Discovered specification", spec_url=candidate)
                return candidate
        return None

    async def fetch_specification(self, spec_url: str, config: RESTConnectorConfig) -> HTTPResponse:
        headers = {"Accept": SPEC_ACCEPT_HEADER, "User-Agent": config.user_agent, **config.headers}
        response = await self.http_client.get(
            spec_url,
            headers=headers,
            timeout_seconds=config.timeout_seconds,
            follow_redirects=config.follow_redirects,
        )
        if response.status in (401, 403):
            raise AuthenticationError(
                f"HTTP {response.status}: {response.reason or 'Unauthorized'}",
                context={"spec_url": spec_url, "http_status": response.status},
            )
        if not response.ok:
            raise ExplorerConnectionError(
                f"HTTP {response.status}: {response.reason}",
                context={"spec_url": spec_url, "http_status": response.status, "http_status_text": response.reason},
            )
        return response

    async def _test_connection(self, config: RESTConnectorConfig) -> ConnectionTestResult:
        spec_url = await self.discover_specification_url(config)
        if spec_url is None:
            tried = paths_to_try(config)
            return ConnectionTestResult(
                success=False,
                error=f"Could not discover OpenAPI specification (tried {len(tried)} paths)",
                metadata={"endpoint": config.url, "tried_paths": tried},
            )

        response = await self.fetch_specification(spec_url, config)
        if not response.text.strip():
            return ConnectionTestResult(
                success=False,
                error="Empty or invalid OpenAPI specification",
                metadata={"endpoint": config.url, "spec_url": spec_url},
            )
        return ConnectionTestResult(
            success=True,
            metadata={"endpoint": config.url, "spec_url": spec_url, "spec_size": len(response.text)},
        )

    async def _introspect(self, config: RESTConnectorConfig, connection: ConnectionTestResult) -> IntrospectionResult:
        spec_url = connection.metadata["spec_url"]
        response = await self.fetch_specification(spec_url, config)
        document = parse_specification(response.text, parse_yaml=config.parse_yaml)

        errors, warnings = validate_specification(document)
        if errors:
            raise SchemaValidationError(
                f"Invalid OpenAPI specification: {', '.join(errors)}",
                errors=errors,
                context={"spec_url": spec_url, "validation_errors": errors},
            )

        converter = OpenAPISchemaConverter()
        schema = converter.convert(document, spec_url)
        return IntrospectionResult(
            success=True,
            schema_=schema,
            warnings=warnings + converter.warnings,
            metadata={
                "endpoint": config.url,
                "spec_url": spec_url,
                "spec_format": detect_specification_format(document),
                "operation_count": len(schema.operations),
                "type_count": len(schema.types),
                "introspection_timestamp": utc_now().isoformat(),
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.close()
