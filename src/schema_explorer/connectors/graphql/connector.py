"""
GraphQL connector: runs the introspection query against an endpoint and
converts the returned type graph.
"""
import json
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import structlog

from ...exceptions import AuthenticationError, ExplorerConnectionError, SchemaParsingError
from ...models.common import APIProtocol
from ...models.connector import ConnectionTestResult, GraphQLConnectorConfig, IntrospectionResult
from ...models.schema import utc_now
from ..base import BaseConnector
from ..http_client import HTTPClient
from .converter import GraphQLSchemaConverter
from .queries import HEALTH_CHECK_QUERY, INTROSPECTION_QUERY, SIMPLE_INTROSPECTION_QUERY

logger = structlog.get_logger(__name__)

GRAPHQL_PATH_PATTERNS = ("/graphql", "/graphiql", "/api/graphql", "/v1/graphql", "/query")
SIMPLIFIED_QUERY_WARNING = "Used simplified introspection query due to errors in full query"


def format_graphql_errors(errors: List[Any]) -> str:
    messages = []
    for error in errors:
        messages.append(error.get("message", str(error)) if isinstance(error, dict) else str(error))
    return ", ".join(messages)


class GraphQLConnector(BaseConnector):
    protocol = APIProtocol.GRAPHQL
    name = "GraphQL Connector"
    version = "1.0.0"
    config_model = GraphQLConnectorConfig

    def __init__(self, http_client: Optional[HTTPClient] = None):
        super().__init__()
        self._owns_client = http_client is None
        self.http_client = http_client or HTTPClient()

    def can_handle(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return False
        path = parsed.path.lower()
        return (
            any(pattern in path for pattern in GRAPHQL_PATH_PATTERNS)
            or "query" in parse_qs(parsed.query)
            or "graphql" in url.lower()
        )

    async def execute_query(self, config: GraphQLConnectorConfig, query: str, operation_name: Optional[str] = None) -> Dict[str, Any]:
        """POSTs a query and returns the decoded GraphQL response body (``data`` and/or ``errors``)."""
        payload: Dict[str, Any] = {"query": query, "variables": {}}
        if operation_name:
            payload["operationName"] = operation_name
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": config.user_agent,
            **config.headers,
        }
        response = await self.http_client.post_json(
            config.url,
            payload,
            headers=headers,
            timeout_seconds=config.timeout_seconds,
            follow_redirects=config.follow_redirects,
        )

        if response.status in (401, 403):
            raise AuthenticationError(
                f"Authentication failed: HTTP {response.status} {response.reason}".strip(),
                context={"http_status": response.status},
            )

        try:
            body = json.loads(response.text)
        except json.JSONDecodeError as e:
            if not response.ok:
                raise ExplorerConnectionError(
                    f"HTTP {response.status}: {response.reason}",
                    context={"http_status": response.status, "http_status_text": response.reason},
                ) from e
            raise SchemaParsingError("GraphQL endpoint returned a non-JSON response", context={"http_status": response.status}) from e

        if not isinstance(body, dict):
            raise SchemaParsingError("GraphQL response is not a JSON object")
        # GraphQL servers commonly answer query errors with 400 and an errors list.
        if not response.ok and not body.get("errors"):
            raise ExplorerConnectionError(
                f"HTTP {response.status}: {response.reason}",
                context={"http_status": response.status, "http_status_text": response.reason},
            )
        return body

    async def _test_connection(self, config: GraphQLConnectorConfig) -> ConnectionTestResult:
        body = await self.execute_query(config, HEALTH_CHECK_QUERY, "HealthCheck")
        if body.get("errors"):
            return ConnectionTestResult(
                success=False,
                error=f"GraphQL errors: {format_graphql_errors(body['errors'])}",
                metadata={"endpoint": config.url, "errors": body["errors"]},
            )

        schema_data = (body.get("data") or {}).get("__schema")
        if not schema_data:
            return ConnectionTestResult(
                success=False,
                error="Invalid GraphQL response: missing __schema",
                metadata={"endpoint": config.url},
            )
        return ConnectionTestResult(
            success=True,
            metadata={
                "endpoint": config.url,
                "has_query_type": bool(schema_data.get("queryType")),
                "query_type_name": (schema_data.get("queryType") or {}).get("name"),
            },
        )

    async def _introspect(self, config: GraphQLConnectorConfig, connection: ConnectionTestResult) -> IntrospectionResult:
        warnings: List[str] = []
        if config.custom_query:
            query_kind, body = "custom", await self.execute_query(config, config.custom_query)
        elif config.use_simple_query:
            query_kind, body = "simple", await self.execute_query(config, SIMPLE_INTROSPECTION_QUERY, "SimpleIntrospectionQuery")
        else:
            query_kind, body = "full", await self.execute_query(config, INTROSPECTION_QUERY, "IntrospectionQuery")
            if body.get("errors"):
                self.logger.warning(
                    "Full introspection query failed, retrying with simplified query",
                    url=config.url,
                    errors=format_graphql_errors(body["errors"]),
                )
                body = await self.execute_query(config, SIMPLE_INTROSPECTION_QUERY, "SimpleIntrospectionQuery")
                if not body.get("errors"):
                    query_kind = "simple"
                    warnings.append(SIMPLIFIED_QUERY_WARNING)

        if body.get("errors"):
            return IntrospectionResult(
                success=False,
                error=f"Introspection failed: {format_graphql_errors(body['errors'])}",
                metadata={"endpoint": config.url, "errors": body["errors"], "query_type": query_kind},
            )

        schema_data = (body.get("data") or {}).get("__schema")
        if not isinstance(schema_data, dict):
            raise SchemaParsingError("Introspection response did not contain __schema", context={"query_type": query_kind})

        schema = GraphQLSchemaConverter().convert(schema_data, config.url)
        return IntrospectionResult(
            success=True,
            schema_=schema,
            warnings=warnings,
            metadata={
                "endpoint": config.url,
                "query_type": query_kind,
                "graphql_type_count": len(schema_data.get("types") or []),
                "operation_count": len(schema.operations),
                "type_count": len(schema.types),
                "introspection_timestamp": utc_now().isoformat(),
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.close()
