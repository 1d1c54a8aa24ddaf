"""
Unit tests for GraphQLConnector query execution and the simplified-query fallback.
"""
import json
from unittest.mock import AsyncMock

import pytest

from schema_explorer.connectors.graphql import GraphQLConnector
from schema_explorer.connectors.graphql.connector import SIMPLIFIED_QUERY_WARNING
from schema_explorer.connectors.http_client import HTTPClient, HTTPResponse
from schema_explorer.exceptions import ExplorerConnectionError

ENDPOINT = "https://api.example.com/graphql"

SCHEMA_DATA = {
    "queryType": {"name": "Query"},
    "mutationType": None,
    "subscriptionType": None,
    "types": [
        {
            "kind": "OBJECT",
            "name": "Query",
            "fields": [{"name": "hello", "args": [], "type": {"kind": "SCALAR", "name": "String", "ofType": None}}],
        },
        {"kind": "SCALAR", "name": "String"},
    ],
    "directives": [],
}


def graphql_response(body, status=200, reason="OK"):
    return HTTPResponse(
        status=status,
        reason=reason,
        headers={"content-type": "application/json"},
        text=json.dumps(body) if not isinstance(body, str) else body,
        url=ENDPOINT,
    )


HEALTHY = graphql_response({"data": {"__schema": {"queryType": {"name": "Query"}}}})


@pytest.fixture
def http_client():
    return AsyncMock(spec=HTTPClient)


@pytest.fixture
def connector(http_client):
    return GraphQLConnector(http_client=http_client)


@pytest.mark.parametrize("url, expected", [
    ("https://api.example.com/graphql", True),
    ("https://api.example.com/v1/graphql", True),
    ("https://api.example.com/api?query={hello}", True),
    ("https://graphql.example.com/", True),
    ("https://api.example.com/v1/users", False),
    ("ws://api.example.com/graphql", False),
])
def test_can_handle(connector, url, expected):
    assert connector.can_handle(url) is expected


@pytest.mark.asyncio
async def test_introspect_with_full_query(connector, http_client):
    http_client.post_json.side_effect = [HEALTHY, graphql_response({"data": {"__schema": SCHEMA_DATA}})]

    result = await connector.introspect({"url": ENDPOINT, "headers": {"Authorization": "Bearer t"}})

    assert result.success is True
    assert result.warnings == []
    assert result.metadata["query_type"] == "full"
    assert result.schema_.get_operation("query_hello") is not None
    _, payload = http_client.post_json.call_args.args
    assert payload["operationName"] == "IntrospectionQuery"
    assert "__schema" in payload["query"]
    assert http_client.post_json.call_args.kwargs["headers"]["Authorization"] == "Bearer t"


@pytest.mark.asyncio
async def test_full_query_errors_fall_back_to_simple_query(connector, http_client):
    http_client.post_json.side_effect = [
        HEALTHY,
        graphql_response({"errors": [{"message": "Cannot query field 'isRepeatable'"}]}, status=400, reason="Bad Request"),
        graphql_response({"data": {"__schema": SCHEMA_DATA}}),
    ]

    result = await connector.introspect({"url": ENDPOINT})

    assert result.success is True
    assert result.warnings == [SIMPLIFIED_QUERY_WARNING]
    assert result.metadata["query_type"] == "simple"
    assert http_client.post_json.call_args.args[1]["operationName"] == "SimpleIntrospectionQuery"


@pytest.mark.asyncio
async def test_both_queries_failing_is_a_failure(connector, http_client):
    errors = graphql_response({"errors": [{"message": "introspection disabled"}]})
    http_client.post_json.side_effect = [HEALTHY, errors, errors]

    result = await connector.introspect({"url": ENDPOINT})

    assert result.success is False
    assert result.error == "Introspection failed: introspection disabled"


@pytest.mark.asyncio
async def test_use_simple_query_skips_full_query(connector, http_client):
    http_client.post_json.side_effect = [HEALTHY, graphql_response({"data": {"__schema": SCHEMA_DATA}})]

    result = await connector.introspect({"url": ENDPOINT, "use_simple_query": True})

    assert result.success is True
    assert http_client.post_json.await_count == 2
    assert result.metadata["query_type"] == "simple"


@pytest.mark.asyncio
async def test_health_check_errors_fail_the_connection_test(connector, http_client):
    http_client.post_json.return_value = graphql_response({"errors": [{"message": "a"}, {"message": "b"}]})

    result = await connector.test_connection({"url": ENDPOINT})

    assert result.success is False
    assert result.error == "GraphQL errors: a, b"


@pytest.mark.asyncio
async def test_missing_schema_fails_the_connection_test(connector, http_client):
    http_client.post_json.return_value = graphql_response({"data": {}})

    result = await connector.test_connection({"url": ENDPOINT})

    assert result.success is False
    assert "missing __schema" in result.error


@pytest.mark.asyncio
async def test_forbidden_is_an_authentication_failure(connector, http_client):
    http_client.post_json.return_value = graphql_response("denied", status=403, reason="Forbidden")

    result = await connector.introspect({"url": ENDPOINT})

    assert result.success is False
    assert result.metadata["error_code"] == "AUTHENTICATION_ERROR"
    assert result.error == "Connection test failed: Authentication failed: HTTP 403 Forbidden"


@pytest.mark.asyncio
async def test_non_json_error_page_is_a_connection_failure(connector, http_client):
    http_client.post_json.return_value = graphql_response("<html>502</html>", status=502, reason="Bad Gateway")

    result = await connector.test_connection({"url": ENDPOINT})

    assert result.success is False
    assert result.error == "HTTP 502: Bad Gateway"
    assert result.metadata["error_code"] == "CONNECTION_ERROR"


@pytest.mark.asyncio
async def test_unreachable_endpoint(connector, http_client):
    http_client.post_json.side_effect = ExplorerConnectionError("Connection failed", context={"url": ENDPOINT})

    result = await connector.introspect({"url": ENDPOINT})

    assert result.success is False
    assert result.error == "Connection test failed: Connection failed"
