"""
Shared fixtures: a factory for small but fully populated UniversalSchemas.
"""
from datetime import datetime, timedelta, timezone

import pytest

from schema_explorer.models import (
    APIProtocol,
    AuthenticationInfo,
    AuthType,
    DataType,
    HTTPMethod,
    Operation,
    OperationType,
    Parameter,
    ParameterLocation,
    Response,
    SchemaField,
    UniversalSchema,
    generate_schema_id,
)

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)


def build_schema(
    name="Petstore",
    protocol=APIProtocol.REST,
    source_url="https://petstore.example.com/openapi.json",
    minutes=0,
    description=None,
):
    discovered_at = BASE_TIME + timedelta(minutes=minutes)
    pet = SchemaField(
        name="Pet",
        type=DataType.OBJECT,
        required=True,
        properties={
            "id": SchemaField(name="id", type=DataType.INTEGER),
            "name": SchemaField(name="name", type=DataType.STRING, required=True),
            "tags": SchemaField(name="tags", type=DataType.ARRAY, items=SchemaField(name="item", type=DataType.STRING)),
        },
    )
    operation = Operation(
        id="getPet",
        name="Get pet",
        type=OperationType.ENDPOINT,
        method=HTTPMethod.GET,
        path="/pets/{id}",
        parameters=[Parameter(
            name="id",
            location=ParameterLocation.PATH,
            schema_=SchemaField(name="id", type=DataType.INTEGER, required=True),
            required=True,
        )],
        responses=[Response(status_code="200", schema_=SchemaField.reference("response", "Pet"))],
        metadata={"openapi": {"operationId": "getPet"}},
    )
    return UniversalSchema(
        id=generate_schema_id(protocol, source_url, discovered_at),
        name=name,
        version="1.0.0",
        description=description,
        protocol=protocol,
        base_url="https://petstore.example.com",
        operations=[operation],
        types={"Pet": pet},
        authentication=AuthenticationInfo(type=AuthType.APIKEY, metadata={"in": "header"}),
        discovered_at=discovered_at,
        source_url=source_url,
    )


@pytest.fixture
def make_schema():
    return build_schema
