"""
Pydantic models for Schema Explorer.
"""
from .common import (
    APIProtocol,
    AuthType,
    BasePydanticModel,
    DataType,
    HTTPMethod,
    OperationType,
    ParameterLocation,
    infer_data_type,
)
from .connector import (
    ConnectionTestResult,
    ConnectorConfig,
    GraphQLConnectorConfig,
    IntrospectionResult,
    ProbeMessage,
    RESTConnectorConfig,
    WebSocketConnectorConfig,
    WebSocketIntrospectionConfig,
)
from .schema import (
    AuthenticationInfo,
    FieldConstraints,
    Operation,
    Parameter,
    Response,
    SchemaField,
    SchemaMetadata,
    UniversalSchema,
    generate_schema_id,
)
from .storage import IndexEntry, SchemaQuery, SchemaQueryResult, StorageStats

__all__ = [
    "APIProtocol",
    "AuthType",
    "AuthenticationInfo",
    "BasePydanticModel",
    "ConnectionTestResult",
    "ConnectorConfig",
    "DataType",
    "FieldConstraints",
    "GraphQLConnectorConfig",
    "HTTPMethod",
    "IndexEntry",
    "IntrospectionResult",
    "Operation",
    "OperationType",
    "Parameter",
    "ParameterLocation",
    "ProbeMessage",
    "RESTConnectorConfig",
    "Response",
    "SchemaField",
    "SchemaMetadata",
    "SchemaQuery",
    "SchemaQueryResult",
    "StorageStats",
    "UniversalSchema",
    "WebSocketConnectorConfig",
    "WebSocketIntrospectionConfig",
    "generate_schema_id",
    "infer_data_type",
]
