from .connector import GraphQLConnector
from .converter import GraphQLSchemaConverter
from .queries import HEALTH_CHECK_QUERY, INTROSPECTION_QUERY, SIMPLE_INTROSPECTION_QUERY

__all__ = [
    "GraphQLConnector",
    "GraphQLSchemaConverter",
    "HEALTH_CHECK_QUERY",
    "INTROSPECTION_QUERY",
    "SIMPLE_INTROSPECTION_QUERY",
]
