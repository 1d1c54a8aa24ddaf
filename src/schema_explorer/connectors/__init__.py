"""
Protocol connectors. Each one discovers an endpoint's contract and converts it
into a UniversalSchema.
"""
from .base import BaseConnector, ConnectorRegistry
from .graphql import GraphQLConnector
from .http_client import HTTPClient
from .rest import RESTConnector
from .websocket import WebSocketConnector

__all__ = [
    "BaseConnector",
    "ConnectorRegistry",
    "GraphQLConnector",
    "HTTPClient",
    "RESTConnector",
    "WebSocketConnector",
]
