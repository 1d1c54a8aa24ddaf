"""
Per-call connector configuration and the result envelopes connectors return.
"""
from typing import Any, Dict, List, Optional

from pydantic import Field

from .. import __version__
from .common import BasePydanticModel
from .schema import UniversalSchema

DEFAULT_USER_AGENT = f"Schema-Explorer/{__version__}"


class ConnectorConfig(BasePydanticModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds.")
    follow_redirects: bool = True
    user_agent: str = DEFAULT_USER_AGENT


class RESTConnectorConfig(ConnectorConfig):
    spec_url: Optional[str] = Field(default=None, description="Explicit OpenAPI/Swagger document URL; skips discovery.")
    try_common_paths: bool = True
    custom_paths: List[str] = Field(default_factory=list, description="Paths probed before the common ones.")
    parse_yaml: bool = True


class GraphQLConnectorConfig(ConnectorConfig):
    use_simple_query: bool = False
    custom_query: Optional[str] = None


class ProbeMessage(BasePydanticModel):
    """A message sent to a WebSocket endpoint during capture to provoke traffic."""
    data: Any
    delay_seconds: float = Field(default=1.0, ge=0)


class WebSocketIntrospectionConfig(BasePydanticModel):
    max_duration_seconds: float = Field(default=30.0, gt=0)
    max_messages: int = Field(default=100, ge=1)
    send_test_messages: bool = False
    test_messages: List[ProbeMessage] = Field(default_factory=list)


class WebSocketConnectorConfig(ConnectorConfig):
    timeout_seconds: float = Field(default=10.0, gt=0, description="Connection handshake timeout in seconds.")
    subprotocols: List[str] = Field(default_factory=list)
    introspection: WebSocketIntrospectionConfig = Field(default_factory=WebSocketIntrospectionConfig)


class ConnectionTestResult(BasePydanticModel):
    success: bool
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IntrospectionResult(BasePydanticModel):
    success: bool
    schema_: Optional[UniversalSchema] = Field(default=None, alias="schema")
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
