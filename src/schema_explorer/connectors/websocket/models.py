"""
Models describing a captured WebSocket session and what was inferred from it.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from ...models.common import BasePydanticModel, DataType


class WebSocketProtocol(str, Enum):
    RAW = "raw"
    SOCKET_IO = "socket.io"
    STOMP = "stomp"


class MessageType(str, Enum):
    TEXT = "text"
    BINARY = "binary"
    JSON = "json"


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"
    BIDIRECTIONAL = "bidirectional"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERROR = "error"


class WebSocketMessage(BasePydanticModel):
    id: str
    type: MessageType
    direction: MessageDirection
    data: Any
    parsed: Any = None
    timestamp: datetime
    size: int
    event: Optional[str] = None


class WebSocketEvent(BasePydanticModel):
    name: str
    direction: MessageDirection
    examples: List[WebSocketMessage] = Field(default_factory=list)
    frequency: int = 0


class MessagePattern(BasePydanticModel):
    id: str
    name: str
    description: str
    signature: str
    template: Dict[str, Any]
    required_fields: List[str]
    optional_fields: List[str]
    field_types: Dict[str, DataType]
    frequency: int
    examples: List[Dict[str, Any]] = Field(default_factory=list)


class SessionStatistics(BasePydanticModel):
    total_messages: int = 0
    messages_by_type: Dict[str, int] = Field(default_factory=dict)
    messages_by_direction: Dict[str, int] = Field(default_factory=dict)
    average_message_size: float = 0.0
    connection_duration_ms: float = 0.0


class ProtocolDetectionResult(BasePydanticModel):
    protocol: WebSocketProtocol
    confidence: float
    reasoning: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WebSocketSession(BasePydanticModel):
    id: str
    url: str
    subprotocols: List[str] = Field(default_factory=list)
    negotiated_protocol: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    start_time: datetime
    end_time: Optional[datetime] = None
    state: SessionState = SessionState.CONNECTING
    messages: List[WebSocketMessage] = Field(default_factory=list)
    events: List[WebSocketEvent] = Field(default_factory=list)
    statistics: SessionStatistics = Field(default_factory=SessionStatistics)
    close_reason: Optional[str] = None
