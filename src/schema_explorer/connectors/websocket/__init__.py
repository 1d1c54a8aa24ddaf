from .analysis import analyze_message_patterns, detect_protocol, extract_events
from .connector import WebSocketConnector
from .converter import WebSocketSchemaConverter
from .transport import AiohttpWebSocketTransport, TransportEvent, WebSocketChannel, WebSocketTransport

__all__ = [
    "AiohttpWebSocketTransport",
    "TransportEvent",
    "WebSocketChannel",
    "WebSocketConnector",
    "WebSocketSchemaConverter",
    "WebSocketTransport",
    "analyze_message_patterns",
    "detect_protocol",
    "extract_events",
]
