"""
Synthesizes a UniversalSchema from a captured WebSocket session and the
patterns inferred from it.
"""
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import structlog

from ...models.common import APIProtocol, AuthType, DataType, OperationType, ParameterLocation, infer_data_type
from ...models.schema import (
    AuthenticationInfo,
    Operation,
    Parameter,
    Response,
    SchemaField,
    SchemaMetadata,
    UniversalSchema,
    generate_schema_id,
    utc_now,
)
from ..base import hostname_from_url
from .analysis import collect_fields, field_type_of
from .models import MessageDirection, MessagePattern, MessageType, ProtocolDetectionResult, WebSocketEvent, WebSocketMessage, WebSocketSession

logger = structlog.get_logger(__name__)

MAX_OPERATION_EXAMPLES = 3
CONNECT_RESPONSES = (
    ("101", "Switching Protocols - connection established"),
    ("400", "Bad Request - handshake rejected"),
    ("401", "Unauthorized - authentication required"),
)


def _example_preview(message: WebSocketMessage) -> Any:
    if isinstance(message.data, (bytes, bytearray)):
        return f"<{message.size} bytes>"
    return message.parsed if message.type == MessageType.JSON else message.data


class WebSocketSchemaConverter:
    def __init__(self) -> None:
        self.logger = logger.bind(converter="websocket")

    def convert(
        self,
        session: WebSocketSession,
        patterns: List[MessagePattern],
        detection: ProtocolDetectionResult,
        source_url: str,
    ) -> UniversalSchema:
        types = {pattern.name: self.pattern_to_field(pattern) for pattern in patterns}

        operations = [self._connect_operation(session)]
        for event in session.events:
            operations.append(self._event_to_operation(event, patterns, types))

        discovered_at = utc_now()
        return UniversalSchema(
            id=generate_schema_id(APIProtocol.WEBSOCKET, source_url, discovered_at),
            name=hostname_from_url(source_url, default="WebSocket API"),
            version="1.0.0",
            description=(
                f"WebSocket API discovered via introspection. Found {len(session.events)} events "
                f"from {len(session.messages)} captured messages."
            ),
            protocol=APIProtocol.WEBSOCKET,
            base_url=source_url,
            operations=operations,
            types=types,
            authentication=self._extract_authentication(session.headers),
            metadata=SchemaMetadata(extensions={
                "websocket": {
                    "protocol": detection.model_dump(mode="json"),
                    "statistics": session.statistics.model_dump(mode="json"),
                    "subprotocols": list(session.subprotocols),
                    "negotiatedProtocol": session.negotiated_protocol,
                    "eventCount": len(session.events),
                    "patternCount": len(patterns),
                }
            }),
            discovered_at=discovered_at,
            source_url=source_url,
        )

    @staticmethod
    def pattern_to_field(pattern: MessagePattern) -> SchemaField:
        required = set(pattern.required_fields)
        properties = {
            name: SchemaField(name=name, type=field_type_of(pattern, name), required=name in required)
            for name in pattern.required_fields + pattern.optional_fields
        }
        return SchemaField(
            name=pattern.name,
            type=DataType.OBJECT,
            required=True,
            description=pattern.description,
            properties=properties,
            metadata={"websocket": {
                "patternId": pattern.id,
                "signature": pattern.signature,
                "frequency": pattern.frequency,
                "template": pattern.template,
            }},
        )

    @staticmethod
    def infer_from_example(message: WebSocketMessage, name: str = "message") -> SchemaField:
        """Structural inference from a single message, typed the same way as patterns."""
        if message.type == MessageType.BINARY:
            return SchemaField(name=name, type=DataType.STRING, required=True, metadata={"websocket": {"binary": True}})
        if message.type != MessageType.JSON:
            return SchemaField(name=name, type=DataType.STRING, required=True)
        if not isinstance(message.parsed, dict):
            return SchemaField(name=name, type=infer_data_type(message.parsed), required=True)

        fields: Dict[str, Any] = {}
        collect_fields(message.parsed, fields)
        return SchemaField(
            name=name,
            type=DataType.OBJECT,
            required=True,
            properties={
                field_name: SchemaField(name=field_name, type=infer_data_type(value), required=True)
                for field_name, value in fields.items()
            },
        )

    @staticmethod
    def match_pattern(event: WebSocketEvent, patterns: List[MessagePattern]) -> Optional[MessagePattern]:
        example_keys = []
        for example in event.examples:
            if isinstance(example.parsed, dict):
                fields: Dict[str, Any] = {}
                collect_fields(example.parsed, fields)
                example_keys.append(set(fields))
        for pattern in patterns:
            required = set(pattern.required_fields)
            if any(required <= keys for keys in example_keys):
                return pattern
        return None

    def _event_to_operation(
        self,
        event: WebSocketEvent,
        patterns: List[MessagePattern],
        types: Dict[str, SchemaField],
    ) -> Operation:
        pattern = self.match_pattern(event, patterns)
        direction = getattr(event.direction, "value", event.direction)
        if pattern is not None:
            message_field = types[pattern.name].model_copy(update={"name": "message", "required": True}, deep=True)
        elif event.examples:
            message_field = self.infer_from_example(event.examples[0])
        else:
            message_field = SchemaField(name="message", type=DataType.UNKNOWN, required=True)

        responses = []
        if event.direction in (MessageDirection.INCOMING, MessageDirection.BIDIRECTIONAL):
            responses.append(Response(
                status_code="success",
                description=f"Message received for event '{event.name}'",
                schema_=message_field.model_copy(deep=True),
            ))

        return Operation(
            id=f"websocket_event_{event.name}",
            name=event.name,
            type=OperationType.MESSAGE,
            description=f"WebSocket event '{event.name}' ({direction}, observed {event.frequency} times)",
            parameters=[Parameter(
                name="message",
                location=ParameterLocation.BODY,
                schema_=message_field,
                required=True,
                description="Message payload",
                example=_example_preview(event.examples[0]) if event.examples else None,
            )],
            responses=responses,
            metadata={"websocket": {
                "direction": direction,
                "frequency": event.frequency,
                "patternId": pattern.id if pattern else None,
                "examples": [_example_preview(m) for m in event.examples[:MAX_OPERATION_EXAMPLES]],
            }},
        )

    @staticmethod
    def _connect_operation(session: WebSocketSession) -> Operation:
        return Operation(
            id="websocket_connect",
            name="connect",
            type=OperationType.ENDPOINT,
            path=urlparse(session.url).path or "/",
            description="Establish the WebSocket connection",
            responses=[Response(status_code=code, description=description) for code, description in CONNECT_RESPONSES],
            metadata={"websocket": {
                "subprotocols": list(session.subprotocols),
                "negotiatedProtocol": session.negotiated_protocol,
            }},
        )

    @staticmethod
    def _extract_authentication(headers: Dict[str, str]) -> AuthenticationInfo:
        authorization = next((value for key, value in headers.items() if key.lower() == "authorization"), None)
        if authorization is None:
            return AuthenticationInfo(type=AuthType.NONE)
        if authorization.lower().startswith("bearer "):
            return AuthenticationInfo(type=AuthType.BEARER, description="Bearer token supplied in connection headers")
        if authorization.lower().startswith("basic "):
            return AuthenticationInfo(type=AuthType.BASIC, description="Basic credentials supplied in connection headers")
        return AuthenticationInfo(type=AuthType.CUSTOM, description="Authorization header supplied in connection headers")
