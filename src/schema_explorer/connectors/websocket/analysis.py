"""
Heuristics applied to a captured WebSocket session: message classification,
event extraction, structural pattern inference and protocol detection.
"""
import json
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ...models.common import DataType, infer_data_type
from .models import (
    MessageDirection,
    MessagePattern,
    MessageType,
    ProtocolDetectionResult,
    SessionStatistics,
    WebSocketEvent,
    WebSocketMessage,
    WebSocketProtocol,
    WebSocketSession,
)

DEFAULT_EVENT_NAME = "message"
MAX_EVENT_EXAMPLES = 5
MAX_PATTERN_EXAMPLES = 3
MIN_PATTERN_EXAMPLES = 2
MAX_NESTED_DEPTH = 3
SOCKET_IO_MARKERS = ('"event"', '"data"')
STOMP_COMMANDS = ("CONNECT", "SEND", "MESSAGE")
LIMITED_SAMPLE_THRESHOLD = 10
SHORT_SESSION_MS = 5000


def extract_event_name(parsed: Any) -> Optional[str]:
    if isinstance(parsed, list):
        if parsed and isinstance(parsed[0], str):
            return parsed[0] # Socket.IO: ["event", payload]
        return None
    if isinstance(parsed, dict):
        for key in ("event", "type"):
            value = parsed.get(key)
            if value and isinstance(value, (str, int, float)) and not isinstance(value, bool):
                return str(value)
    return None


def classify_message(
    data: Union[str, bytes],
    direction: MessageDirection,
    message_id: str,
    timestamp: datetime,
) -> WebSocketMessage:
    """Builds a captured message; text frames that decode as JSON become type json."""
    if isinstance(data, (bytes, bytearray)):
        return WebSocketMessage(
            id=message_id,
            type=MessageType.BINARY,
            direction=direction,
            data=bytes(data),
            timestamp=timestamp,
            size=len(data),
            event=DEFAULT_EVENT_NAME,
        )

    message_type = MessageType.TEXT
    parsed = None
    try:
        parsed = json.loads(data)
        message_type = MessageType.JSON
    except ValueError:
        pass

    return WebSocketMessage(
        id=message_id,
        type=message_type,
        direction=direction,
        data=data,
        parsed=parsed,
        timestamp=timestamp,
        size=len(data.encode("utf-8")),
        event=(extract_event_name(parsed) if message_type == MessageType.JSON else None) or DEFAULT_EVENT_NAME,
    )


def extract_events(messages: List[WebSocketMessage]) -> List[WebSocketEvent]:
    events: Dict[str, WebSocketEvent] = {}
    for message in messages:
        name = message.event or DEFAULT_EVENT_NAME
        event = events.get(name)
        if event is None:
            event = events[name] = WebSocketEvent(name=name, direction=message.direction)
        event.frequency += 1
        if event.direction != message.direction:
            event.direction = MessageDirection.BIDIRECTIONAL.value
        if len(event.examples) < MAX_EVENT_EXAMPLES:
            event.examples.append(message)
    return list(events.values())


def compute_statistics(messages: List[WebSocketMessage], start_time: datetime, end_time: datetime) -> SessionStatistics:
    by_type = Counter(getattr(m.type, "value", m.type) for m in messages)
    by_direction = Counter(getattr(m.direction, "value", m.direction) for m in messages)
    total_size = sum(m.size for m in messages)
    return SessionStatistics(
        total_messages=len(messages),
        messages_by_type=dict(by_type),
        messages_by_direction=dict(by_direction),
        average_message_size=total_size / len(messages) if messages else 0.0,
        connection_duration_ms=(end_time - start_time).total_seconds() * 1000,
    )


def message_signature(payload: Dict[str, Any]) -> str:
    return ",".join(sorted(payload.keys()))


def collect_fields(payload: Dict[str, Any], fields: Dict[str, Any], prefix: str = "") -> None:
    """
    Records dot-qualified field names in first-seen order, keeping the first value
    seen for each. Recursion stops once a name has MAX_NESTED_DEPTH segments.
    """
    for key, value in payload.items():
        field_name = f"{prefix}.{key}" if prefix else str(key)
        if field_name not in fields:
            fields[field_name] = value
        if isinstance(value, dict) and field_name.count(".") + 1 <= MAX_NESTED_DEPTH:
            collect_fields(value, fields, field_name)


def has_field(payload: Any, dotted_name: str) -> bool:
    current = payload
    for part in dotted_name.split("."):
        if not isinstance(current, dict) or part not in current:
            return False
        current = current[part]
    return True


def analyze_message_patterns(messages: List[WebSocketMessage]) -> List[MessagePattern]:
    """Clusters JSON object payloads by top-level key signature; groups with fewer than two examples are dropped."""
    groups: Dict[str, Dict[str, Any]] = {}
    for message in messages:
        if message.type != MessageType.JSON or not isinstance(message.parsed, dict):
            continue
        signature = message_signature(message.parsed)
        group = groups.setdefault(signature, {"examples": [], "fields": {}})
        group["examples"].append(message.parsed)
        collect_fields(message.parsed, group["fields"])

    patterns = []
    for signature, group in groups.items():
        examples = group["examples"]
        if len(examples) < MIN_PATTERN_EXAMPLES:
            continue

        required_fields, optional_fields = [], []
        for field_name in group["fields"]:
            if all(has_field(example, field_name) for example in examples):
                required_fields.append(field_name)
            else:
                optional_fields.append(field_name)

        index = len(patterns) + 1
        patterns.append(MessagePattern(
            id=f"pattern_{index}",
            name=f"Pattern_{index}",
            description=f"Message pattern with {len(required_fields)} required and {len(optional_fields)} optional fields",
            signature=signature,
            template=examples[0],
            required_fields=required_fields,
            optional_fields=optional_fields,
            # First-seen value decides the type; no vote across examples.
            field_types={name: infer_data_type(value) for name, value in group["fields"].items()},
            frequency=len(examples),
            examples=examples[:MAX_PATTERN_EXAMPLES],
        ))
    return patterns


def detect_protocol(messages: List[WebSocketMessage], events: List[WebSocketEvent]) -> ProtocolDetectionResult:
    protocol = WebSocketProtocol.RAW
    confidence = 0.5
    reasoning: List[str] = []
    text_payloads = [m.data for m in messages if isinstance(m.data, str)]

    if any(data.startswith("42") or any(marker in data for marker in SOCKET_IO_MARKERS) for data in text_payloads):
        protocol = WebSocketProtocol.SOCKET_IO
        confidence = 0.8
        reasoning.append("Detected Socket.IO message patterns")

    # Checked after Socket.IO so it wins when both match.
    if any(data.startswith(STOMP_COMMANDS) for data in text_payloads):
        protocol = WebSocketProtocol.STOMP
        confidence = 0.9
        reasoning.append("Detected STOMP protocol commands")

    json_count = sum(1 for m in messages if m.type == MessageType.JSON)
    if json_count:
        confidence = max(confidence, 0.7)
        reasoning.append(f"Found {json_count} JSON messages")

    if not reasoning:
        reasoning.append("No specific protocol patterns detected, assuming raw WebSocket")

    return ProtocolDetectionResult(
        protocol=protocol,
        confidence=confidence,
        reasoning=reasoning,
        metadata={"total_messages": len(messages), "json_messages": json_count, "events": len(events)},
    )


def generate_warnings(session: WebSocketSession, patterns: List[MessagePattern]) -> List[str]:
    warnings = []
    if not session.messages:
        warnings.append("No messages were captured during introspection")
    if len(session.messages) < LIMITED_SAMPLE_THRESHOLD:
        warnings.append("Limited message sample - schema may be incomplete")
    if not patterns:
        warnings.append("No message patterns detected - unable to infer structured schema")
    if session.statistics.connection_duration_ms < SHORT_SESSION_MS:
        warnings.append("Short connection duration - consider longer introspection for better results")
    return warnings


def field_type_of(pattern: MessagePattern, field_name: str) -> DataType:
    return DataType(pattern.field_types.get(field_name, DataType.UNKNOWN))
