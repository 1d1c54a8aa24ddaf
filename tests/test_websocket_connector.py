"""
Unit tests for WebSocketConnector capture and schema synthesis, using an in-memory transport.
"""
import asyncio
import json

import pytest

from schema_explorer.connectors.websocket import TransportEvent, WebSocketChannel, WebSocketConnector, WebSocketTransport
from schema_explorer.exceptions import AuthenticationError, ExplorerConnectionError
from schema_explorer.models.common import AuthType, DataType

URL = "wss://stream.example.com/v1/feed"


class FakeChannel(WebSocketChannel):
    def __init__(self, events, protocol=None):
        self.events = list(events)
        self.protocol = protocol
        self.sent = []
        self.closed = False

    async def receive(self, timeout):
        await asyncio.sleep(0)
        if self.events:
            return self.events.pop(0)
        await asyncio.sleep(min(timeout, 0.05))
        raise asyncio.TimeoutError()

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


class FakeTransport(WebSocketTransport):
    def __init__(self, events=(), error=None, protocol=None):
        self.events = list(events)
        self.error = error
        self.protocol = protocol
        self.channels = []
        self.connect_calls = []

    async def connect(self, url, *, headers, subprotocols, timeout_seconds):
        self.connect_calls.append({"url": url, "headers": headers, "subprotocols": subprotocols, "timeout_seconds": timeout_seconds})
        if self.error is not None:
            raise self.error
        channel = FakeChannel(self.events, protocol=self.protocol)
        self.channels.append(channel)
        return channel


def text(payload):
    return TransportEvent(kind="message", data=json.dumps(payload))


def options(**introspection):
    settings = {"max_duration_seconds": 1, **introspection}
    return {"url": URL, "introspection": settings}


def test_can_handle_ws_urls_only():
    connector = WebSocketConnector(FakeTransport())
    assert connector.can_handle("ws://localhost:8080")
    assert connector.can_handle(URL)
    assert not connector.can_handle("https://api.example.com/graphql")


@pytest.mark.asyncio
async def test_status_stream_yields_one_pattern_and_event_operation():
    events = [text({"id": i, "status": "ok"}) for i in range(4)] + [text({"error": "boom"})]
    transport = FakeTransport(events, protocol="v1.feed")
    connector = WebSocketConnector(transport)

    result = await connector.introspect({**options(), "subprotocols": ["v1.feed"]})

    assert result.success is True
    schema = result.schema_
    assert schema.protocol == "websocket"
    assert schema.name == "stream.example.com"
    assert list(schema.types) == ["Pattern_1"]
    pattern_type = schema.types["Pattern_1"]
    assert set(pattern_type.properties) == {"id", "status"}
    assert pattern_type.properties["id"].type == DataType.INTEGER

    connect, message = schema.operations
    assert connect.id == "websocket_connect"
    assert connect.path == "/v1/feed"
    assert [r.status_code for r in connect.responses] == ["101", "400", "401"]
    assert message.id == "websocket_event_message"
    assert message.type == "message"
    assert message.metadata["websocket"]["frequency"] == 5
    assert message.metadata["websocket"]["patternId"] == "pattern_1"
    body = message.parameters[0]
    assert body.name == "message"
    assert body.location == "body"
    assert set(body.schema_.properties) == {"id", "status"}
    assert message.responses[0].status_code == "success"

    assert result.metadata["messages_captured"] == 5
    assert result.metadata["patterns_found"] == 1
    assert result.metadata["protocol_detected"] == "raw"
    assert "Limited message sample - schema may be incomplete" in result.warnings
    assert transport.connect_calls[0]["subprotocols"] == ["v1.feed"]
    assert schema.metadata.extensions["websocket"]["negotiatedProtocol"] == "v1.feed"
    assert all(channel.closed for channel in transport.channels)


@pytest.mark.asyncio
async def test_capture_stops_at_max_messages():
    transport = FakeTransport([text({"n": i}) for i in range(10)])
    connector = WebSocketConnector(transport)

    session = await connector.capture_session(connector.prepare_config(options(max_messages=3)))

    assert len(session.messages) == 3
    assert session.state == "closed"


@pytest.mark.asyncio
async def test_capture_stops_when_peer_closes():
    events = [text({"n": 1}), TransportEvent(kind="close", error="going away"), text({"n": 2})]
    connector = WebSocketConnector(FakeTransport(events))

    session = await connector.capture_session(connector.prepare_config(options()))

    assert len(session.messages) == 1
    assert session.close_reason == "going away"


@pytest.mark.asyncio
async def test_transport_error_mid_session_is_a_failure():
    events = [text({"n": 1}), TransportEvent(kind="error", error="connection reset")]
    connector = WebSocketConnector(FakeTransport(events))

    result = await connector.introspect(options())

    assert result.success is False
    assert result.error == "WebSocket error: connection reset"
    assert result.metadata["error_code"] == "CONNECTION_ERROR"


@pytest.mark.asyncio
async def test_probe_messages_are_sent_and_recorded():
    transport = FakeTransport()
    connector = WebSocketConnector(transport)
    config = connector.prepare_config(options(
        send_test_messages=True,
        test_messages=[{"data": {"action": "subscribe"}, "delay_seconds": 0}],
    ))

    session = await connector.capture_session(config)

    assert transport.channels[0].sent == ['{"action": "subscribe"}']
    assert [m.direction for m in session.messages] == ["outgoing"]
    assert session.events[0].direction == "outgoing"


@pytest.mark.asyncio
async def test_empty_session_warns_and_still_has_connect_operation():
    connector = WebSocketConnector(FakeTransport())

    result = await connector.introspect(options())

    assert result.success is True
    assert [op.id for op in result.schema_.operations] == ["websocket_connect"]
    assert "No messages were captured during introspection" in result.warnings
    assert "No message patterns detected - unable to infer structured schema" in result.warnings


@pytest.mark.asyncio
async def test_unmatched_event_is_typed_from_its_first_example():
    connector = WebSocketConnector(FakeTransport([text({"type": "hello", "server": "v2"})]))

    result = await connector.introspect(options())

    hello = result.schema_.get_operation("websocket_event_hello")
    assert hello.metadata["websocket"]["patternId"] is None
    assert set(hello.parameters[0].schema_.properties) == {"type", "server"}
    assert hello.parameters[0].example == {"type": "hello", "server": "v2"}


@pytest.mark.asyncio
async def test_captured_connect_event_keeps_its_own_operation_id():
    events = [text({"event": "connect", "sid": f"s{i}"}) for i in range(2)]
    connector = WebSocketConnector(FakeTransport(events))

    result = await connector.introspect(options())

    ids = [op.id for op in result.schema_.operations]
    assert ids == ["websocket_connect", "websocket_event_connect"]
    assert result.schema_.get_operation("websocket_connect").type == "endpoint"
    assert result.schema_.get_operation("websocket_event_connect").type == "message"

@pytest.mark.asyncio
async def test_authorization_header_is_recorded():
    transport = FakeTransport()
    connector = WebSocketConnector(transport)

    result = await connector.introspect({**options(), "headers": {"Authorization": "Bearer abc"}})

    assert result.schema_.authentication.type == AuthType.BEARER
    sent_headers = transport.connect_calls[0]["headers"]
    assert sent_headers["Authorization"] == "Bearer abc"
    assert sent_headers["User-Agent"].startswith("Schema-Explorer/")


@pytest.mark.asyncio
async def test_connection_timeout_fails_the_connection_test():
    connector = WebSocketConnector(FakeTransport(error=ExplorerConnectionError("Connection timeout")))

    result = await connector.test_connection({"url": URL, "timeout_seconds": 0.5})

    assert result.success is False
    assert result.error == "Connection timeout"


@pytest.mark.asyncio
async def test_rejected_handshake_is_an_authentication_failure():
    connector = WebSocketConnector(FakeTransport(error=AuthenticationError("WebSocket handshake rejected: HTTP 401")))

    result = await connector.introspect(options())

    assert result.success is False
    assert result.metadata["error_code"] == "AUTHENTICATION_ERROR"
