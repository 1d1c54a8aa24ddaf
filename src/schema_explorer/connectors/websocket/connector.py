"""
WebSocket connector: captures a bounded window of live traffic and infers a
schema from it.
"""
import asyncio
import json
import time
from typing import List, Optional, Union
from urllib.parse import urlparse

import aiohttp
import structlog

from ...exceptions import ExplorerConnectionError
from ...models.common import APIProtocol
from ...models.connector import ConnectionTestResult, IntrospectionResult, ProbeMessage, WebSocketConnectorConfig
from ...models.schema import utc_now
from ..base import BaseConnector
from .analysis import analyze_message_patterns, classify_message, compute_statistics, detect_protocol, extract_events, generate_warnings
from .converter import WebSocketSchemaConverter
from .models import MessageDirection, SessionState, WebSocketSession
from .transport import AiohttpWebSocketTransport, WebSocketChannel, WebSocketTransport

logger = structlog.get_logger(__name__)


class WebSocketConnector(BaseConnector):
    protocol = APIProtocol.WEBSOCKET
    name = "WebSocket Connector"
    version = "1.0.0"
    config_model = WebSocketConnectorConfig

    def __init__(self, transport: Optional[WebSocketTransport] = None):
        super().__init__()
        self._owns_transport = transport is None
        self.transport = transport or AiohttpWebSocketTransport()

    def can_handle(self, url: str) -> bool:
        parsed = urlparse(url)
        return parsed.scheme in ("ws", "wss") and bool(parsed.netloc)

    async def _open(self, config: WebSocketConnectorConfig) -> WebSocketChannel:
        return await self.transport.connect(
            config.url,
            headers={"User-Agent": config.user_agent, **config.headers},
            subprotocols=config.subprotocols,
            timeout_seconds=config.timeout_seconds,
        )

    async def _test_connection(self, config: WebSocketConnectorConfig) -> ConnectionTestResult:
        channel = await self._open(config)
        negotiated = channel.protocol
        await channel.close()
        return ConnectionTestResult(
            success=True,
            metadata={"endpoint": config.url, "protocol": negotiated, "subprotocols": config.subprotocols},
        )

    def _record(self, session: WebSocketSession, data: Union[str, bytes], direction: MessageDirection, limit: int) -> None:
        if len(session.messages) >= limit:
            return
        session.messages.append(classify_message(
            data,
            direction,
            message_id=f"msg_{len(session.messages) + 1}",
            timestamp=utc_now(),
        ))

    async def _send_probe(self, channel: WebSocketChannel, probe: ProbeMessage, session: WebSocketSession, limit: int) -> None:
        await asyncio.sleep(probe.delay_seconds)
        data = probe.data if isinstance(probe.data, str) else json.dumps(probe.data)
        try:
            await channel.send(data)
        except (ConnectionError, aiohttp.ClientError) as e:
            self.logger.warning("Failed to send test message", url=session.url, error=str(e))
            return
        self._record(session, data, MessageDirection.OUTGOING, limit)

    async def capture_session(self, config: WebSocketConnectorConfig) -> WebSocketSession:
        """
        Records traffic until max_duration_seconds elapse, max_messages are captured
        or the peer closes, whichever comes first.
        """
        settings = config.introspection
        session = WebSocketSession(
            id=f"ws_session_{int(time.time() * 1000)}",
            url=config.url,
            subprotocols=config.subprotocols,
            headers=config.headers,
            start_time=utc_now(),
        )
        channel = await self._open(config)
        session.state = SessionState.OPEN
        session.negotiated_protocol = channel.protocol
        self.logger.info("Capturing WebSocket session", url=config.url, max_duration_seconds=settings.max_duration_seconds, max_messages=settings.max_messages)

        send_tasks: List[asyncio.Task] = []
        if settings.send_test_messages:
            send_tasks = [
                asyncio.create_task(self._send_probe(channel, probe, session, settings.max_messages))
                for probe in settings.test_messages
            ]

        loop = asyncio.get_running_loop()
        deadline = loop.time() + settings.max_duration_seconds
        try:
            while len(session.messages) < settings.max_messages:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    event = await channel.receive(timeout=remaining)
                except asyncio.TimeoutError:
                    break
                if event.kind == "message":
                    self._record(session, event.data, MessageDirection.INCOMING, settings.max_messages)
                elif event.kind == "close":
                    session.close_reason = event.error
                    break
                else:
                    session.state = SessionState.ERROR
                    raise ExplorerConnectionError(
                        f"WebSocket error: {event.error}",
                        context={"url": config.url, "messages_captured": len(session.messages)},
                    )
        finally:
            for task in send_tasks:
                task.cancel()
            await asyncio.gather(*send_tasks, return_exceptions=True)
            await channel.close()
            session.end_time = utc_now()
            if session.state != SessionState.ERROR:
                session.state = SessionState.CLOSED

        session.events = extract_events(session.messages)
        session.statistics = compute_statistics(session.messages, session.start_time, session.end_time)
        self.logger.info(
            "WebSocket session captured",
            url=config.url,
            messages=len(session.messages),
            events=len(session.events),
            duration_ms=session.statistics.connection_duration_ms,
        )
        return session

    async def _introspect(self, config: WebSocketConnectorConfig, connection: ConnectionTestResult) -> IntrospectionResult:
        session = await self.capture_session(config)
        patterns = analyze_message_patterns(session.messages)
        detection = detect_protocol(session.messages, session.events)
        schema = WebSocketSchemaConverter().convert(session, patterns, detection, config.url)

        return IntrospectionResult(
            success=True,
            schema_=schema,
            warnings=generate_warnings(session, patterns),
            metadata={
                "endpoint": config.url,
                "session_duration_ms": session.statistics.connection_duration_ms,
                "messages_captured": len(session.messages),
                "events_detected": len(session.events),
                "patterns_found": len(patterns),
                "protocol_detected": detection.protocol,
                "protocol_confidence": detection.confidence,
                "introspection_timestamp": utc_now().isoformat(),
            },
        )

    async def close(self) -> None:
        if self._owns_transport:
            await self.transport.close()
