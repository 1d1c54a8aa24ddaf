"""
WebSocket transport collaborator. The capture logic only talks to
``WebSocketTransport``/``WebSocketChannel``; the aiohttp implementation is the default.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Dict, List, Literal, Optional, Union

import aiohttp
import structlog

from ...exceptions import AuthenticationError, ExplorerConnectionError
from ...models.common import BasePydanticModel

logger = structlog.get_logger(__name__)


class TransportEvent(BasePydanticModel):
    kind: Literal["message", "close", "error"]
    data: Optional[Union[str, bytes]] = None
    is_binary: bool = False
    error: Optional[str] = None


class WebSocketChannel(ABC):
    """An open connection yielding lifecycle events."""

    protocol: Optional[str] = None

    @abstractmethod
    async def receive(self, timeout: float) -> TransportEvent:
        """Waits up to ``timeout`` seconds for the next event; raises asyncio.TimeoutError otherwise."""

    @abstractmethod
    async def send(self, data: str) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class WebSocketTransport(ABC):
    @abstractmethod
    async def connect(
        self,
        url: str,
        *,
        headers: Dict[str, str],
        subprotocols: List[str],
        timeout_seconds: float,
    ) -> WebSocketChannel:
        """Opens a connection. Raises ExplorerConnectionError or AuthenticationError."""

    async def close(self) -> None:
        """Releases shared transport resources."""


class AiohttpWebSocketChannel(WebSocketChannel):
    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws
        self.protocol = ws.protocol

    async def receive(self, timeout: float) -> TransportEvent:
        while True:
            msg = await self._ws.receive(timeout=timeout)
            if msg.type == aiohttp.WSMsgType.TEXT:
                return TransportEvent(kind="message", data=msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return TransportEvent(kind="message", data=msg.data, is_binary=True)
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return TransportEvent(kind="close", error=msg.extra if isinstance(msg.extra, str) else None)
            if msg.type == aiohttp.WSMsgType.ERROR:
                return TransportEvent(kind="error", error=str(self._ws.exception() or msg.data))
            # PING/PONG are answered by aiohttp itself.

    async def send(self, data: str) -> None:
        await self._ws.send_str(data)

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpWebSocketTransport(WebSocketTransport):
    def __init__(self, session: Optional[aiohttp.ClientSession] = None, ssl_verify: bool = True):
        self._session = session
        self._owns_session = session is None
        self._ssl_verify = ssl_verify
        self.logger = logger.bind(transport="websocket")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=None if self._ssl_verify else False)
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    async def connect(self, url: str, *, headers: Dict[str, str], subprotocols: List[str], timeout_seconds: float) -> WebSocketChannel:
        session = await self._get_session()
        self.logger.debug("Opening WebSocket connection", url=url, subprotocols=subprotocols)
        try:
            ws = await asyncio.wait_for(
                session.ws_connect(url, headers=headers, protocols=tuple(subprotocols)),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExplorerConnectionError("Connection timeout", context={"url": url, "timeout_seconds": timeout_seconds}) from e
        except aiohttp.WSServerHandshakeError as e:
            if e.status in (401, 403):
                raise AuthenticationError(f"WebSocket handshake rejected: HTTP {e.status}", context={"url": url, "http_status": e.status}) from e
            raise ExplorerConnectionError(f"WebSocket handshake failed: HTTP {e.status} {e.message}", context={"url": url, "http_status": e.status}) from e
        except aiohttp.ClientError as e:
            raise ExplorerConnectionError(f"WebSocket error: {e}", context={"url": url}) from e
        return AiohttpWebSocketChannel(ws)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
