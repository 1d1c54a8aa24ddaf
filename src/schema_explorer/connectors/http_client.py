"""
HTTP fetch collaborator used by the REST and GraphQL connectors.
"""
import asyncio
from typing import Any, Dict, Optional

import aiohttp
from pydantic import Field
import structlog

from ..config import HTTPClientConfig
from ..exceptions import ExplorerConnectionError
from ..models.common import BasePydanticModel

logger = structlog.get_logger(__name__)


class HTTPResponse(BasePydanticModel):
    status: int
    reason: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    text: str = ""
    url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


class HTTPClient:
    """
    Thin wrapper over aiohttp.ClientSession. Every transport failure surfaces as a
    single ExplorerConnectionError; status codes are returned to the caller as-is.
    A session passed in is shared and left open on close().
    """

    def __init__(self, config: Optional[HTTPClientConfig] = None, session: Optional[aiohttp.ClientSession] = None):
        self.config = config or HTTPClientConfig()
        self._session = session
        self._owns_session = session is None
        self.logger = logger.bind(transport="http")

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self.logger.debug("Creating aiohttp session.")
            ssl_context = None
            if not self.config.ssl_verify:
                self.logger.warning("SSL verification is DISABLED for HTTP client.")
                ssl_context = False
            connector = aiohttp.TCPConnector(
                limit=self.config.connection_pool_total_limit,
                limit_per_host=self.config.connection_pool_per_host_limit,
                ttl_dns_cache=self.config.connection_pool_dns_cache_ttl_seconds,
                ssl=ssl_context
            )
            self._session = aiohttp.ClientSession(connector=connector)
            self._owns_session = True
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        timeout_seconds: Optional[float] = None,
        follow_redirects: bool = True,
    ) -> HTTPResponse:
        session = await self._get_session()
        total = timeout_seconds or self.config.request_timeout_seconds
        timeout = aiohttp.ClientTimeout(total=total, connect=min(total, self.config.connect_timeout_seconds))

        self.logger.debug("Sending HTTP request", method=method, url=url)
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=timeout,
                allow_redirects=follow_redirects,
                max_redirects=self.config.max_redirects,
            ) as response:
                body = b"" if method.upper() == "HEAD" else await response.read()
                text = body.decode(response.charset or "utf-8", errors="replace")
                self.logger.debug("Received HTTP response", status=response.status, content_length=len(text))
                return HTTPResponse(
                    status=response.status,
                    reason=response.reason or "",
                    headers={key.lower(): value for key, value in response.headers.items()},
                    text=text,
                    url=str(response.url),
                )
        except aiohttp.ClientConnectorError as e:
            self.logger.warning("Client connector error", url=url, error_str=str(e))
            raise ExplorerConnectionError(f"Connection failed to {url}: {e.os_error or str(e)}", context={"url": url}) from e
        except asyncio.TimeoutError as e:
            self.logger.warning("Request timed out", url=url, timeout_total=total)
            raise ExplorerConnectionError(f"Request to {url} timed out after {total}s.", context={"url": url}) from e
        except aiohttp.ClientError as e:
            self.logger.warning("AIOHTTP client error", url=url, error_type=type(e).__name__, error_message=str(e))
            raise ExplorerConnectionError(f"HTTP client error for {url}: {e}", context={"url": url}) from e

    async def get(self, url: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> HTTPResponse:
        return await self.request("HEAD", url, **kwargs)

    async def post_json(self, url: str, payload: Any, **kwargs: Any) -> HTTPResponse:
        return await self.request("POST", url, json_body=payload, **kwargs)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self.logger.debug("aiohttp session closed.")
        self._session = None
