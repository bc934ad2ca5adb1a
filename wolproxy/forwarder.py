"""Relays HTTP requests to the primary destination and streams responses back."""

import asyncio
import logging
from typing import Optional

import aiohttp
from aiohttp import web
from multidict import CIMultiDict
from yarl import URL


logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 30.0
CHUNK_SIZE = 64 * 1024

# Headers that apply to a single connection and must not be relayed
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "proxy-connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Only headers sent by the client go upstream
SKIP_AUTO_HEADERS = ("Accept", "Accept-Encoding", "User-Agent", "Content-Type")


class GatewayError(Exception):
    """Raised when the destination cannot be reached while forwarding."""


def join_url_path(base: str, path: str) -> str:
    """Join two URL paths with exactly one slash between them."""
    base_slash = base.endswith("/")
    path_slash = path.startswith("/")
    if base_slash and path_slash:
        return base + path[1:]
    if not base_slash and not path_slash:
        return base + "/" + path
    return base + path


def strip_hop_by_hop(headers) -> CIMultiDict:
    """Copy ``headers`` without hop-by-hop headers or those named in Connection."""
    connection_tokens = set()
    for value in headers.getall("Connection", []):
        connection_tokens.update(t.strip().lower() for t in value.split(",") if t.strip())

    result = CIMultiDict()
    for name, value in headers.items():
        lowered = name.lower()
        if lowered in HOP_BY_HOP_HEADERS or lowered in connection_tokens:
            continue
        result.add(name, value)
    return result


class Forwarder:
    """Forwards requests to a single destination through an aiohttp client session."""

    def __init__(self, destination: str, session: Optional[aiohttp.ClientSession] = None,
                 connect_timeout: float = CONNECT_TIMEOUT_SECONDS, chunk_size: int = CHUNK_SIZE):
        self.destination = URL(destination)
        self.chunk_size = chunk_size
        self.timeout = aiohttp.ClientTimeout(total=None, sock_connect=connect_timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                auto_decompress=False,
                cookie_jar=aiohttp.DummyCookieJar(),
                # Unbounded pool: a long-lived stream must never hold up another request
                connector=aiohttp.TCPConnector(limit=0, limit_per_host=0)
            )
            self._owns_session = True
        return self._session

    def build_target_url(self, request: web.Request) -> URL:
        """Rewrite the request target onto the destination base URL."""
        rel_url = request.rel_url
        path = join_url_path(self.destination.raw_path, rel_url.raw_path)

        base_query = self.destination.raw_query_string
        request_query = rel_url.raw_query_string
        if base_query and request_query:
            query = f"{base_query}&{request_query}"
        else:
            query = base_query or request_query

        origin = str(self.destination.origin())
        target = origin + path
        if query:
            target += "?" + query
        return URL(target, encoded=True)

    def _upstream_headers(self, request: web.Request) -> CIMultiDict:
        headers = strip_hop_by_hop(request.headers)

        if request.remote:
            prior = ", ".join(headers.getall("X-Forwarded-For", []))
            headers.popall("X-Forwarded-For", None)
            headers["X-Forwarded-For"] = f"{prior}, {request.remote}" if prior else request.remote

        return headers

    async def forward(self, request: web.Request) -> web.StreamResponse:
        """
        Relay ``request`` to the destination and stream the response back.

        Raises:
            GatewayError: the destination could not be reached or failed
                before its response headers arrived
        """
        target = self.build_target_url(request)
        session = self._get_session()
        data = request.content if request.body_exists else None

        try:
            upstream = await session.request(
                request.method,
                target,
                headers=self._upstream_headers(request),
                data=data,
                allow_redirects=False,
                skip_auto_headers=SKIP_AUTO_HEADERS
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise GatewayError(f"Forwarding {request.method} {target} failed: {e!r}") from e

        async with upstream:
            response = web.StreamResponse(
                status=upstream.status,
                reason=upstream.reason,
                headers=strip_hop_by_hop(upstream.headers)
            )
            await response.prepare(request)

            try:
                async for chunk in upstream.content.iter_chunked(self.chunk_size):
                    await response.write(chunk)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                # Status line is already sent, all we can do is drop the connection
                logger.error(f"Forwarding response body from {target} failed: {e!r}")
                response.force_close()
                return response

            await response.write_eof()

        logger.debug(f"Forwarded {request.method} {target} -> {upstream.status}")
        return response

    async def close(self) -> None:
        """Close the underlying HTTP session if this forwarder created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
