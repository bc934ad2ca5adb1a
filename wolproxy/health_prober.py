"""HTTP health checking for backends and the primary destination."""

import asyncio
import logging
from typing import Optional

import aiohttp


logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SECONDS = 3.0


class HealthProber:
    """Answers a single question about a URL: is it up right now?"""

    def __init__(self, timeout: float = PROBE_TIMEOUT_SECONDS,
                 session: Optional[aiohttp.ClientSession] = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                connector=aiohttp.TCPConnector(limit=0, limit_per_host=0)
            )
            self._owns_session = True
        return self._session

    async def probe(self, url: str) -> bool:
        """
        Check whether ``url`` answers a GET with a 2xx status.

        Args:
            url: Health check URL

        Returns:
            True for a 2xx response, False for any other status or any
            transport failure (timeout, DNS, refused connection, TLS)
        """
        session = self._get_session()
        try:
            async with session.get(url, timeout=self.timeout) as response:
                healthy = 200 <= response.status < 300
                if not healthy:
                    logger.debug(f"Health check {url} returned status {response.status}")
                return healthy
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.debug(f"Health check {url} failed: {e!r}")
            return False

    async def close(self) -> None:
        """Close the underlying HTTP session if this prober created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
