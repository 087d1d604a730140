"""Shared aiohttp client used by every feed source."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import aiohttp

from feed_processor.collector.rate_limiter import RateLimiter, parse_retry_after
from feed_processor.config import HttpConfig
from feed_processor.exceptions import ProtocolError, TransportError

logger = logging.getLogger(__name__)

RETRY_AFTER_STATUSES = (429, 503)


@dataclass
class RequestSpec:
    """A provider request built by an adapter."""

    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    method: str = "GET"
    data: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    auth: Optional[Tuple[str, str]] = None
    provider: str = "unknown"

    def query_params(self) -> Dict[str, str]:
        return {key: str(value) for key, value in self.params.items() if value is not None}


class FeedHttpClient:
    """Wrapper around an aiohttp session with feed error classification."""

    def __init__(self, config: HttpConfig, prometheus_exporter=None):
        """
        Initialize the HTTP client.

        Args:
            config: HTTP timeouts and user agent
            prometheus_exporter: Optional Prometheus exporter for request timings
        """
        self.config = config
        self.prometheus_exporter = prometheus_exporter
        self._session: Optional[aiohttp.ClientSession] = None

    async def initialize(self) -> aiohttp.ClientSession:
        """Create the underlying session if needed."""
        if self._session is None or self._session.closed:
            logger.info("Initializing HTTP session")
            timeout = aiohttp.ClientTimeout(
                total=self.config.request_timeout_sec,
                connect=self.config.connect_timeout_sec,
            )
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.config.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the session and release resources."""
        if self._session is not None and not self._session.closed:
            logger.info("Closing HTTP session")
            await self._session.close()
        self._session = None

    async def fetch(self, spec: RequestSpec, rate_limiter: Optional[RateLimiter] = None) -> str:
        """
        Issue a request and return the response body.

        Args:
            spec: Request to issue
            rate_limiter: Optional limiter shared by the provider's sources

        Returns:
            Decoded response body

        Raises:
            ProtocolError: The provider answered with a non-2xx status
            TransportError: No response was received
        """
        session = await self.initialize()
        if rate_limiter:
            await rate_limiter.pre_request()

        start = time.monotonic()
        try:
            async with session.request(
                spec.method,
                spec.url,
                params=spec.query_params(),
                data=spec.data,
                headers=spec.headers or None,
                auth=aiohttp.BasicAuth(*spec.auth) if spec.auth else None,
            ) as response:
                if rate_limiter:
                    rate_limiter.update_from_headers(response.headers)
                body = await response.text()
                self._raise_for_status(spec, response, rate_limiter)
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{spec.provider}: request to {spec.url} failed: {e!r}") from e
        finally:
            if self.prometheus_exporter:
                self.prometheus_exporter.observe_request_duration(spec.provider, time.monotonic() - start)

    async def stream_lines(
        self, spec: RequestSpec, rate_limiter: Optional[RateLimiter] = None
    ) -> AsyncIterator[str]:
        """
        Open a persistent connection and yield non-empty lines as they arrive.

        Args:
            spec: Request that opens the stream
            rate_limiter: Optional limiter shared by the provider's sources

        Yields:
            One decoded line per message

        Raises:
            ProtocolError: The provider refused the connection
            TransportError: The connection failed or went idle
        """
        session = await self.initialize()
        if rate_limiter:
            await rate_limiter.pre_request()

        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=self.config.connect_timeout_sec,
            sock_read=self.config.stream_read_timeout_sec,
        )
        try:
            async with session.request(
                spec.method,
                spec.url,
                params=spec.query_params(),
                data=spec.data,
                headers=spec.headers or None,
                auth=aiohttp.BasicAuth(*spec.auth) if spec.auth else None,
                timeout=timeout,
            ) as response:
                if response.status >= 300:
                    await response.read()
                self._raise_for_status(spec, response, rate_limiter)
                logger.info(f"{spec.provider}: stream connected to {spec.url}")

                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if line:
                        yield line
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"{spec.provider}: stream from {spec.url} failed: {e!r}") from e

        raise TransportError(f"{spec.provider}: stream from {spec.url} closed by remote end")

    @staticmethod
    def _raise_for_status(
        spec: RequestSpec,
        response: aiohttp.ClientResponse,
        rate_limiter: Optional[RateLimiter],
    ) -> None:
        if 200 <= response.status < 300:
            return

        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        if rate_limiter and retry_after and response.status in RETRY_AFTER_STATUSES:
            rate_limiter.block_for(retry_after)

        raise ProtocolError(
            f"{spec.provider}: HTTP {response.status} from {spec.url}",
            status=response.status,
            retry_after=retry_after,
            headers=response.headers,
        )
