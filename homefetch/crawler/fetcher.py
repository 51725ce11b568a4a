"""
Homepage fetcher: one GET per domain, no keep-alive, no retries.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import aiohttp
from aiohttp import ClientError, ClientSession, ClientTimeout


class FetchError(Exception):
    """Raised when a page could not be fetched. The message is what gets recorded."""
    pass


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int = 0
    content: Optional[bytes] = None
    error: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None


def homepage_url(domain: str) -> str:
    """Root page URL for a domain."""
    return f"http://{domain}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "Request timeout"
    return str(exc) or exc.__class__.__name__


async def fetch_response(session: ClientSession, user_agent: str, url: str,
                         fail_on_http_error: bool = False,
                         max_body_bytes: Optional[int] = None) -> Tuple[int, bytes]:
    """
    Issue a single GET and return the status code and raw body.

    Any response whose body can be read counts as success, whatever its
    status code, unless ``fail_on_http_error`` is set.

    Args:
        session: Session to send the request with
        user_agent: Value of the User-Agent header
        url: URL to fetch
        fail_on_http_error: Treat non-2xx responses as failures
        max_body_bytes: Fail bodies larger than this many bytes

    Returns:
        Tuple of (status code, response body)

    Raises:
        FetchError: On transport errors, timeouts or an unreadable body
    """
    headers = {'User-Agent': user_agent, 'Connection': 'close'}

    try:
        async with session.get(url, headers=headers) as response:
            if fail_on_http_error and not 200 <= response.status < 300:
                raise FetchError(f"HTTP status {response.status}")

            if max_body_bytes is None:
                return response.status, await response.read()

            body = bytearray()
            async for chunk in response.content.iter_chunked(8192):
                body += chunk
                if len(body) > max_body_bytes:
                    raise FetchError(f"Content exceeded size limit of {max_body_bytes} bytes")
            return response.status, bytes(body)

    except FetchError:
        raise
    except (asyncio.TimeoutError, ClientError, OSError, ValueError) as e:
        raise FetchError(_describe(e)) from e


async def fetch(session: ClientSession, user_agent: str, url: str, **kwargs) -> bytes:
    """Issue a single GET and return only the body. See ``fetch_response``."""
    _, body = await fetch_response(session, user_agent, url, **kwargs)
    return body


class HomepageFetcher:
    """
    Fetches domain homepages over a session private to one worker.

    The session is created lazily and closed by ``reset`` after every job,
    so no connection outlives the request it was opened for.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 connect_timeout: float = 30, fail_on_http_error: bool = False,
                 max_body_bytes: Optional[int] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.connect_timeout = connect_timeout
        self.fail_on_http_error = fail_on_http_error
        self.max_body_bytes = max_body_bytes

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open the session if it is not open already."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout, sock_connect=self.connect_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                connector=aiohttp.TCPConnector(limit=1, force_close=True)
            )

    async def reset(self):
        """Drop the session and any connection it still holds."""
        await self.close()

    async def close(self):
        """Close the session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult with either the body or the error text
        """
        start_time = time.monotonic()
        await self.start()
        self.stats['total_requests'] += 1

        try:
            status_code, content = await fetch_response(
                self.session, self.user_agent, url,
                fail_on_http_error=self.fail_on_http_error,
                max_body_bytes=self.max_body_bytes
            )
        except FetchError as e:
            self.stats['failed_requests'] += 1
            self.logger.debug(f"Failed to fetch {url}: {e}")
            return FetchResult(url=url, error=str(e), fetch_time=time.monotonic() - start_time)

        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(content)
        self.logger.debug(f"Fetched {url}: {status_code} ({len(content)} bytes)")
        return FetchResult(url=url, status_code=status_code, content=content,
                           fetch_time=time.monotonic() - start_time)

    async def fetch_domain(self, domain: str) -> FetchResult:
        """Fetch the root page of a domain."""
        return await self.fetch(homepage_url(domain))

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
