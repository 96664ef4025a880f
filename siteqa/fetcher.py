# fetcher.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union
from urllib.parse import urljoin, urlsplit
from urllib.robotparser import RobotFileParser

import aiohttp
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from . import config
from .errors import FetchFailed
from .extractor import content_kind_for
from .models import ContentKind

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,application/pdf;q=0.8,*/*;q=0.7"


class RetryableFetchError(Exception):
    pass


@dataclass
class FetchResponse:
    url: str
    content: Union[str, bytes]
    kind: ContentKind


class HttpFetcher:
    """
    aiohttp fetcher used by the crawler: retries, robots.txt, size cap.

    Use as an async context manager so the session is closed.
    """

    def __init__(
        self,
        timeout: int = config.REQUEST_TIMEOUT,
        max_bytes: int = config.MAX_DOCUMENT_BYTES,
        user_agent: str = config.USER_AGENT,
        respect_robots: bool = True,
        delay: float = config.CRAWL_DELAY_MS / 1000,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.user_agent = user_agent
        self.respect_robots = respect_robots
        # politeness pause before every page request
        self.delay = delay
        self.session: Optional[aiohttp.ClientSession] = None
        self.robots_parsers: Dict[str, RobotFileParser] = {}
        self._robots_locks: Dict[str, asyncio.Lock] = {}

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={
                "User-Agent": self.user_agent,
                "Accept": ACCEPT,
                "Accept-Language": "en-US,en;q=0.9,de;q=0.7",
            },
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def get_robots_parser(self, url: str) -> RobotFileParser:
        """
        Fetches and caches the RobotFileParser for the URL's origin. Concurrent
        callers for one origin share a single robots.txt request.
        """
        parts = urlsplit(url)
        origin = f"{parts.scheme}://{parts.netloc}"
        if origin in self.robots_parsers:
            return self.robots_parsers[origin]
        lock = self._robots_locks.setdefault(origin, asyncio.Lock())
        async with lock:
            if origin not in self.robots_parsers:
                self.robots_parsers[origin] = await self._load_robots(origin)
        return self.robots_parsers[origin]

    async def _load_robots(self, origin: str) -> RobotFileParser:
        robots_url = urljoin(origin, "/robots.txt")
        parser = RobotFileParser()
        parser.set_url(robots_url)
        try:
            async with self.session.get(robots_url, timeout=aiohttp.ClientTimeout(total=5)) as response:
                if response.status == 200:
                    parser.parse((await response.text()).splitlines())
                else:
                    parser.allow_all = True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.info("Could not fetch robots.txt for %s: %s", origin, e)
            parser.allow_all = True
        return parser

    async def can_fetch(self, url: str) -> bool:
        if not self.respect_robots:
            return True
        parser = await self.get_robots_parser(url)
        return parser.can_fetch(self.user_agent, url)

    @retry(
        retry=retry_if_exception_type(RetryableFetchError),
        stop=stop_after_attempt(3),
        wait=wait_incrementing(start=0.2, increment=0.2),
        reraise=True,
    )
    async def _get(self, url: str, referer: Optional[str] = None):
        headers = {"Referer": referer} if referer else None
        try:
            async with self.session.get(url, headers=headers) as response:
                if response.status in RETRYABLE_STATUS:
                    raise RetryableFetchError(f"HTTP {response.status}")
                if response.status >= 400:
                    raise FetchFailed(url, f"HTTP {response.status}")
                length = response.headers.get("Content-Length")
                if length and length.isdigit() and int(length) > self.max_bytes:
                    raise FetchFailed(url, f"too large ({length} bytes)")
                data = await response.read()
                return data, response.headers.get("Content-Type"), response.charset
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise RetryableFetchError(str(e) or type(e).__name__) from e
        except aiohttp.ClientError as e:
            raise FetchFailed(url, str(e)) from e

    async def fetch(self, url: str, referer: Optional[str] = None) -> FetchResponse:
        if self.session is None:
            await self.__aenter__()
        if not await self.can_fetch(url):
            raise FetchFailed(url, "disallowed by robots.txt")
        if self.delay > 0:
            await asyncio.sleep(self.delay)

        try:
            data, content_type, charset = await self._get(url, referer)
        except RetryableFetchError as e:
            raise FetchFailed(url, f"gave up after retries: {e}") from e
        if len(data) > self.max_bytes:
            raise FetchFailed(url, f"too large ({len(data)} bytes)")

        kind = content_kind_for(url, content_type)
        if kind is ContentKind.PDF:
            return FetchResponse(url=url, content=data, kind=kind)
        try:
            text = data.decode(charset or "utf-8", errors="replace")
        except LookupError:
            text = data.decode("utf-8", errors="replace")
        return FetchResponse(url=url, content=text, kind=kind)
