# crawler.py

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Tuple
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .errors import ConfigError, FetchFailed, UnsupportedFormat
from .extractor import looks_like_pdf
from .fetcher import FetchResponse
from .models import ContentKind, Document
from .scope import Scope, canonicalize, sanitize_url

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(self, url: str, referer: Optional[str] = None) -> FetchResponse:
        ...


@dataclass
class CrawlFailure:
    url: str
    reason: str
    depth: int


@dataclass
class CrawlResult:
    documents: List[Document] = field(default_factory=list)
    failures: List[CrawlFailure] = field(default_factory=list)
    elapsed: float = 0.0


def extract_links(html: str, base_url: str) -> List[str]:
    """
    Absolute http(s) links of a page in document order, fragments
    stripped, duplicates removed.
    """
    soup = BeautifulSoup(html, "html.parser")
    base_tag = soup.find("base", href=True)
    if base_tag:
        base_url = urljoin(base_url, base_tag["href"])

    links = []
    seen = set()
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not href or href.startswith("#"):
            continue
        try:
            absolute_url = canonicalize(urljoin(base_url, href))
        except ValueError:
            continue
        if not absolute_url.startswith(("http://", "https://")):
            continue
        if absolute_url not in seen:
            seen.add(absolute_url)
            links.append(absolute_url)
    return links


async def _fetch_one(fetcher: Fetcher, url: str, referer: Optional[str]):
    try:
        return await fetcher.fetch(url, referer=referer)
    except (FetchFailed, UnsupportedFormat) as e:
        return e


async def crawl(
    start: str,
    scope: Scope,
    max_depth: int,
    max_pages: int,
    fetcher: Fetcher,
    concurrency: int = 8,
    skip_pdfs: bool = False,
) -> CrawlResult:
    """
    Breadth-first crawl from `start`, following in-scope links up to
    `max_depth` hops and stopping after `max_pages` documents.

    Up to `concurrency` queued locations are fetched at once, but results
    are consumed in queue order, so the output is the same as a sequential
    BFS. Only this coroutine touches the queue, the visited set and the
    output list.
    """
    if max_depth < 0:
        raise ConfigError("max_depth must be >= 0")
    if max_pages < 1:
        raise ConfigError("max_pages must be >= 1")
    if concurrency < 1:
        raise ConfigError("concurrency must be >= 1")

    start_url = sanitize_url(start)
    result = CrawlResult()
    started = time.time()

    # the start location is always attempted, in scope or not
    # (url, depth, linking page)
    queue: deque[Tuple[str, int, Optional[str]]] = deque([(start_url, 0, None)])
    visited = {start_url}

    while queue and len(result.documents) < max_pages:
        budget = min(concurrency, max_pages - len(result.documents))
        batch = [queue.popleft() for _ in range(min(budget, len(queue)))]
        for url, depth, _ in batch:
            logger.info("Crawling: %s at depth %d", url, depth)

        responses = await asyncio.gather(*(_fetch_one(fetcher, url, referer) for url, _, referer in batch))

        for (url, depth, _), response in zip(batch, responses):
            if isinstance(response, Exception):
                logger.warning("Skipping %s: %s", url, response)
                result.failures.append(CrawlFailure(url, str(response), depth))
                continue

            result.documents.append(
                Document(
                    source_id=url,
                    content=response.content,
                    kind=response.kind,
                    depth=depth,
                    order=len(result.documents),
                )
            )
            if response.kind is not ContentKind.HTML or depth >= max_depth:
                continue
            for link in extract_links(response.content, url):
                if link in visited or not scope.contains(link):
                    continue
                if skip_pdfs and looks_like_pdf(link):
                    continue
                visited.add(link)
                queue.append((link, depth + 1, url))

    result.elapsed = time.time() - started
    logger.info(
        "Crawl finished in %.2f seconds: %d pages, %d failures.",
        result.elapsed,
        len(result.documents),
        len(result.failures),
    )
    return result
