"""
Shared fakes: an in-memory fetcher, a deterministic embedder and a PDF
extractor, so crawl/index/rank can be tested without network or models.
"""

import asyncio
import zlib

import numpy as np
import pytest

from siteqa.errors import (
    ExtractionFailed,
    FetchFailed,
    PermanentEmbeddingError,
    TransientEmbeddingError,
)
from siteqa.fetcher import FetchResponse
from siteqa.models import ContentKind
from siteqa.text import words

DIM = 64


def page(title, body, links=()):
    anchors = "".join(f'<a href="{href}">{href}</a> ' for href in links)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><main><h1>{title}</h1><p>{body}</p><p>{anchors}</p></main></body></html>"
    )


class FakeFetcher:
    """
    Serves canned responses keyed by URL. Values are HTML strings, or
    (content, kind) tuples, or exceptions to raise.
    """

    def __init__(self, pages, delay=0.0):
        self.pages = dict(pages)
        self.delay = delay
        self.calls = []
        self.referers = {}
        self.in_flight = 0
        self.max_in_flight = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def fetch(self, url, referer=None):
        self.calls.append(url)
        self.referers[url] = referer
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if url not in self.pages:
                raise FetchFailed(url, "HTTP 404")
            value = self.pages[url]
            if isinstance(value, Exception):
                raise value
            if isinstance(value, tuple):
                content, kind = value
            else:
                content, kind = value, ContentKind.HTML
            return FetchResponse(url=url, content=content, kind=kind)
        finally:
            self.in_flight -= 1


def bag_of_words_vector(text, dim=DIM):
    vector = np.zeros(dim, dtype=np.float32)
    for word in words(text):
        vector[zlib.crc32(word.encode()) % dim] += 1.0
    if not vector.any():
        vector[0] = 1.0
    return vector


class FakeEmbedder:
    """
    Hashed bag-of-words embeddings. `overrides` pins the vector for an exact
    text; `fail` maps a substring to the number of transient failures (or
    "permanent") to inject before succeeding.
    """

    name = "fake"

    def __init__(self, overrides=None, fail=None, dim=DIM):
        self.overrides = dict(overrides or {})
        self.fail = dict(fail or {})
        self.dim = dim
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        for marker, remaining in self.fail.items():
            if marker in text:
                if remaining == "permanent":
                    raise PermanentEmbeddingError("bad input")
                if remaining > 0:
                    self.fail[marker] = remaining - 1
                    raise TransientEmbeddingError("server busy")
        if text in self.overrides:
            return np.asarray(self.overrides[text], dtype=np.float32)
        return bag_of_words_vector(text, self.dim)


class FakePdfExtractor:
    def __init__(self, texts=None):
        self.texts = dict(texts or {})
        self.calls = []

    def extract_text(self, data, max_pages):
        self.calls.append((data, max_pages))
        if data not in self.texts:
            raise ExtractionFailed("corrupt PDF")
        return self.texts[data]


def no_wait(retry_state):
    return 0


@pytest.fixture
def embedder():
    return FakeEmbedder()
