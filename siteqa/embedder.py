# embedder.py

import asyncio
import logging
import threading
from dataclasses import replace
from typing import List, Optional, Protocol, Sequence, Tuple

import aiohttp
import numpy as np
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import config
from .errors import (
    ConfigError,
    EmbeddingFailed,
    PermanentEmbeddingError,
    TransientEmbeddingError,
)
from .models import Chunk

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    name: str

    async def embed(self, text: str) -> np.ndarray:
        ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str = config.EMBED_MODEL, device: Optional[str] = None):
        self.name = model_name
        self.device = device
        self._model = None
        self._lock = threading.Lock()

    @property
    def model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model %s", self.name)
                self._model = SentenceTransformer(self.name, device=self.device)
            return self._model

    def encode(self, texts: List[str]) -> np.ndarray:
        return self.model.encode(
            texts, normalize_embeddings=True, convert_to_numpy=True, show_progress_bar=False
        )

    async def embed(self, text: str) -> np.ndarray:
        loop = asyncio.get_running_loop()
        try:
            vectors = await loop.run_in_executor(None, self.encode, [text])
        except Exception as e:
            # model load and encode errors are not retried
            raise PermanentEmbeddingError(f"{self.name}: {type(e).__name__}: {e}") from e
        return vectors[0]


class OllamaEmbedder:
    """Embeddings from an Ollama server (`POST /api/embeddings`)."""

    def __init__(
        self,
        model_name: str = "nomic-embed-text",
        host: str = config.OLLAMA_HOST,
        timeout: int = config.REQUEST_TIMEOUT,
        num_ctx: int = 2048,
    ):
        self.name = model_name
        self.host = host.rstrip("/")
        self.timeout = timeout
        self.num_ctx = num_ctx
        self.session: Optional[aiohttp.ClientSession] = None

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def embed(self, text: str) -> np.ndarray:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        payload = {
            "model": self.name,
            "prompt": text,
            "options": {"num_ctx": self.num_ctx, "truncate": True},
        }
        try:
            async with self.session.post(f"{self.host}/api/embeddings", json=payload) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientEmbeddingError(f"Ollama returned HTTP {resp.status}")
                if resp.status >= 400:
                    body = await resp.text()
                    raise PermanentEmbeddingError(f"Ollama returned HTTP {resp.status}: {body[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise TransientEmbeddingError(str(e) or type(e).__name__) from e
        except aiohttp.ClientError as e:
            raise PermanentEmbeddingError(str(e)) from e
        except ValueError as e:
            raise PermanentEmbeddingError(f"Ollama returned invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise PermanentEmbeddingError(f"Ollama returned {type(data).__name__}, expected an object")
        embedding = data.get("embedding") or []
        if not embedding:
            raise PermanentEmbeddingError("Ollama returned an empty embedding")
        try:
            return np.asarray(embedding, dtype=np.float32).ravel()
        except (TypeError, ValueError) as e:
            raise PermanentEmbeddingError(f"Ollama returned a malformed embedding: {e}") from e


def make_embedder(backend: str = config.EMBED_BACKEND, model_name: Optional[str] = None):
    backend = backend.lower()
    if backend in ("sentence-transformers", "st", "local"):
        return SentenceTransformerEmbedder(model_name or config.EMBED_MODEL)
    if backend == "ollama":
        return OllamaEmbedder(model_name or "nomic-embed-text")
    raise ConfigError(f"Unknown embedding backend {backend!r}")


async def embed_with_retry(
    embedder: Embedder,
    text: str,
    attempts: int = config.EMBED_RETRIES,
    wait=None,
) -> np.ndarray:
    """Retries transient failures; permanent ones are raised at once."""
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(TransientEmbeddingError),
        stop=stop_after_attempt(attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            vector = await embedder.embed(text)
    vector = np.asarray(vector, dtype=np.float32).ravel()
    if vector.size == 0:
        raise PermanentEmbeddingError("empty embedding")
    return vector


async def embed_chunks(
    chunks: Sequence[Chunk],
    embedder: Embedder,
    concurrency: int = config.EMBED_CONCURRENCY,
    attempts: int = config.EMBED_RETRIES,
    wait=None,
) -> Tuple[List[Chunk], int]:
    """
    Embeds chunks with at most `concurrency` calls in flight.

    Returns the embedded chunks in their original order and the number of
    chunks dropped because embedding failed.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def embed_one(chunk: Chunk) -> Optional[Chunk]:
        async with semaphore:
            try:
                vector = await embed_with_retry(embedder, chunk.text, attempts, wait)
            except EmbeddingFailed as e:
                logger.warning("Dropping chunk %s: %s", chunk.chunk_id, e)
                return None
        return replace(chunk, embedding=vector)

    results = await asyncio.gather(*(embed_one(c) for c in chunks))
    embedded = [c for c in results if c is not None]
    return embedded, len(results) - len(embedded)
