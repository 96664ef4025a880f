# indexer.py

import asyncio
import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import faiss
import numpy as np

from .errors import IndexNotFound
from .models import Chunk

logger = logging.getLogger(__name__)


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """L2-normalizes each row; all-zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


@dataclass(frozen=True, eq=False)
class Index:
    """
    Immutable snapshot of one scope's chunks and their aggregate statistics.
    Never mutated after build; a rebuild produces a new Index.
    """

    scope: str
    chunks: Tuple[Chunk, ...]
    doc_freq: Dict[str, int] = field(repr=False)
    # term -> ids of chunks containing it, ascending
    postings: Dict[str, Tuple[int, ...]] = field(repr=False)
    avg_length: float = 0.0
    vectors: Optional[np.ndarray] = field(default=None, repr=False)
    vector_index: Optional[faiss.Index] = field(default=None, repr=False)
    created_at: str = ""

    def __len__(self):
        return len(self.chunks)

    @property
    def dimension(self) -> int:
        return 0 if self.vectors is None else self.vectors.shape[1]

    @property
    def pages_indexed(self) -> int:
        return len({c.source_id for c in self.chunks})

    def semantic_candidates(self, query_vector: np.ndarray, k: int) -> List[int]:
        """Ids of the k chunks with the highest cosine similarity."""
        if self.vector_index is None or not self.chunks:
            return []
        k = min(k, len(self.chunks))
        query = np.ascontiguousarray(query_vector, dtype=np.float32).reshape(1, -1)
        _, ids = self.vector_index.search(query, k)
        return [int(i) for i in ids[0] if i != -1]

    def lexical_candidates(self, terms) -> List[int]:
        ids = set()
        for term in terms:
            ids.update(self.postings.get(term, ()))
        return sorted(ids)


def build_index(scope: str, chunks: Sequence[Chunk], created_at: Optional[str] = None) -> Index:
    """
    Builds an Index from embedded chunks, recomputing every aggregate.

    Chunks without an embedding, or whose dimensionality differs from the
    first embedded chunk, are left out.
    """
    dimension = None
    kept: List[Chunk] = []
    for chunk in chunks:
        if chunk.embedding is None:
            logger.warning("Chunk %s has no embedding, skipping", chunk.chunk_id)
            continue
        size = int(np.asarray(chunk.embedding).size)
        if dimension is None and size > 0:
            dimension = size
        if size != dimension:
            logger.warning(
                "Chunk %s has dimension %d, expected %s, skipping",
                chunk.chunk_id, size, dimension,
            )
            continue
        kept.append(chunk)

    doc_freq = Counter()
    postings = defaultdict(list)
    total_length = 0
    for i, chunk in enumerate(kept):
        total_length += chunk.length
        for term in chunk.term_freqs:
            doc_freq[term] += 1
            postings[term].append(i)

    vectors = None
    vector_index = None
    if kept:
        vectors = normalize_rows(
            np.vstack([np.asarray(c.embedding, dtype=np.float32).ravel() for c in kept])
        )
        # inner product on normalized vectors is cosine similarity
        vector_index = faiss.IndexFlatIP(vectors.shape[1])
        vector_index.add(vectors)

    index = Index(
        scope=scope,
        chunks=tuple(kept),
        doc_freq=dict(doc_freq),
        postings={term: tuple(ids) for term, ids in postings.items()},
        avg_length=total_length / len(kept) if kept else 0.0,
        vectors=vectors,
        vector_index=vector_index,
        created_at=created_at or datetime.now(timezone.utc).isoformat(),
    )
    logger.info(
        "Built index for %s: %d chunks from %d pages, %d terms",
        scope, len(index), index.pages_indexed, len(index.doc_freq),
    )
    return index


class IndexStore:
    """
    Registry of one Index per scope.

    Installing an index is a single dictionary assignment under a lock;
    readers get whichever complete snapshot is installed at that moment.
    Whole rebuilds of a scope (crawl, embed, install) are serialized with
    `rebuild_lock(scope)`.
    """

    def __init__(self):
        self._indexes: Dict[str, Index] = {}
        self._lock = threading.Lock()
        self._rebuild_locks: Dict[str, asyncio.Lock] = {}

    def rebuild_lock(self, scope: str) -> asyncio.Lock:
        with self._lock:
            lock = self._rebuild_locks.get(scope)
            if lock is None:
                lock = self._rebuild_locks[scope] = asyncio.Lock()
            return lock

    def install(self, index: Index) -> Index:
        with self._lock:
            previous = self._indexes.get(index.scope)
            self._indexes[index.scope] = index
        if previous is not None:
            logger.info(
                "Replaced index for %s (%d -> %d chunks)",
                index.scope, len(previous), len(index),
            )
        return index

    def build(self, scope: str, chunks: Sequence[Chunk]) -> Index:
        """Builds a fresh Index and atomically replaces the scope's entry."""
        return self.install(build_index(scope, chunks))

    def get(self, scope: str) -> Index:
        index = self._indexes.get(scope)
        if index is None:
            raise IndexNotFound(scope)
        return index

    def __contains__(self, scope: str) -> bool:
        return scope in self._indexes

    def scopes(self) -> List[str]:
        with self._lock:
            return sorted(self._indexes)

    def drop(self, scope: str) -> None:
        with self._lock:
            self._indexes.pop(scope, None)
