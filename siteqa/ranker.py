# ranker.py

import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

from . import config
from .config import FusionWeights
from .errors import ConfigError, EmbeddingFailed, IndexEmpty
from .indexer import Index
from .models import Chunk
from .query_processor import Query
from .text import stem, words

# BM25 constants
K1 = 1.2
B = 0.75

# keyword boost per verbatim match
WORD_BONUS = 0.2
NUMBER_BONUS = 0.4
PAIR_BONUS = 0.6
PHRASE_BONUS = 1.0


@dataclass
class RankedChunk:
    chunk: Chunk
    score: float
    semantic: float = 0.0
    lexical: float = 0.0
    keyword: float = 0.0

    @property
    def source_id(self) -> str:
        return self.chunk.source_id


def idf(doc_freq: int, total_docs: int) -> float:
    """BM25 idf, the variant that stays positive for very common terms."""
    return math.log(1.0 + (total_docs - doc_freq + 0.5) / (doc_freq + 0.5))


def bm25_score(
    terms: Sequence[str],
    chunk: Chunk,
    doc_freq: Dict[str, int],
    total_docs: int,
    avg_length: float,
    k1: float = K1,
    b: float = B,
) -> float:
    if total_docs == 0 or avg_length <= 0:
        return 0.0
    norm = k1 * (1.0 - b + b * chunk.length / avg_length)
    score = 0.0
    for term in terms:
        f = chunk.term_freqs.get(term, 0)
        if f <= 0:
            continue
        df = doc_freq.get(term, 0)
        if df <= 0:
            continue
        score += idf(df, total_docs) * (f * (k1 + 1.0)) / (f + norm)
    return score


def _contains(haystack: str, needle: str) -> bool:
    # both sides are space-joined word lists, padded so matches are whole words
    return f" {needle} " in haystack


def keyword_bonus(query: Query, text: str, source_id: str = "", cap: float = config.KEYWORD_CAP) -> float:
    """
    Additive bonus for verbatim, case-insensitive matches of the query's
    words and phrases in the chunk text (words also count in the source id).
    """
    haystack = f" {' '.join(words(text))} "
    url_words = f" {' '.join(words(source_id))} "
    bonus = 0.0
    for keyword in query.keywords:
        if _contains(haystack, keyword) or _contains(url_words, keyword):
            bonus += NUMBER_BONUS if keyword.isdigit() else WORD_BONUS
    for phrase in query.phrases:
        if _contains(haystack, phrase):
            bonus += PHRASE_BONUS if phrase.count(" ") > 1 else PAIR_BONUS
    return min(bonus, cap)


def _scale_by_max(values: np.ndarray) -> np.ndarray:
    top = values.max() if values.size else 0.0
    if top <= 0:
        return np.zeros_like(values)
    return values / top


class HybridRanker:
    """
    Fuses cosine similarity, BM25 and a verbatim keyword bonus.

    Cosine is clamped to [0, 1]; BM25 and the keyword bonus are divided by
    their maximum over the candidate set. The fused score is their weighted
    sum. Ties go to the lower chunk position, then the earlier document.
    """

    def __init__(
        self,
        weights: FusionWeights = None,
        candidate_pool: int = config.CANDIDATE_POOL,
        keyword_cap: float = config.KEYWORD_CAP,
    ):
        self.weights = (weights or FusionWeights()).validate()
        if candidate_pool < 1:
            raise ConfigError("candidate_pool must be >= 1")
        self.candidate_pool = candidate_pool
        self.keyword_cap = keyword_cap

    def _query_vector(self, query: Query, index: Index) -> np.ndarray:
        if query.embedding is None:
            raise EmbeddingFailed("query has no embedding")
        vector = np.asarray(query.embedding, dtype=np.float32).ravel()
        if vector.size != index.dimension:
            raise EmbeddingFailed(
                f"query embedding has dimension {vector.size}, index has {index.dimension}"
            )
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    def candidates(self, query: Query, query_vector: np.ndarray, index: Index, top_k: int) -> List[int]:
        """Top chunks by cosine plus every chunk sharing a query term."""
        semantic = index.semantic_candidates(query_vector, max(top_k, self.candidate_pool))
        lexical = index.lexical_candidates(query.tokens)
        return sorted(set(semantic) | set(lexical))

    def rank(self, query: Query, index: Index, top_k: int = config.TOP_K) -> List[RankedChunk]:
        if top_k < 1:
            raise ConfigError("top_k must be >= 1")
        if len(index) == 0:
            raise IndexEmpty(index.scope)

        query_vector = self._query_vector(query, index)
        ids = self.candidates(query, query_vector, index, top_k)
        chunks = [index.chunks[i] for i in ids]
        total_docs = len(index)

        semantic = np.clip(index.vectors[ids] @ query_vector, 0.0, 1.0)
        lexical = np.array(
            [bm25_score(query.tokens, c, index.doc_freq, total_docs, index.avg_length) for c in chunks],
            dtype=np.float64,
        )
        keyword = np.array(
            [keyword_bonus(query, c.text, c.source_id, self.keyword_cap) for c in chunks],
            dtype=np.float64,
        )

        w = self.weights
        fused = (
            w.semantic * semantic.astype(np.float64)
            + w.lexical * _scale_by_max(lexical)
            + w.keyword * _scale_by_max(keyword)
        )

        order = sorted(
            range(len(ids)),
            key=lambda j: (-fused[j], chunks[j].position, chunks[j].doc_order, ids[j]),
        )
        return [
            RankedChunk(
                chunk=chunks[j],
                score=float(fused[j]),
                semantic=float(semantic[j]),
                lexical=float(lexical[j]),
                keyword=float(keyword[j]),
            )
            for j in order[:top_k]
        ]


def generate_snippet(text: str, query: Query, before: int = 10, after: int = 30) -> str:
    """
    A window of words around the first query term in the text, with
    matching words wrapped in <mark>.
    """
    tokens = text.split()
    terms = set(query.tokens)

    def matches(word: str) -> bool:
        return any(stem(w) in terms for w in words(word))

    first = next((i for i, word in enumerate(tokens) if matches(word)), None)
    if first is None:
        return " ".join(tokens[:50]) + (" ..." if len(tokens) > 50 else "")

    start = max(0, first - before)
    end = min(len(tokens), first + after)
    highlighted = [f"<mark>{w}</mark>" if matches(w) else w for w in tokens[start:end]]
    return (
        ("... " if start > 0 else "")
        + " ".join(highlighted)
        + (" ..." if end < len(tokens) else "")
    )
