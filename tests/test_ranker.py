import math
from dataclasses import replace

import numpy as np
import pytest

from siteqa.config import FusionWeights
from siteqa.errors import ConfigError, EmbeddingFailed, IndexEmpty
from siteqa.indexer import build_index
from siteqa.models import Chunk
from siteqa.query_processor import QueryProcessor
from siteqa.ranker import HybridRanker, bm25_score, generate_snippet, idf, keyword_bonus
from siteqa.text import tokenize

processor = QueryProcessor()


def unit(cosine):
    """2-d unit vector with the given cosine to [1, 0]."""
    return np.array([cosine, math.sqrt(1.0 - cosine ** 2)], dtype=np.float32)


def chunk(source_id, position, text, vector, doc_order=0):
    c = Chunk.from_text(source_id, position, text, tokenize(text), doc_order)
    return replace(c, embedding=np.asarray(vector, dtype=np.float32))


def query(text, vector=(1.0, 0.0)):
    q = processor.process(text)
    q.embedding = np.asarray(vector, dtype=np.float32)
    return q


def test_idf_is_positive_for_common_terms():
    assert idf(10, 10) > 0
    assert idf(1, 10) > idf(5, 10)


def test_bm25_grows_with_term_frequency():
    once = Chunk.from_text("a", 0, "", tokenize("deadline apply now today"))
    twice = Chunk.from_text("a", 1, "", tokenize("deadline deadline now today"))
    doc_freq = {"deadlin": 2, "appli": 1, "now": 2, "today": 2}
    assert bm25_score(["deadlin"], twice, doc_freq, 2, 4.0) > bm25_score(["deadlin"], once, doc_freq, 2, 4.0)
    assert bm25_score(["missing"], once, doc_freq, 2, 4.0) == 0.0


def test_bm25_penalizes_long_chunks():
    short = Chunk.from_text("a", 0, "", tokenize("deadline soon"))
    long = Chunk.from_text("a", 1, "", tokenize("deadline " + "filler " * 20))
    doc_freq = {"deadlin": 2}
    avg = (short.length + long.length) / 2
    assert bm25_score(["deadlin"], short, doc_freq, 2, avg) > bm25_score(["deadlin"], long, doc_freq, 2, avg)


def test_keyword_bonus():
    q = processor.process("When is the application deadline?")
    text = "The application deadline for the winter term is December 15."
    # two words and one adjacent pair
    assert keyword_bonus(q, text) == pytest.approx(0.2 + 0.2 + 0.6)
    assert keyword_bonus(q, "Nothing relevant here.") == 0.0
    assert keyword_bonus(q, text, cap=0.5) == 0.5


def test_keyword_bonus_counts_numbers_and_url_words():
    q = processor.process("fees 2024")
    assert keyword_bonus(q, "The 2024 schedule.") == pytest.approx(0.4)
    assert keyword_bonus(q, "Overview", source_id="https://example.com/fees") == pytest.approx(0.2)


def test_lexical_match_outranks_closer_vector():
    a = chunk("https://example.com/a", 0, "The application deadline for the winter term is December 15.", unit(0.5))
    b = chunk("https://example.com/b", 0, "Our campus library offers quiet study rooms for students.", unit(0.9), 1)
    index = build_index("https://example.com", [a, b])

    ranked = HybridRanker().rank(query("When is the application deadline?"), index, top_k=5)
    assert [r.source_id for r in ranked] == ["https://example.com/a", "https://example.com/b"]
    assert ranked[0].score == pytest.approx(0.45 * 0.5 + 0.35 + 0.20, abs=1e-5)
    assert ranked[1].score == pytest.approx(0.45 * 0.9, abs=1e-5)
    assert ranked[1].lexical == 0.0 and ranked[1].keyword == 0.0


def test_exact_date_match_outranks_related_chunk():
    dated = chunk("https://example.com/a", 0, "The application deadline for the winter term is December 15.", unit(0.5))
    related = chunk("https://example.com/b", 0, "The deadline for housing is announced in spring.", unit(0.9), 1)
    index = build_index("https://example.com", [dated, related])

    ranked = HybridRanker().rank(query("deadline December 15"), index, top_k=2)
    assert [r.source_id for r in ranked] == ["https://example.com/a", "https://example.com/b"]
    # both share "deadline", so lexical scoring alone does not decide it
    assert ranked[1].lexical > 0.0
    assert ranked[1].semantic > ranked[0].semantic
    assert ranked[0].keyword > ranked[1].keyword
    assert ranked[0].score > ranked[1].score


def test_semantic_only_weights():
    a = chunk("a", 0, "The application deadline is December 15.", unit(0.5))
    b = chunk("b", 0, "Quiet study rooms.", unit(0.9))
    index = build_index("s", [a, b])
    ranker = HybridRanker(FusionWeights(semantic=1.0, lexical=0.0, keyword=0.0))
    ranked = ranker.rank(query("application deadline"), index, top_k=2)
    assert [r.source_id for r in ranked] == ["b", "a"]


def test_ranking_is_deterministic_and_truncated():
    chunks = [chunk("s", i, f"Section {i} about fees and tuition.", unit(0.1 * i)) for i in range(8)]
    index = build_index("s", chunks)
    ranker = HybridRanker()
    q = query("tuition fees")
    first = ranker.rank(q, index, top_k=3)
    second = ranker.rank(q, index, top_k=3)
    assert len(first) == 3
    assert [(r.chunk.chunk_id, r.score) for r in first] == [(r.chunk.chunk_id, r.score) for r in second]
    scores = [r.score for r in first]
    assert scores == sorted(scores, reverse=True)


def test_ties_prefer_lower_position_then_earlier_document():
    text = "Contact the office."
    chunks = [
        chunk("https://example.com/z", 1, text, unit(0.7), doc_order=0),
        chunk("https://example.com/y", 0, text, unit(0.7), doc_order=2),
        chunk("https://example.com/x", 0, text, unit(0.7), doc_order=1),
    ]
    index = build_index("s", chunks)
    ranked = HybridRanker().rank(query("office contact"), index, top_k=3)
    assert [r.chunk.chunk_id for r in ranked] == [
        "https://example.com/x#0",
        "https://example.com/y#0",
        "https://example.com/z#1",
    ]


def test_candidates_include_lexical_matches_outside_pool():
    chunks = [chunk("s", i, f"Unrelated filler text {i}.", unit(0.9)) for i in range(5)]
    chunks.append(chunk("t", 0, "Tuition fees are listed here.", unit(0.0)))
    index = build_index("s", chunks)
    ranked = HybridRanker(candidate_pool=1).rank(query("tuition"), index, top_k=1)
    assert [r.source_id for r in ranked] == ["t"]


def test_rank_errors():
    index = build_index("s", [chunk("s", 0, "text", unit(1.0))])
    ranker = HybridRanker()
    with pytest.raises(ConfigError):
        ranker.rank(query("text"), index, top_k=0)
    with pytest.raises(EmbeddingFailed):
        ranker.rank(query("text", vector=(1.0, 0.0, 0.0)), index)
    missing = processor.process("text")
    with pytest.raises(EmbeddingFailed):
        ranker.rank(missing, index)
    with pytest.raises(IndexEmpty):
        ranker.rank(query("text"), build_index("s", []))


def test_invalid_weights():
    with pytest.raises(ConfigError):
        HybridRanker(FusionWeights(semantic=-1.0))
    with pytest.raises(ConfigError):
        HybridRanker(FusionWeights(0.0, 0.0, 0.0))


def test_generate_snippet_marks_terms():
    q = processor.process("application deadline")
    snippet = generate_snippet("The application deadline is December 15.", q)
    assert "<mark>application</mark>" in snippet
    assert "<mark>deadline</mark>" in snippet
    assert generate_snippet("No match at all.", q) == "No match at all."
