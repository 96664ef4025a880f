import asyncio
from dataclasses import replace

import numpy as np
import pytest

from conftest import bag_of_words_vector
from siteqa.errors import IndexNotFound
from siteqa.indexer import IndexStore, build_index, normalize_rows
from siteqa.models import Chunk
from siteqa.text import tokenize


def embedded_chunk(source_id, position, text, vector=None):
    chunk = Chunk.from_text(source_id, position, text, tokenize(text))
    return replace(chunk, embedding=bag_of_words_vector(text) if vector is None else vector)


def sample_chunks():
    return [
        embedded_chunk("a", 0, "apply before the deadline"),
        embedded_chunk("a", 1, "the deadline is in december"),
        embedded_chunk("b", 0, "tuition fees"),
    ]


def test_aggregates_are_computed():
    index = build_index("https://example.com", sample_chunks())
    assert len(index) == 3
    assert index.pages_indexed == 2
    assert index.doc_freq["deadlin"] == 2
    assert index.doc_freq["tuition"] == 1
    assert index.postings["deadlin"] == (0, 1)
    assert index.avg_length == pytest.approx((4 + 5 + 2) / 3)
    assert index.dimension == 64
    assert index.created_at


def test_vectors_are_normalized():
    index = build_index("s", sample_chunks())
    assert np.allclose(np.linalg.norm(index.vectors, axis=1), 1.0)
    assert np.allclose(normalize_rows(np.zeros((1, 3))), 0.0)


def test_mismatched_or_missing_embeddings_are_skipped():
    chunks = sample_chunks() + [
        embedded_chunk("c", 0, "wrong size", vector=np.ones(8, dtype=np.float32)),
        Chunk.from_text("d", 0, "never embedded", ["never", "embed"]),
    ]
    index = build_index("s", chunks)
    assert [c.source_id for c in index.chunks] == ["a", "a", "b"]
    assert "never" not in index.doc_freq


def test_empty_index():
    index = build_index("s", [])
    assert len(index) == 0
    assert index.avg_length == 0.0
    assert index.dimension == 0
    assert index.semantic_candidates(np.ones(64, dtype=np.float32), 5) == []


def test_semantic_candidates_best_first():
    chunks = sample_chunks()
    index = build_index("s", chunks)
    query = bag_of_words_vector("tuition fees")
    assert index.semantic_candidates(query, 1) == [2]
    assert len(index.semantic_candidates(query, 50)) == 3


def test_lexical_candidates():
    index = build_index("s", sample_chunks())
    assert index.lexical_candidates(["decemb", "tuition"]) == [1, 2]
    assert index.lexical_candidates(["missing"]) == []


def test_store_swaps_atomically():
    store = IndexStore()
    old = store.build("s", sample_chunks())
    snapshot = store.get("s")
    new = store.build("s", sample_chunks()[:1])

    assert store.get("s") is new
    # a reader holding the old snapshot still sees it whole
    assert snapshot is old
    assert len(snapshot) == 3
    assert snapshot.doc_freq["deadlin"] == 2
    assert len(new) == 1


def test_store_lookup():
    store = IndexStore()
    with pytest.raises(IndexNotFound):
        store.get("https://example.com")
    store.build("https://example.com", sample_chunks())
    store.build("https://another.org", sample_chunks())
    assert "https://example.com" in store
    assert store.scopes() == ["https://another.org", "https://example.com"]
    store.drop("https://another.org")
    assert store.scopes() == ["https://example.com"]


@pytest.mark.asyncio
async def test_rebuilds_of_a_scope_are_serialized():
    store = IndexStore()
    assert store.rebuild_lock("s") is store.rebuild_lock("s")
    assert store.rebuild_lock("s") is not store.rebuild_lock("t")

    events = []

    async def rebuild(name):
        async with store.rebuild_lock("s"):
            events.append(f"{name} start")
            await asyncio.sleep(0.01)
            events.append(f"{name} end")

    await asyncio.gather(rebuild("one"), rebuild("two"))
    assert events == ["one start", "one end", "two start", "two end"]
