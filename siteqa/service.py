# service.py

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from . import config as settings
from .chunker import chunk_text
from .config import IndexConfig, QueryConfig
from .crawler import crawl
from .embedder import Embedder, embed_chunks, embed_with_retry, make_embedder
from .errors import ExtractionFailed, IndexEmpty, InvalidLocation, UnsupportedFormat
from .extractor import content_kind_for, extract
from .fetcher import HttpFetcher
from .indexer import IndexStore
from .models import Chunk, ContentKind, Document
from .pdf import PdfTextExtractor, PdftotextExtractor
from .query_processor import Query, QueryProcessor
from .ranker import HybridRanker, RankedChunk, generate_snippet
from .scope import origin, resolve_scope, sanitize_url

logger = logging.getLogger(__name__)


@dataclass
class IndexSummary:
    scope: str
    pages_indexed: int
    chunk_count: int
    created_at: str
    documents_seen: int = 0
    fetch_failed: int = 0
    extract_failed: int = 0
    embed_failed: int = 0

    def to_dict(self):
        return asdict(self)


@dataclass
class Answer:
    question: str
    scope: str
    ranked: List[RankedChunk]
    sources: List[str]
    query: Optional[Query] = field(default=None, repr=False)

    def to_dict(self):
        return {
            "question": self.question,
            "scope": self.scope,
            "sources": self.sources,
            "chunks": [
                {
                    "source": r.chunk.source_id,
                    "position": r.chunk.position,
                    "text": r.chunk.text,
                    "snippet": generate_snippet(r.chunk.text, self.query) if self.query else "",
                    "score": round(r.score, 6),
                    "semantic": round(r.semantic, 6),
                    "lexical": round(r.lexical, 6),
                    "keyword": round(r.keyword, 6),
                }
                for r in self.ranked
            ],
        }


def collect_sources(ranked: Sequence[RankedChunk], limit: int = settings.MAX_SOURCES) -> List[str]:
    """Distinct source ids in rank order, best first."""
    sources: List[str] = []
    for r in ranked:
        if r.source_id not in sources:
            sources.append(r.source_id)
        if len(sources) >= limit:
            break
    return sources


def document_from_upload(filename: str, data: bytes, content_type: Optional[str] = None) -> Document:
    """Document for an uploaded file; raises UnsupportedFormat for unknown kinds."""
    kind = content_kind_for(filename, content_type)
    content = data if kind is ContentKind.PDF else data.decode("utf-8", errors="replace")
    return Document(source_id=filename, content=content, kind=kind)


class SiteQA:
    """
    Crawl/ingest -> extract -> chunk -> embed -> index, and hybrid
    retrieval over the committed index of a scope.
    """

    def __init__(
        self,
        embedder: Optional[Embedder] = None,
        store: Optional[IndexStore] = None,
        fetcher_factory: Optional[Callable] = None,
        pdf_extractor: Optional[PdfTextExtractor] = None,
        query_processor: Optional[QueryProcessor] = None,
    ):
        self.embedder = embedder if embedder is not None else make_embedder()
        self.store = store if store is not None else IndexStore()
        self.fetcher_factory = fetcher_factory or HttpFetcher
        self.pdf_extractor = pdf_extractor if pdf_extractor is not None else PdftotextExtractor()
        self.query_processor = query_processor or QueryProcessor()

    async def close(self):
        close = getattr(self.embedder, "close", None)
        if close is not None:
            await close()

    async def index_scope(self, start: str, config: Optional[IndexConfig] = None) -> IndexSummary:
        """
        Crawls from `start` and replaces the index of its scope.

        Raises InvalidLocation for a bad start URL or scope, and IndexEmpty
        when nothing could be indexed (the empty index is still installed).
        """
        config = (config or IndexConfig()).validate()
        scope = resolve_scope(start, config.scope)

        async with self.store.rebuild_lock(scope.prefix):
            logger.info("Indexing %s (scope %s)", start, scope)
            async with self.fetcher_factory() as fetcher:
                crawled = await crawl(
                    start,
                    scope,
                    config.max_depth,
                    config.max_pages,
                    fetcher,
                    concurrency=config.crawl_concurrency,
                    skip_pdfs=config.skip_pdfs,
                )
            return await self._build(
                scope.prefix, crawled.documents, config, fetch_failed=len(crawled.failures)
            )

    async def ingest_documents(
        self, scope: str, documents: Sequence[Document], config: Optional[IndexConfig] = None
    ) -> IndexSummary:
        """Replaces the index of `scope` with uploaded documents."""
        config = (config or IndexConfig()).validate()
        if not scope or not scope.strip():
            raise InvalidLocation("scope must not be empty")
        for order, document in enumerate(documents):
            document.order = order
        async with self.store.rebuild_lock(scope):
            return await self._build(scope, documents, config)

    async def _extract_all(self, documents: Sequence[Document], config: IndexConfig) -> List[Tuple[Document, object]]:
        loop = asyncio.get_running_loop()
        semaphore = asyncio.Semaphore(config.crawl_concurrency)

        async def extract_one(document: Document):
            async with semaphore:
                try:
                    if document.kind is ContentKind.PDF:
                        # pdftotext blocks
                        return await loop.run_in_executor(
                            None, extract, document, self.pdf_extractor,
                            config.pdf_max_pages, config.skip_pdfs,
                        )
                    return extract(document, self.pdf_extractor, config.pdf_max_pages, config.skip_pdfs)
                except (UnsupportedFormat, ExtractionFailed) as e:
                    return e

        results = await asyncio.gather(*(extract_one(d) for d in documents))
        return list(zip(documents, results))

    async def _build(
        self, scope: str, documents: Sequence[Document], config: IndexConfig, fetch_failed: int = 0
    ) -> IndexSummary:
        chunks: List[Chunk] = []
        extract_failed = 0
        for document, extracted in await self._extract_all(documents, config):
            if isinstance(extracted, Exception):
                logger.warning("Skipping %s: %s", document.source_id, extracted)
                extract_failed += 1
                continue
            chunks.extend(
                chunk_text(
                    extracted.text,
                    extracted.source_id,
                    config.chunk_target_chars,
                    config.chunk_hard_max_chars,
                    config.chunk_overlap_chars,
                    doc_order=document.order,
                )
            )

        logger.info("Embedding %d chunks from %d documents", len(chunks), len(documents))
        embedded, embed_failed = await embed_chunks(
            chunks, self.embedder, concurrency=config.embed_concurrency
        )
        index = self.store.build(scope, embedded)

        summary = IndexSummary(
            scope=scope,
            pages_indexed=index.pages_indexed,
            chunk_count=len(index),
            created_at=index.created_at,
            documents_seen=len(documents),
            fetch_failed=fetch_failed,
            extract_failed=extract_failed,
            embed_failed=embed_failed,
        )
        logger.info("Index summary: %s", summary)
        if summary.chunk_count == 0:
            raise IndexEmpty(scope, summary)
        return summary

    def resolve_key(self, scope: str) -> str:
        """
        Store key for a scope given as typed by a user: the key itself, the
        canonical prefix of a URL, or its origin.
        """
        if scope in self.store:
            return scope
        try:
            canonical = sanitize_url(scope)
        except InvalidLocation:
            return scope
        for key in (canonical.rstrip("/"), origin(canonical)):
            if key in self.store:
                return key
        return canonical.rstrip("/")

    async def answer_query(self, question: str, scope: str, config: Optional[QueryConfig] = None) -> Answer:
        """
        Ranked chunks and their sources for a question against a scope's index.
        Generation of the final answer text happens outside this package.
        """
        config = (config or QueryConfig()).validate()
        key = self.resolve_key(scope)
        if key not in self.store and config.start_url:
            summary = await self.index_scope(config.start_url, config.index)
            key = summary.scope

        index = self.store.get(key)
        if len(index) == 0:
            raise IndexEmpty(key)

        query = self.query_processor.process(question)
        query.embedding = await embed_with_retry(self.embedder, question)
        ranker = HybridRanker(config.weights, config.candidate_pool, config.keyword_cap)
        ranked = ranker.rank(query, index, config.top_k)
        return Answer(
            question=question,
            scope=key,
            ranked=ranked,
            sources=collect_sources(ranked),
            query=query,
        )
