from .chunker import chunk_text, split_text
from .config import FusionWeights, IndexConfig, QueryConfig
from .crawler import CrawlResult, crawl, extract_links
from .embedder import OllamaEmbedder, SentenceTransformerEmbedder, embed_chunks
from .errors import (
    ConfigError,
    EmbeddingFailed,
    ExtractionFailed,
    FetchFailed,
    IndexEmpty,
    IndexNotFound,
    InvalidLocation,
    SiteQAError,
    UnsupportedFormat,
)
from .extractor import extract
from .fetcher import HttpFetcher
from .indexer import Index, IndexStore, build_index
from .models import Chunk, ContentKind, Document
from .query_processor import Query, QueryProcessor
from .ranker import HybridRanker, RankedChunk, bm25_score
from .scope import Scope, resolve_scope, sanitize_url
from .service import Answer, IndexSummary, SiteQA, collect_sources

__version__ = "0.1.0"
