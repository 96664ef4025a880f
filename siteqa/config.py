# config.py

import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from typing import Optional

from .errors import ConfigError


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Configuration for the crawler
MAX_CRAWL_DEPTH = _env_int("CRAWL_MAX_DEPTH", 4)
MAX_CRAWLED_PAGES = _env_int("CRAWL_MAX_PAGES", 400)
CRAWL_CONCURRENCY = _env_int("CRAWL_CONCURRENCY", 8)
REQUEST_TIMEOUT = 45
CRAWL_DELAY_MS = _env_int("CRAWL_DELAY_MS", 200)
MAX_DOCUMENT_BYTES = 10 * 1024 * 1024
USER_AGENT = "Mozilla/5.0 (compatible; siteqa/0.1; +https://github.com/siteqa/siteqa)"

# Chunking
CHUNK_TARGET_CHARS = _env_int("CHUNK_TARGET_CHARS", 700)
CHUNK_HARD_MAX_CHARS = _env_int("CHUNK_HARD_MAX_CHARS", 750)
CHUNK_OVERLAP_CHARS = _env_int("CHUNK_OVERLAP_CHARS", 120)

# Documents
PDF_MAX_PAGES = _env_int("PDF_MAX_PAGES", 12)
SKIP_PDFS = _env_flag("SKIP_PDFS")

# Embeddings
EMBED_BACKEND = os.getenv("EMBED_BACKEND", "sentence-transformers")
EMBED_MODEL = os.getenv("EMBED_MODEL", "sentence-transformers/all-MiniLM-L6-v2")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://localhost:11434")
EMBED_CONCURRENCY = _env_int("EMBED_CONCURRENCY", 4)
EMBED_RETRIES = 3

# Retrieval
TOP_K = _env_int("TOP_K", 18)
CANDIDATE_POOL = 50
KEYWORD_CAP = 2.0
MAX_SOURCES = 8

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "siteqa.log")


@dataclass(frozen=True)
class FusionWeights:
    semantic: float = 0.45
    lexical: float = 0.35
    keyword: float = 0.20

    def validate(self) -> "FusionWeights":
        weights = (self.semantic, self.lexical, self.keyword)
        if any(w < 0 for w in weights):
            raise ConfigError("fusion weights must be non-negative")
        if not any(weights):
            raise ConfigError("at least one fusion weight must be positive")
        return self


@dataclass
class IndexConfig:
    """Options for one crawl/ingest + index build."""

    max_depth: int = MAX_CRAWL_DEPTH
    max_pages: int = MAX_CRAWLED_PAGES
    scope: Optional[str] = None
    chunk_target_chars: int = CHUNK_TARGET_CHARS
    chunk_hard_max_chars: int = CHUNK_HARD_MAX_CHARS
    chunk_overlap_chars: int = CHUNK_OVERLAP_CHARS
    pdf_max_pages: int = PDF_MAX_PAGES
    skip_pdfs: bool = SKIP_PDFS
    crawl_concurrency: int = CRAWL_CONCURRENCY
    embed_concurrency: int = EMBED_CONCURRENCY

    def validate(self) -> "IndexConfig":
        if self.max_depth < 0:
            raise ConfigError("max_depth must be >= 0")
        if self.max_pages < 1:
            raise ConfigError("max_pages must be >= 1")
        if self.chunk_hard_max_chars < 1:
            raise ConfigError("chunk_hard_max_chars must be >= 1")
        if not 1 <= self.chunk_target_chars <= self.chunk_hard_max_chars:
            raise ConfigError(
                "chunk_target_chars must be between 1 and chunk_hard_max_chars"
            )
        if not 0 <= self.chunk_overlap_chars < self.chunk_target_chars:
            raise ConfigError("chunk_overlap_chars must be in [0, chunk_target_chars)")
        if self.pdf_max_pages < 1:
            raise ConfigError("pdf_max_pages must be >= 1")
        if self.crawl_concurrency < 1 or self.embed_concurrency < 1:
            raise ConfigError("concurrency limits must be >= 1")
        return self


@dataclass
class QueryConfig:
    top_k: int = TOP_K
    weights: FusionWeights = field(default_factory=FusionWeights)
    candidate_pool: int = CANDIDATE_POOL
    keyword_cap: float = KEYWORD_CAP
    # When set and the scope has no index yet, the site is crawled first.
    start_url: Optional[str] = None
    index: IndexConfig = field(default_factory=IndexConfig)

    def validate(self) -> "QueryConfig":
        if self.top_k < 1:
            raise ConfigError("top_k must be >= 1")
        if self.candidate_pool < 1:
            raise ConfigError("candidate_pool must be >= 1")
        if self.keyword_cap <= 0:
            raise ConfigError("keyword_cap must be > 0")
        self.weights.validate()
        self.index.validate()
        return self


def configure_logging(level: str = LOG_LEVEL, log_file: Optional[str] = LOG_FILE):
    """Console logging plus a rotating log file."""
    logging.basicConfig(level=level)
    if not log_file:
        return
    root = logging.getLogger()
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return
    file_handler = RotatingFileHandler(log_file, maxBytes=1024 * 1024, backupCount=5)
    file_handler.setLevel(level)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
