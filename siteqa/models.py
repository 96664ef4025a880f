# models.py

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np


class ContentKind(Enum):
    HTML = "html"
    PDF = "pdf"
    TEXT = "text"


@dataclass
class Document:
    """One fetched page or uploaded file, consumed once by the extractor."""

    source_id: str
    content: Union[str, bytes]
    kind: ContentKind
    depth: int = 0
    order: int = 0


@dataclass(frozen=True)
class Chunk:
    source_id: str
    position: int
    text: str
    doc_order: int = 0
    tokens: Tuple[str, ...] = ()
    term_freqs: Dict[str, int] = field(default_factory=dict, compare=False)
    embedding: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    @property
    def length(self) -> int:
        """Token count, the BM25 length-normalization input."""
        return len(self.tokens)

    @property
    def chunk_id(self) -> str:
        return f"{self.source_id}#{self.position}"

    @classmethod
    def from_text(cls, source_id, position, text, tokens, doc_order=0):
        return cls(
            source_id=source_id,
            position=position,
            text=text,
            doc_order=doc_order,
            tokens=tuple(tokens),
            term_freqs=dict(Counter(tokens)),
        )
