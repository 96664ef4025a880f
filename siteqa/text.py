# text.py

import re
from functools import lru_cache
from typing import List

from nltk.stem import PorterStemmer
from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

STOPWORDS = frozenset(ENGLISH_STOP_WORDS)

_stemmer = PorterStemmer()
_WORD = re.compile(r"[^\W_]+")
_WS = re.compile(r"\s+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


def normalize_whitespace(text: str) -> str:
    """Collapses every run of whitespace to one space."""
    if not text:
        return ""
    return _WS.sub(" ", text).strip()


def normalize_paragraphs(text: str) -> str:
    """
    Like normalize_whitespace but keeps paragraph breaks (blank lines)
    so the chunker can still split on them.
    """
    if not text:
        return ""
    paragraphs = _BLANK_LINES.split(text.replace("\r\n", "\n").replace("\r", "\n"))
    cleaned = (normalize_whitespace(p) for p in paragraphs)
    return "\n\n".join(p for p in cleaned if p)


def words(text: str) -> List[str]:
    """Lowercase alphanumeric runs, no stemming."""
    if not text:
        return []
    return _WORD.findall(text.lower())


@lru_cache(maxsize=65536)
def stem(word: str) -> str:
    return _stemmer.stem(word)


def tokenize(text: str) -> List[str]:
    """Tokens used for lexical scoring: lowercase alphanumeric runs, stemmed."""
    return [stem(w) for w in words(text)]
