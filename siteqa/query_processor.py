# query_processor.py

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from .text import STOPWORDS, stem, words

# Phrases in the question that pull in extra lexical terms.
DEFAULT_EXPANSIONS: Dict[Tuple[str, ...], Tuple[str, ...]] = {
    ("deadline", "last date", "closing date", "due date"): ("application", "closing", "date"),
    ("in charge", "incharge", "who is responsible"): ("responsible", "contact", "head"),
    ("admission", "admissions", "enrollment", "enrolment"): ("admission", "enrolment", "application"),
    ("ects", "credit", "credits"): ("ects", "credit", "module"),
    ("fee", "fees", "tuition"): ("fee", "tuition", "cost"),
    ("contact", "email", "phone"): ("contact", "email", "phone"),
}


@dataclass
class Query:
    text: str
    # stemmed lexical terms, stopwords removed, expansions included
    tokens: List[str]
    # lowercase surface words for verbatim matching
    keywords: List[str]
    # adjacent word pairs plus the whole question
    phrases: List[str]
    embedding: Optional[np.ndarray] = field(default=None, repr=False)


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class QueryProcessor:
    def __init__(self, expansions: Optional[Dict[Tuple[str, ...], Tuple[str, ...]]] = None, stopwords=STOPWORDS):
        self.expansions = DEFAULT_EXPANSIONS if expansions is None else expansions
        self.stopwords = frozenset(stopwords)

    def preprocess_query(self, query: str) -> List[str]:
        """Lowercase words of the query without stopwords."""
        return [t for t in words(query) if t not in self.stopwords]

    def expand(self, query: str) -> List[str]:
        lowered = " ".join(words(query))
        extra = []
        for triggers, terms in self.expansions.items():
            if any(f" {t} " in f" {lowered} " for t in triggers):
                extra.extend(terms)
        return extra

    def phrases(self, query: str) -> List[str]:
        surface = words(query)
        pairs = [
            f"{a} {b}"
            for a, b in zip(surface, surface[1:])
            if a not in self.stopwords and b not in self.stopwords
        ]
        if len(surface) > 2:
            pairs.append(" ".join(surface))
        return _dedupe(pairs)

    def process(self, query: str, expand: bool = True) -> Query:
        keywords = _dedupe(self.preprocess_query(query))
        terms = list(keywords)
        if expand:
            terms.extend(self.expand(query))
        tokens = _dedupe(stem(t) for t in terms)
        return Query(text=query, tokens=tokens, keywords=keywords, phrases=self.phrases(query))
