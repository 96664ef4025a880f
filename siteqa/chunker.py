# chunker.py

import re
from typing import Iterator, List, Tuple

from .errors import ConfigError
from .models import Chunk
from .text import normalize_paragraphs, tokenize

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

# (text, paragraph number)
Unit = Tuple[str, int]


def _hard_split(word: str, hard_max_chars: int) -> Iterator[str]:
    for i in range(0, len(word), hard_max_chars):
        yield word[i : i + hard_max_chars]


def _break_sentence(sentence: str, target_chars: int, hard_max_chars: int) -> Iterator[str]:
    """Packs the words of an oversized sentence into pieces of at most target_chars."""
    piece = ""
    for word in sentence.split():
        if len(word) > hard_max_chars:
            if piece:
                yield piece
                piece = ""
            yield from _hard_split(word, hard_max_chars)
            continue
        candidate = f"{piece} {word}" if piece else word
        if len(candidate) > target_chars and piece:
            yield piece
            piece = word
        else:
            piece = candidate
    if piece:
        yield piece


def _units(text: str, target_chars: int, hard_max_chars: int) -> Iterator[Unit]:
    for p_idx, paragraph in enumerate(normalize_paragraphs(text).split("\n\n")):
        for sentence in _SENTENCE_END.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= hard_max_chars:
                yield sentence, p_idx
            else:
                for piece in _break_sentence(sentence, target_chars, hard_max_chars):
                    yield piece, p_idx


def _join(units: List[Unit]) -> str:
    out = []
    prev_para = None
    for text, para in units:
        if out:
            out.append(" " if para == prev_para else "\n\n")
        out.append(text)
        prev_para = para
    return "".join(out)


def _overlap_tail(units: List[Unit], overlap_chars: int) -> List[Unit]:
    """Trailing whole units of a segment that fit in overlap_chars."""
    tail: List[Unit] = []
    if overlap_chars <= 0:
        return tail
    for unit in reversed(units):
        if len(_join([unit] + tail)) > overlap_chars:
            break
        tail.insert(0, unit)
    # never carry the entire previous segment
    if len(tail) == len(units):
        tail = tail[1:]
    return tail


def split_text(
    text: str, target_chars: int, hard_max_chars: int, overlap_chars: int = 0
) -> List[str]:
    """
    Splits text on paragraph and sentence boundaries into segments of
    roughly target_chars, never longer than hard_max_chars.
    """
    if hard_max_chars < 1 or not 1 <= target_chars <= hard_max_chars:
        raise ConfigError(
            f"need 1 <= target_chars ({target_chars}) <= hard_max_chars ({hard_max_chars})"
        )
    if overlap_chars < 0:
        raise ConfigError("overlap_chars must be >= 0")

    segments: List[str] = []
    current: List[Unit] = []
    for unit in _units(text, target_chars, hard_max_chars):
        if current and len(_join(current + [unit])) > target_chars:
            segments.append(_join(current))
            current = _overlap_tail(current, overlap_chars) + [unit]
            if len(_join(current)) > target_chars:
                current = [unit]
        else:
            current.append(unit)
    if current:
        segments.append(_join(current))

    return [s.strip() for s in segments if s.strip()]


def chunk_text(
    text: str,
    source_id: str,
    target_chars: int,
    hard_max_chars: int,
    overlap_chars: int = 0,
    doc_order: int = 0,
) -> List[Chunk]:
    """Chunks for one document, positions numbered from 0. No embeddings yet."""
    pieces = split_text(text, target_chars, hard_max_chars, overlap_chars)
    return [
        Chunk.from_text(source_id, position, piece, tokenize(piece), doc_order)
        for position, piece in enumerate(pieces)
    ]
