"""
Text chunking utilities for splitting knowledge base documents.

This module provides functions to chunk document text by:
- Splitting on sentence terminators
- Packing sentences into bounded chunks with a character overlap
- Cutting sentences longer than a chunk into fixed-width slices
- Building the representative text used to embed a long document
"""

import re
from typing import List

from loguru import logger

from assistly.models import Chunk


SENTENCE_BOUNDARY = re.compile(r'[.!?]\s+')

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50

# Long documents are embedded from their head plus a short tail
REPRESENTATIVE_HEAD_CHARS = 2000
REPRESENTATIVE_TAIL_CHARS = 200


def split_into_sentences(text: str) -> List[str]:
    """
    Split text on sentence terminators followed by whitespace.

    The terminators are consumed by the split; empty pieces are dropped.

    Args:
        text (str): Input text

    Returns:
        List[str]: Trimmed, non-empty sentences in order
    """
    sentences = SENTENCE_BOUNDARY.split(text)
    return [s.strip() for s in sentences if s.strip()]


def _slice_by_characters(content: str, chunk_size: int) -> List[str]:
    """Fixed-width slices, trimmed, blanks dropped."""
    pieces = (content[i:i + chunk_size].strip() for i in range(0, len(content), chunk_size))
    return [p for p in pieces if p]


def _bounded_sentences(content: str, chunk_size: int, overlap: int) -> List[str]:
    """
    Sentences of ``content``, with any sentence too long to fit in a chunk
    after the overlap prefix cut into fixed-width slices.
    """
    width = max(1, chunk_size - overlap - 1)
    sentences: List[str] = []
    for sentence in split_into_sentences(content):
        if len(sentence) > width:
            sentences.extend(_slice_by_characters(sentence, width))
        else:
            sentences.append(sentence)
    return sentences


def chunk_document(
    content: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP
) -> List[Chunk]:
    """
    Chunk a document into bounded, slightly overlapping pieces.

    Sentences are packed into a buffer joined with ". ". When appending the
    next sentence would push the buffer over ``chunk_size`` the buffer is
    emitted, and the next buffer starts with the last ``overlap`` characters
    of the previous one so that adjacent chunks share context. A sentence
    longer than a chunk (including text with no terminators at all) is cut
    into fixed-width slices first, so no chunk exceeds ``chunk_size``.

    Args:
        content (str): Document text
        chunk_size (int): Maximum characters per chunk before emitting
        overlap (int): Characters carried over between adjacent chunks

    Returns:
        List[Chunk]: Chunks with 0-based indexes in emission order; empty for
        non-string or blank input
    """
    if not isinstance(content, str) or not content:
        return []

    texts: List[str] = []
    current = ""

    for sentence in _bounded_sentences(content, chunk_size, overlap):
        if len(current) + len(sentence) + 2 > chunk_size:
            if current.strip():
                texts.append(current.strip())

            overlap_text = current[-overlap:] if overlap > 0 else ""
            current = f"{overlap_text} {sentence}" if overlap_text else sentence
        else:
            current = f"{current}. {sentence}" if current else sentence

    if current.strip():
        texts.append(current.strip())

    # Fallback: no sentence produced a chunk
    if not texts and content.strip():
        texts = _slice_by_characters(content, chunk_size)
        logger.debug("Sentence chunking produced nothing, used fixed-width slices",
                     slices=len(texts), chunk_size=chunk_size)

    chunks = [Chunk(text=text, index=i) for i, text in enumerate(texts)]

    logger.debug(
        "Document chunked",
        content_length=len(content),
        chunk_count=len(chunks),
        chunk_size=chunk_size,
        overlap=overlap
    )

    return chunks


def format_chunk(chunk: Chunk, document_title: str = "") -> str:
    """
    Format a chunk for storage or display.

    Args:
        chunk (Chunk): Chunk to format
        document_title (str): Title of the parent document

    Returns:
        str: ``[Chunk N from "Title"]`` header followed by the chunk text
    """
    source = f' from "{document_title}"' if document_title else ""
    return f"[Chunk {chunk.index + 1}{source}]\n{chunk.text}"


def representative_text(
    content: str,
    head: int = REPRESENTATIVE_HEAD_CHARS,
    tail: int = REPRESENTATIVE_TAIL_CHARS
) -> str:
    """
    Text used to embed a whole document as a single vector.

    Short documents are returned trimmed. Longer ones keep the first ``head``
    characters and the last ``tail`` characters, separated by a blank line.
    """
    text = content.strip()
    if len(text) <= head:
        return text
    return text[:head] + "\n\n" + text[-tail:]
