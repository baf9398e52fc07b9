# =============================================================================
# Token-Window Chunker — tiktoken
# =============================================================================
#
# Splits a document's text into an ordered sequence of token-bounded,
# overlapping windows. Each window is analysed independently by every
# registered agent, so its size is what keeps a single completion request
# inside the model's context budget.
#
# ALGORITHM:
# 1. Encode the full text into tokens (N tokens)
# 2. stride = max_tokens - overlap (must be > 0)
# 3. For i = 0, stride, 2*stride, ...: take tokens[i : i + max_tokens],
#    decode to text, assign the next sequence index
# 4. Stop after the window whose end (i + max_tokens) reaches N
#
# Example: N=9000, max_tokens=4000, overlap=200 → stride 3800 →
# windows start at 0, 3800, 7600; the last holds 1400 tokens.
#
# The function is pure: same text + same configuration → same chunks.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import tiktoken

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Chunk:
    """
    One window of the document.

    token_count is the exact number of tokens in the window and is never
    larger than the max_tokens the chunker ran with.
    """

    sequence_index: int  # 0-indexed position within the document
    content: str
    token_count: int


class Encoder(Protocol):
    """Anything that can turn text into token ids and back (tiktoken-like)."""

    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: list[int]) -> str: ...


# ---------------------------------------------------------------------------
# Tiktoken Encoder — Cached Per Encoding
# ---------------------------------------------------------------------------
# Loading an encoding reads a BPE file from disk (or downloads it on first
# use), so encoders are cached by name for the life of the process.
# ---------------------------------------------------------------------------

_encoders: dict[str, tiktoken.Encoding] = {}


def get_encoder(encoding_name: str | None = None) -> tiktoken.Encoding:
    """Lazily initialize and cache a tiktoken encoder."""
    name = encoding_name or settings.tokenizer_encoding
    if name not in _encoders:
        _encoders[name] = tiktoken.get_encoding(name)
    return _encoders[name]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_text(
    text: str,
    max_tokens: int | None = None,
    overlap: int | None = None,
    encoder: Encoder | None = None,
) -> list[Chunk]:
    """
    Split text into overlapping token windows.

    Args:
        text: Full document text.
        max_tokens: Window size in tokens (default: settings.chunk_max_tokens).
        overlap: Tokens shared by consecutive windows
            (default: settings.chunk_overlap).
        encoder: Tokenizer to use (default: cached tiktoken encoder).

    Returns:
        Chunks in ascending sequence_index order. Empty text yields no chunks;
        text of at most max_tokens tokens yields exactly one chunk holding
        the entire text.

    Raises:
        ValueError: If the window configuration has no forward progress.
    """
    max_tokens = settings.chunk_max_tokens if max_tokens is None else max_tokens
    overlap = settings.chunk_overlap if overlap is None else overlap

    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive, got {max_tokens}")
    if overlap < 0:
        raise ValueError(f"overlap must not be negative, got {overlap}")
    stride = max_tokens - overlap
    if stride <= 0:
        raise ValueError(
            f"overlap ({overlap}) must be smaller than max_tokens ({max_tokens})"
        )

    enc = encoder or get_encoder()
    tokens = enc.encode(text)
    total_tokens = len(tokens)

    if total_tokens == 0:
        logger.warning("No tokens to chunk (empty document)")
        return []

    # Short documents pass through untouched, with no decode round trip
    if total_tokens <= max_tokens:
        return [Chunk(sequence_index=0, content=text, token_count=total_tokens)]

    chunks: list[Chunk] = []
    for index, start in enumerate(range(0, total_tokens, stride)):
        window = tokens[start:start + max_tokens]
        chunks.append(Chunk(
            sequence_index=index,
            content=enc.decode(window),
            token_count=len(window),
        ))
        if start + max_tokens >= total_tokens:
            break

    logger.info(
        "Chunked %d tokens into %d windows (max_tokens=%d, overlap=%d)",
        total_tokens, len(chunks), max_tokens, overlap,
    )
    return chunks

