# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the token-window arithmetic with a one-token-per-character encoder,
# so offsets can be checked against plain string slices.
# No tokenizer download, API keys or network calls needed.
# =============================================================================

import pytest
from conftest import CharEncoder

from app.services.chunker import Chunk, chunk_text, get_encoder

ENC = CharEncoder()


def _text(n: int) -> str:
    """Deterministic text of exactly n characters (= n tokens)."""
    alphabet = "abcdefghijklmnopqrstuvwxyz"
    return "".join(alphabet[i % 26] for i in range(n))


class TestChunkText:
    """Tests for chunk_text()."""

    def test_empty_text_returns_no_chunks(self):
        assert chunk_text("", max_tokens=10, overlap=2, encoder=ENC) == []

    def test_short_text_is_single_chunk_with_entire_text(self):
        text = _text(7)
        chunks = chunk_text(text, max_tokens=10, overlap=2, encoder=ENC)
        assert chunks == [Chunk(sequence_index=0, content=text, token_count=7)]

    def test_text_exactly_max_tokens_is_single_chunk(self):
        text = _text(10)
        chunks = chunk_text(text, max_tokens=10, overlap=2, encoder=ENC)
        assert len(chunks) == 1
        assert chunks[0].content == text

    def test_nine_thousand_tokens_gives_three_windows(self):
        text = _text(9000)
        chunks = chunk_text(text, max_tokens=4000, overlap=200, encoder=ENC)

        assert len(chunks) == 3
        assert chunks[0].content == text[0:4000]
        assert chunks[1].content == text[3800:7800]
        assert chunks[2].content == text[7600:9000]
        assert [c.token_count for c in chunks] == [4000, 4000, 1400]

    def test_sequence_indices_are_sequential(self):
        chunks = chunk_text(_text(100), max_tokens=10, overlap=3, encoder=ENC)
        assert [c.sequence_index for c in chunks] == list(range(len(chunks)))

    def test_consecutive_chunks_share_overlap(self):
        chunks = chunk_text(_text(100), max_tokens=10, overlap=3, encoder=ENC)
        for prev, nxt in zip(chunks, chunks[1:]):
            assert prev.content[-3:] == nxt.content[:3]

    def test_no_chunk_exceeds_max_tokens(self):
        chunks = chunk_text(_text(57), max_tokens=10, overlap=4, encoder=ENC)
        assert all(c.token_count <= 10 for c in chunks)

    def test_last_window_reaches_end_of_text(self):
        text = _text(57)
        chunks = chunk_text(text, max_tokens=10, overlap=4, encoder=ENC)
        assert text.endswith(chunks[-1].content)

    def test_zero_overlap_partitions_text(self):
        text = _text(25)
        chunks = chunk_text(text, max_tokens=10, overlap=0, encoder=ENC)
        assert "".join(c.content for c in chunks) == text
        assert len(chunks) == 3

    def test_same_input_gives_same_chunks(self):
        text = _text(333)
        first = chunk_text(text, max_tokens=50, overlap=7, encoder=ENC)
        second = chunk_text(text, max_tokens=50, overlap=7, encoder=ENC)
        assert first == second


class TestChunkTextConfiguration:
    """Invalid window configurations are rejected up front."""

    def test_overlap_equal_to_max_tokens_raises(self):
        with pytest.raises(ValueError, match="overlap"):
            chunk_text("abc", max_tokens=10, overlap=10, encoder=ENC)

    def test_overlap_larger_than_max_tokens_raises(self):
        with pytest.raises(ValueError):
            chunk_text("abc", max_tokens=10, overlap=11, encoder=ENC)

    def test_non_positive_max_tokens_raises(self):
        with pytest.raises(ValueError, match="max_tokens"):
            chunk_text("abc", max_tokens=0, overlap=0, encoder=ENC)

    def test_negative_overlap_raises(self):
        with pytest.raises(ValueError, match="overlap"):
            chunk_text("abc", max_tokens=10, overlap=-1, encoder=ENC)


def _cl100k_loadable() -> bool:
    try:
        get_encoder("cl100k_base")
    except Exception:
        return False
    return True


@pytest.mark.skipif(not _cl100k_loadable(), reason="cl100k_base BPE file not available")
class TestChunkTextWithTiktoken:
    """chunk_text() through the default cached tiktoken encoder."""

    TEXT = " ".join(
        f"Section {i}: the perturbation expansion converges for small coupling."
        for i in range(40)
    )

    def test_windows_respect_token_budget(self):
        chunks = chunk_text(self.TEXT, max_tokens=50, overlap=10)

        assert len(chunks) > 1
        assert [c.sequence_index for c in chunks] == list(range(len(chunks)))
        assert all(0 < c.token_count <= 50 for c in chunks)

    def test_windows_cover_document_ends(self):
        chunks = chunk_text(self.TEXT, max_tokens=50, overlap=10)

        assert self.TEXT.startswith(chunks[0].content)
        assert self.TEXT.endswith(chunks[-1].content)

    def test_encoder_is_cached(self):
        assert get_encoder("cl100k_base") is get_encoder("cl100k_base")
