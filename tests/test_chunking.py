"""Tests for the chunking module."""
import pytest
from unittest.mock import MagicMock, patch

from knowledge_ingest.chunking import Chunker, TokenTextSplitter
from knowledge_ingest.models import Document


class TestTokenTextSplitter:
    """Tests for TokenTextSplitter."""

    def test_empty_text(self, splitter):
        assert splitter.split_text("") == []
        assert splitter.split_text("   \n ") == []

    def test_short_text_single_chunk(self, splitter):
        assert splitter.split_text("Hello world!") == ["Hello world!"]

    def test_text_shorter_than_embed_minimum_still_kept(self, splitter):
        """Non-empty input never disappears."""
        assert splitter.split_text("Hi") == ["Hi"]

    def test_long_text_respects_chunk_size(self, splitter):
        text = "The quick brown fox. " * 30
        chunks = splitter.split_text(text)

        assert len(chunks) > 1
        for chunk in chunks:
            assert len(chunk) <= splitter.chunk_size

    def test_cuts_at_sentence_boundary(self, splitter):
        text = "The quick brown fox. " * 30
        for chunk in splitter.split_text(text):
            assert chunk.endswith(".")

    def test_no_text_lost(self, splitter):
        text = "The quick brown fox. " * 30
        joined = "".join(splitter.split_text(text)).replace(" ", "")
        assert joined == text.replace(" ", "")

    def test_boundary_too_early_is_ignored(self, char_encoding):
        """A boundary inside the first min_chunk_size_chars does not shorten the window."""
        splitter = TokenTextSplitter(chunk_size=50, min_chunk_size_chars=30, encoding=char_encoding)
        text = "Short. " + "x" * 200
        first = splitter.split_text(text)[0]
        assert len(first) == 50

    def test_max_num_chunks(self, char_encoding):
        splitter = TokenTextSplitter(chunk_size=10, min_chunk_size_chars=0, max_num_chunks=3, encoding=char_encoding)
        assert len(splitter.split_text("abcdefghij" * 10)) == 3

    def test_keep_separator_false_flattens_newlines(self, char_encoding):
        splitter = TokenTextSplitter(keep_separator=False, encoding=char_encoding)
        assert splitter.split_text("line one\nline two") == ["line one line two"]

    def test_keep_separator_true_keeps_newlines(self, char_encoding):
        splitter = TokenTextSplitter(encoding=char_encoding)
        assert splitter.split_text("line one\nline two") == ["line one\nline two"]

    def test_multibyte_characters_never_split(self, byte_encoding):
        splitter = TokenTextSplitter(chunk_size=50, encoding=byte_encoding)
        text = "北京是中国的首都" * 100

        chunks = splitter.split_text(text)

        assert len(chunks) > 1
        assert not any("\ufffd" in chunk for chunk in chunks)
        assert "".join(chunks) == text

    def test_multibyte_text_cut_at_sentence_boundary(self, byte_encoding):
        splitter = TokenTextSplitter(chunk_size=50, min_chunk_size_chars=5, encoding=byte_encoding)
        text = "首都是北京. " * 40

        chunks = splitter.split_text(text)

        assert not any("\ufffd" in chunk for chunk in chunks)
        assert all(chunk.endswith(".") for chunk in chunks)
        assert "".join(chunks).replace(" ", "") == text.replace(" ", "")

    def test_count_tokens(self, splitter):
        assert splitter.count_tokens("abcde") == 5

    def test_invalid_chunk_size(self):
        with pytest.raises(ValueError):
            TokenTextSplitter(chunk_size=0)

    @patch("knowledge_ingest.chunking.tiktoken")
    def test_encoding_loaded_lazily(self, mock_tiktoken):
        mock_tiktoken.get_encoding.return_value = MagicMock()
        splitter = TokenTextSplitter()
        mock_tiktoken.get_encoding.assert_not_called()

        splitter.encoding
        splitter.encoding
        mock_tiktoken.get_encoding.assert_called_once_with("cl100k_base")


class TestChunker:
    """Tests for Chunker metadata propagation."""

    def test_chunk_count_at_least_document_count(self, chunker, sample_documents):
        chunks = chunker.split(sample_documents)
        assert len(chunks) >= len(sample_documents)

    def test_long_document_splits(self, chunker, sample_documents):
        chunks = chunker.split(sample_documents[:1])
        assert len(chunks) == 2

    def test_metadata_equals_source(self, chunker, sample_documents):
        chunks = chunker.split(sample_documents)
        sources = {d.metadata["source"]: d.metadata for d in sample_documents}
        for chunk in chunks:
            assert chunk.metadata == sources[chunk.metadata["source"]]

    def test_chunk_metadata_not_aliased(self, chunker, sample_documents):
        document = sample_documents[0]
        chunks = chunker.split([document])

        chunks[0].metadata["knowledge"] = "docs-v1"
        chunks[0].metadata["tags"].append("changed")

        assert "knowledge" not in document.metadata
        assert document.metadata["tags"] == ["ops"]
        assert "knowledge" not in chunks[1].metadata

    def test_source_mutation_not_seen_by_chunks(self, chunker, sample_documents):
        document = sample_documents[1]
        chunks = chunker.split([document])

        document.metadata["source"] = "renamed.txt"
        assert chunks[0].metadata["source"] == "note.txt"

    def test_empty_document_yields_no_chunks(self, chunker):
        assert chunker.split([Document(content="", metadata={"source": "empty.txt"})]) == []

    def test_token_count_recorded(self, chunker):
        chunks = chunker.split([Document(content="Hello world!", metadata={})])
        assert chunks[0].token_count == len("Hello world!")

    def test_unique_ids(self, chunker, sample_documents):
        chunks = chunker.split(sample_documents)
        assert len({c.id for c in chunks}) == len(chunks)
