"""Tests for the vector stores."""
import pytest
from unittest.mock import MagicMock, patch

from knowledge_ingest.errors import StorageUnavailable
from knowledge_ingest.models import Chunk, RetrievalResult
from knowledge_ingest.vector_store import (
    MAX_STORED_CONTENT,
    InMemoryVectorStore,
    PineconeVectorStore,
    knowledge_filter,
    rank_results,
)


def _chunk(content, tag, **metadata):
    metadata["knowledge"] = tag
    return Chunk(content=content, metadata=metadata, token_count=len(content))


def _match(chunk_id, score, metadata):
    match = MagicMock()
    match.id = chunk_id
    match.score = score
    match.metadata = metadata
    return match


class TestRankResults:

    def test_drops_foreign_tags_sorts_and_truncates(self):
        results = [
            RetrievalResult("a", 0.2, "a", {"knowledge": "t1"}),
            RetrievalResult("b", 0.9, "b", {"knowledge": "t2"}),
            RetrievalResult("c", 0.8, "c", {"knowledge": "t1"}),
            RetrievalResult("d", 0.5, "d", {"knowledge": "t1"}),
        ]
        ranked = rank_results(results, "t1", 2)
        assert [r.chunk_id for r in ranked] == ["c", "d"]

    def test_knowledge_filter(self):
        assert knowledge_filter("geo-101") == {"knowledge": {"$eq": "geo-101"}}


class TestInMemoryVectorStore:

    def test_persist_and_search(self, memory_store):
        memory_store.persist([
            _chunk("Paris is the capital of France", "geo-101"),
            _chunk("Berlin is the capital of Germany", "geo-101"),
        ])
        results = memory_store.search("capital of France", "geo-101", top_k=5)

        assert results[0].content == "Paris is the capital of France"
        assert results[0].score >= results[1].score

    def test_search_never_crosses_tags(self, memory_store):
        memory_store.persist([
            _chunk("Paris is the capital of France", "geo-101"),
            _chunk("Paris hotels and capital city travel", "travel"),
            _chunk("France travel capital Paris", "other"),
        ])

        results = memory_store.search("Paris capital France", "geo-101", top_k=5)

        assert len(results) == 1
        assert all(r.metadata["knowledge"] == "geo-101" for r in results)

    def test_unknown_tag_returns_nothing(self, memory_store):
        memory_store.persist([_chunk("Paris is the capital of France", "geo-101")])
        assert memory_store.search("Paris", "empty-tag-xyz") == []

    def test_top_k(self, memory_store):
        memory_store.persist([_chunk(f"note number {i}", "t") for i in range(8)])
        assert len(memory_store.search("note", "t", top_k=5)) == 5

    def test_min_score(self, keyword_embedder):
        store = InMemoryVectorStore(keyword_embedder, min_score=0.5)
        store.persist([_chunk("completely unrelated words", "t")])
        assert store.search("Paris capital", "t") == []

    def test_chunks_by_tag(self, memory_store):
        memory_store.persist([_chunk("one", "a"), _chunk("two", "b")])
        assert len(memory_store) == 2
        assert [c.content for c in memory_store.chunks("b")] == ["two"]


class TestPineconeVectorStore:
    """Tests for PineconeVectorStore with mocked Pinecone."""

    @pytest.fixture
    def mock_store(self):
        with patch("knowledge_ingest.vector_store.Pinecone") as mock_pinecone:
            mock_pc_instance = MagicMock()
            mock_pc_instance.list_indexes.return_value = []
            mock_index = MagicMock()
            mock_pc_instance.Index.return_value = mock_index
            mock_pinecone.return_value = mock_pc_instance

            mock_embed = MagicMock()
            mock_embed.get_embedding_list.return_value = [0.1] * 1024

            store = PineconeVectorStore(
                index_name="test-index",
                embedding_client=mock_embed,
                embedding_dimensions=1024,
                batch_size=2
            )

            store._mock_pc = mock_pc_instance
            store._mock_index = mock_index
            store._mock_embed = mock_embed

            yield store

    def test_init_creates_index(self, mock_store):
        mock_store._mock_pc.create_index.assert_called_once()
        assert mock_store._mock_pc.create_index.call_args.kwargs["dimension"] == 1024

    def test_init_uses_existing_index(self):
        with patch("knowledge_ingest.vector_store.Pinecone") as mock_pinecone:
            mock_pc_instance = MagicMock()
            mock_existing = MagicMock()
            mock_existing.name = "existing-index"
            mock_pc_instance.list_indexes.return_value = [mock_existing]
            mock_pinecone.return_value = mock_pc_instance

            PineconeVectorStore(index_name="existing-index", embedding_client=MagicMock())

            mock_pc_instance.create_index.assert_not_called()

    def test_init_unreachable(self):
        with patch("knowledge_ingest.vector_store.Pinecone") as mock_pinecone:
            mock_pinecone.return_value.list_indexes.side_effect = ConnectionError("no route")

            with pytest.raises(StorageUnavailable):
                PineconeVectorStore(index_name="test-index", embedding_client=MagicMock())

    def test_prepare_vector(self, mock_store):
        chunk = _chunk("Paris is the capital of France", "geo-101", source="geo.txt", page=None, tags=["a", 1])
        vector = mock_store.prepare_vector(chunk)

        assert vector["id"] == chunk.id
        assert len(vector["values"]) == 1024
        assert vector["metadata"] == {
            "knowledge": "geo-101",
            "source": "geo.txt",
            "tags": ["a", "1"],
            "token_count": len("Paris is the capital of France"),
            "content": "Paris is the capital of France",
        }

    def test_prepare_vector_truncates_content(self, mock_store):
        vector = mock_store.prepare_vector(_chunk("x" * (MAX_STORED_CONTENT + 100), "t"))
        assert len(vector["metadata"]["content"]) == MAX_STORED_CONTENT

    def test_persist_batches(self, mock_store):
        chunks = [_chunk(f"chunk {i}", "t") for i in range(5)]
        assert mock_store.persist(chunks) == 5
        assert mock_store._mock_index.upsert.call_count == 3

    def test_persist_unreachable(self, mock_store):
        mock_store._mock_index.upsert.side_effect = RuntimeError("503")
        with pytest.raises(StorageUnavailable):
            mock_store.persist([_chunk("chunk", "t")])

    def test_search_uses_tag_filter(self, mock_store):
        mock_store._mock_index.query.return_value = MagicMock(matches=[
            _match("c1", 0.7, {"knowledge": "geo-101", "content": "Paris is the capital of France"}),
        ])

        results = mock_store.search("capital of France", "geo-101", top_k=5)

        mock_store._mock_index.query.assert_called_once_with(
            vector=[0.1] * 1024,
            filter={"knowledge": {"$eq": "geo-101"}},
            top_k=5,
            include_metadata=True
        )
        assert results[0].content == "Paris is the capital of France"
        assert "content" not in results[0].metadata

    def test_search_rechecks_tag(self, mock_store):
        mock_store._mock_index.query.return_value = MagicMock(matches=[
            _match("c1", 0.4, {"knowledge": "geo-101", "content": "low"}),
            _match("c2", 0.9, {"knowledge": "other", "content": "foreign"}),
            _match("c3", 0.8, {"knowledge": "geo-101", "content": "high"}),
        ])

        results = mock_store.search("q", "geo-101")

        assert [r.content for r in results] == ["high", "low"]
