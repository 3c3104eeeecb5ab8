"""
Vector stores for tagged chunks.

Both stores expose the same two operations: `persist(chunks)` and
`search(query, tag, top_k)`. Search treats the tag as a hard filter: a result
whose `knowledge` metadata differs from the requested tag is never returned,
whatever the backend sends back.
"""
import logging
import os
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import numpy as np
from pinecone import Pinecone, ServerlessSpec
from tqdm import tqdm

from .embedding import EmbeddingClient, cosine_similarity
from .errors import StorageUnavailable
from .models import KNOWLEDGE_KEY, Chunk, RetrievalResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Pinecone metadata is capped at ~40KB per vector
MAX_STORED_CONTENT = 8000


def knowledge_filter(tag: str) -> Dict[str, Any]:
    """Metadata filter selecting one knowledge partition."""
    return {KNOWLEDGE_KEY: {"$eq": tag}}


def rank_results(results: Sequence[RetrievalResult], tag: str, top_k: int) -> List[RetrievalResult]:
    """Drop foreign-tag results, order by score descending, cut to top_k."""
    kept = [r for r in results if r.metadata.get(KNOWLEDGE_KEY) == tag]
    kept.sort(key=lambda r: r.score, reverse=True)
    return kept[:top_k]


class VectorStore:
    """Capability interface for chunk persistence and tag-scoped search."""

    def persist(self, chunks: Sequence[Chunk]) -> int:
        raise NotImplementedError

    def search(self, query: str, tag: str, top_k: int = 5) -> List[RetrievalResult]:
        raise NotImplementedError


class InMemoryVectorStore(VectorStore):
    """
    Process-local store ranking chunks by cosine similarity.

    Args:
        embedding_client: Anything with get_embedding(text) -> np.ndarray
        min_score: Matches scoring below this are not returned
    """

    def __init__(self, embedding_client: Any, min_score: Optional[float] = None):
        self.embedding_client = embedding_client
        self.min_score = min_score
        self._entries: List[Tuple[Chunk, np.ndarray]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def chunks(self, tag: Optional[str] = None) -> List[Chunk]:
        with self._lock:
            return [c for c, _ in self._entries if tag is None or c.knowledge == tag]

    def persist(self, chunks: Sequence[Chunk]) -> int:
        vectors = [(chunk, np.asarray(self.embedding_client.get_embedding(chunk.content))) for chunk in chunks]
        with self._lock:
            self._entries.extend(vectors)
        return len(vectors)

    def search(self, query: str, tag: str, top_k: int = 5) -> List[RetrievalResult]:
        query_vector = np.asarray(self.embedding_client.get_embedding(query))
        with self._lock:
            candidates = [(c, v) for c, v in self._entries if c.knowledge == tag]

        results = []
        for chunk, vector in candidates:
            score = cosine_similarity(query_vector, vector)
            if self.min_score is not None and score < self.min_score:
                continue
            results.append(RetrievalResult(
                chunk_id=chunk.id,
                score=score,
                content=chunk.content,
                metadata=dict(chunk.metadata)
            ))
        return rank_results(results, tag, top_k)


class PineconeVectorStore(VectorStore):
    """
    Index chunks with embeddings into Pinecone

    Features:
    - Generates embeddings using Amazon Titan
    - Stores the knowledge tag with each vector for filtered search
    - Keeps the chunk text in metadata so search results are self-contained
    - Batch upsert for efficiency
    """

    def __init__(
        self,
        index_name: Optional[str] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        embedding_dimensions: int = 1024,
        aws_region: str = "us-east-1",
        metric: str = "cosine",
        batch_size: int = 100,
        api_key: Optional[str] = None,
        show_progress: bool = False
    ):
        """
        Initialize Pinecone store

        Args:
            index_name: Name of Pinecone index (defaults to PINECONE_INDEX_NAME)
            embedding_client: Shared EmbeddingClient; one is built when omitted
            embedding_dimensions: Embedding dimensions (256, 512, or 1024)
            aws_region: AWS region for Bedrock
            metric: Distance metric (cosine, euclidean, or dotproduct)
            batch_size: Number of vectors to upsert at once
            api_key: Pinecone API key (defaults to PINECONE_API_KEY)
            show_progress: Show tqdm bars while upserting
        """
        self.pc = Pinecone(api_key=api_key or os.getenv("PINECONE_API_KEY"))
        self.index_name = index_name or os.getenv("PINECONE_INDEX_NAME")
        self.embedding_dimensions = embedding_dimensions
        self.batch_size = batch_size
        self.show_progress = show_progress

        self.embedding_client = embedding_client or EmbeddingClient(
            aws_region=aws_region,
            dimensions=embedding_dimensions
        )

        self._setup_index(metric)

    def _call(self, action: str, fn: Callable[..., T], *args, **kwargs) -> T:
        try:
            return fn(*args, **kwargs)
        except StorageUnavailable:
            raise
        except Exception as e:
            # The SDK surfaces HTTP, auth and transport failures with unrelated types
            raise StorageUnavailable(
                f"Pinecone {action} failed: {e}", context={"index": self.index_name}
            ) from e

    def _setup_index(self, metric: str):
        """Create Pinecone index if it doesn't exist"""
        existing = [index.name for index in self._call("list_indexes", self.pc.list_indexes)]

        if self.index_name not in existing:
            logger.info("Creating new index: %s", self.index_name)
            self._call(
                "create_index",
                self.pc.create_index,
                name=self.index_name,
                dimension=self.embedding_dimensions,
                metric=metric,
                spec=ServerlessSpec(
                    cloud=os.getenv("PINECONE_CLOUD", "aws"),
                    region=os.getenv("PINECONE_REGION", "us-east-1")
                )
            )
        else:
            logger.info("Using existing index: %s", self.index_name)

        self.index = self.pc.Index(self.index_name)

    @staticmethod
    def _clean_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
        # Pinecone accepts strings, numbers, booleans and lists of strings; no nulls
        cleaned = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, (str, bool, int, float)):
                cleaned[key] = value
            elif isinstance(value, (list, tuple)):
                cleaned[key] = [str(v) for v in value]
            else:
                cleaned[key] = str(value)
        return cleaned

    def prepare_vector(self, chunk: Chunk) -> Dict[str, Any]:
        """
        Prepare a chunk for Pinecone upsert with filterable metadata

        Args:
            chunk: Chunk carrying its knowledge tag

        Returns:
            Dictionary with id, values, and metadata for Pinecone
        """
        metadata = self._clean_metadata(chunk.metadata)
        metadata["token_count"] = int(chunk.token_count)
        metadata["content"] = chunk.content[:MAX_STORED_CONTENT]

        return {
            "id": chunk.id,
            "values": self.embedding_client.get_embedding_list(chunk.content),
            "metadata": metadata
        }

    def persist(self, chunks: Sequence[Chunk]) -> int:
        """
        Upsert chunks into Pinecone

        Returns:
            Number of vectors upserted
        """
        vectors = [
            self.prepare_vector(chunk)
            for chunk in tqdm(chunks, desc="Preparing vectors", disable=not self.show_progress)
        ]

        total_upserted = 0
        for i in tqdm(range(0, len(vectors), self.batch_size), desc="Upserting batches",
                      disable=not self.show_progress):
            batch = vectors[i:i + self.batch_size]
            self._call("upsert", self.index.upsert, vectors=batch)
            total_upserted += len(batch)

        logger.debug("Upserted %d vectors into %s", total_upserted, self.index_name)
        return total_upserted

    def search(self, query: str, tag: str, top_k: int = 5) -> List[RetrievalResult]:
        """
        Query the index for the top_k chunks of one knowledge tag

        Args:
            query: Text to search for
            tag: Knowledge tag every result must carry
            top_k: Number of results to return
        """
        query_embedding = self.embedding_client.get_embedding_list(query)

        response = self._call(
            "query",
            self.index.query,
            vector=query_embedding,
            filter=knowledge_filter(tag),
            top_k=top_k,
            include_metadata=True
        )

        results = []
        for match in response.matches:
            metadata = dict(match.metadata or {})
            results.append(RetrievalResult(
                chunk_id=match.id,
                score=match.score,
                content=metadata.pop("content", ""),
                metadata=metadata
            ))
        return rank_results(results, tag, top_k)
