"""
Shared embedding utilities for the knowledge store.
Provides cached embedding generation using Amazon Titan.
"""
import json
from functools import lru_cache
from typing import List, Tuple

import boto3
import numpy as np
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageUnavailable


def cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First embedding vector
        vec2: Second embedding vector

    Returns:
        Cosine similarity score (-1 to 1), 0.0 when either vector is zero
    """
    norm1 = np.linalg.norm(vec1)
    norm2 = np.linalg.norm(vec2)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(vec1, vec2) / (norm1 * norm2))


class EmbeddingClient:
    """
    Shared embedding client with caching support.

    Uses Amazon Titan Embed Text v2 for generating embeddings.
    Identical chunk text is only embedded once per cache lifetime.
    """

    def __init__(
        self,
        aws_region: str = "us-east-1",
        model_id: str = "amazon.titan-embed-text-v2:0",
        dimensions: int = 1024,
        normalize: bool = True,
        cache_size: int = 1000
    ):
        """
        Initialize the embedding client.

        Args:
            aws_region: AWS region for Bedrock
            model_id: Amazon Titan embedding model ID
            dimensions: Embedding dimensions (256, 512, or 1024)
            normalize: Whether to normalize embeddings
            cache_size: Maximum number of embeddings to cache
        """
        self.bedrock_client = boto3.client(
            service_name="bedrock-runtime",
            region_name=aws_region
        )
        self.model_id = model_id
        self.dimensions = dimensions
        self.normalize = normalize

        self._get_embedding_cached = lru_cache(maxsize=cache_size)(
            self._get_embedding_uncached
        )

    def _get_embedding_uncached(self, text: str) -> Tuple[float, ...]:
        """
        Generate embedding without caching (internal use).
        Returns tuple for hashability in lru_cache.
        """
        request_body = {
            "inputText": text,
            "dimensions": self.dimensions,
            "normalize": self.normalize
        }

        try:
            response = self.bedrock_client.invoke_model(
                modelId=self.model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json"
            )
            response_body = json.loads(response['body'].read())
        except (BotoCoreError, ClientError) as e:
            raise StorageUnavailable(
                f"Embedding backend unavailable: {e}", context={"model_id": self.model_id}
            ) from e

        embedding = response_body.get('embedding')
        if not embedding:
            raise StorageUnavailable(
                "Embedding backend returned no vector", context={"model_id": self.model_id}
            )
        return tuple(embedding)

    def get_embedding(self, text: str) -> np.ndarray:
        """Generate embedding for text with caching."""
        return np.array(self._get_embedding_cached(text))

    def get_embedding_list(self, text: str) -> List[float]:
        """Generate embedding for text, returning as list."""
        return list(self._get_embedding_cached(text))
