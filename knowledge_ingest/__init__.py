"""
Knowledge Ingest - Tagged Knowledge Ingestion & Retrieval

Ingests uploaded files and cloned git repositories into a vector store, one
knowledge tag per batch, and answers questions grounded in the chunks of a
single tag.
"""

from .chunking import Chunker, TokenTextSplitter
from .config import Settings
from .discovery import FileDiscovery, discover
from .embedding import EmbeddingClient, cosine_similarity
from .errors import (
    ExtractionFailed,
    InterruptedOperation,
    InvalidInput,
    KnowledgeBaseError,
    LanguageModelError,
    RepositoryUnavailable,
    StorageUnavailable,
)
from .extraction import DocumentExtractor, TextFileExtractor, UnstructuredExtractor
from .ingestion import KnowledgeIngestor
from .llm import BedrockLanguageModel, LanguageModel, OpenAILanguageModel, create_language_model
from .models import Chunk, Document, IngestionResult, ResponseFragment, RetrievalResult, UploadedFile
from .repository import Credentials, RepositoryAcquirer
from .retrieve import KnowledgeRetriever
from .tag_registry import InMemoryTagRegistry, RedisTagRegistry, TagRegistry
from .vector_store import InMemoryVectorStore, PineconeVectorStore, VectorStore

__all__ = [
    "Chunker",
    "TokenTextSplitter",
    "Settings",
    "FileDiscovery",
    "discover",
    "EmbeddingClient",
    "cosine_similarity",
    "KnowledgeBaseError",
    "ExtractionFailed",
    "RepositoryUnavailable",
    "StorageUnavailable",
    "InvalidInput",
    "InterruptedOperation",
    "LanguageModelError",
    "DocumentExtractor",
    "TextFileExtractor",
    "UnstructuredExtractor",
    "KnowledgeIngestor",
    "LanguageModel",
    "BedrockLanguageModel",
    "OpenAILanguageModel",
    "create_language_model",
    "Chunk",
    "Document",
    "IngestionResult",
    "ResponseFragment",
    "RetrievalResult",
    "UploadedFile",
    "Credentials",
    "RepositoryAcquirer",
    "KnowledgeRetriever",
    "TagRegistry",
    "InMemoryTagRegistry",
    "RedisTagRegistry",
    "VectorStore",
    "InMemoryVectorStore",
    "PineconeVectorStore",
]
