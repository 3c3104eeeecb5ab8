"""Shared pytest fixtures for knowledge-ingest tests."""
import json
import re
import zlib

import numpy as np
import pytest
from unittest.mock import MagicMock, patch

from knowledge_ingest.chunking import Chunker, TokenTextSplitter
from knowledge_ingest.extraction import DocumentExtractor
from knowledge_ingest.ingestion import KnowledgeIngestor
from knowledge_ingest.models import Document
from knowledge_ingest.repository import RepositoryAcquirer
from knowledge_ingest.tag_registry import InMemoryTagRegistry
from knowledge_ingest.vector_store import InMemoryVectorStore


def pytest_addoption(parser):
    """Add command line options for integration tests."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires API credentials)"
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires --run-integration)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="Need --run-integration to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class CharEncoding:
    """One token per character; stands in for tiktoken offline."""

    def encode(self, text):
        return [ord(c) for c in text]

    def decode(self, tokens):
        return "".join(chr(t) for t in tokens)


class ByteEncoding:
    """One token per UTF-8 byte, so windows can end inside a character like tiktoken's."""

    def encode(self, text):
        return list(text.encode("utf-8"))

    def decode(self, tokens):
        return bytes(tokens).decode("utf-8", errors="replace")


class KeywordEmbedder:
    """Hashed bag-of-words vectors, so shared words mean higher similarity."""

    def __init__(self, dimensions=256):
        self.dimensions = dimensions
        self.calls = 0

    def get_embedding(self, text):
        self.calls += 1
        vector = np.zeros(self.dimensions)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[zlib.crc32(word.encode("utf-8")) % self.dimensions] += 1.0
        return vector

    def get_embedding_list(self, text):
        return self.get_embedding(text).tolist()


@pytest.fixture
def char_encoding():
    return CharEncoding()


@pytest.fixture
def byte_encoding():
    return ByteEncoding()


@pytest.fixture
def splitter(char_encoding):
    """Splitter with small windows over a character-level encoding."""
    return TokenTextSplitter(
        chunk_size=100,
        min_chunk_size_chars=30,
        min_chunk_length_to_embed=5,
        encoding=char_encoding
    )


@pytest.fixture
def chunker(char_encoding):
    return Chunker(TokenTextSplitter(encoding=char_encoding))


@pytest.fixture
def keyword_embedder():
    return KeywordEmbedder()


@pytest.fixture
def memory_store(keyword_embedder):
    return InMemoryVectorStore(keyword_embedder)


@pytest.fixture
def tag_registry():
    return InMemoryTagRegistry()


@pytest.fixture
def ingestor(chunker, memory_store, tag_registry, tmp_path):
    """Ingestor wired to in-memory backends and a non-waiting acquirer."""
    return KnowledgeIngestor(
        extractor=DocumentExtractor(rich_extractor=MagicMock()),
        chunker=chunker,
        vector_store=memory_store,
        tag_registry=tag_registry,
        acquirer=RepositoryAcquirer(clone=MagicMock(), sleep=lambda _: None),
        staging_root=str(tmp_path / "staging"),
        max_workers=2
    )


@pytest.fixture
def mock_bedrock_client():
    """Mock AWS Bedrock client."""
    with patch("boto3.client") as mock_client:
        client_instance = MagicMock()
        mock_client.return_value = client_instance
        yield client_instance


@pytest.fixture
def sample_embedding():
    """Sample 1024-dimension embedding vector."""
    return [0.1] * 1024


@pytest.fixture
def mock_embedding_response(sample_embedding):
    """Mock response from Titan embedding API."""
    response_body = MagicMock()
    response_body.read.return_value = json.dumps({"embedding": sample_embedding})
    return {"body": response_body}


@pytest.fixture
def sample_elements():
    """Sample document elements from Unstructured."""
    return [
        {"type": "Title", "text": "Introduction", "metadata": {"page_number": 1}},
        {
            "type": "NarrativeText",
            "text": "This is the first paragraph of the document. It contains important information.",
            "metadata": {"page_number": 1}
        },
        {"type": "Image", "text": "", "metadata": {"page_number": 2}},
        {
            "type": "Table",
            "text": "Header1 | Header2\nValue1 | Value2",
            "metadata": {"page_number": 2}
        }
    ]


@pytest.fixture
def sample_documents():
    return [
        Document(
            content="The deployment guide explains how to roll out the service. " * 20,
            metadata={"source": "guide.md", "section": "deploy", "tags": ["ops"]}
        ),
        Document(content="Short note.", metadata={"source": "note.txt"}),
    ]
