"""
Runtime settings read from the environment (and a local .env file).
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import InvalidInput

load_dotenv()


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise InvalidInput(
            f"{name} must be an integer, got {value!r}", context={"variable": name}
        ) from e


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise InvalidInput(
            f"{name} must be a number, got {value!r}", context={"variable": name}
        ) from e


@dataclass
class Settings:
    """Connection details and tuning values for every backend."""

    aws_region: str = "us-east-1"
    embedding_model: str = "amazon.titan-embed-text-v2:0"
    embedding_dimensions: int = 1024
    claude_model: Optional[str] = None

    pinecone_api_key: Optional[str] = None
    pinecone_index_name: Optional[str] = None
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"

    unstructured_api_key: Optional[str] = None

    redis_url: str = "redis://localhost:6379/0"
    rag_tag_key: str = "ragTag"

    llm_provider: str = "bedrock"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434/v1"

    staging_root: str = "./git-cloned-repo"
    clone_max_attempts: int = 3
    clone_base_delay: float = 2.0
    clone_timeout: int = 300

    retrieval_top_k: int = 5
    answer_language: str = "Chinese"
    chunk_size: int = 800
    max_workers: int = 4

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            aws_region=os.getenv("AWS_DEFAULT_REGION", "us-east-1"),
            embedding_model=os.getenv("AWS_BEDROCK_TITAN_EMBEDDING_MODEL", "amazon.titan-embed-text-v2:0"),
            embedding_dimensions=_int("EMBEDDING_DIMENSIONS", 1024),
            claude_model=os.getenv("AWS_BEDROCK_CLAUDE_MODEL"),
            pinecone_api_key=os.getenv("PINECONE_API_KEY"),
            pinecone_index_name=os.getenv("PINECONE_INDEX_NAME"),
            pinecone_cloud=os.getenv("PINECONE_CLOUD", "aws"),
            pinecone_region=os.getenv("PINECONE_REGION", "us-east-1"),
            unstructured_api_key=os.getenv("UNSTRUCTURED_API_KEY"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            rag_tag_key=os.getenv("RAG_TAG_KEY", "ragTag"),
            llm_provider=os.getenv("LLM_PROVIDER", "bedrock"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL"),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434/v1"),
            staging_root=os.getenv("STAGING_ROOT", "./git-cloned-repo"),
            clone_max_attempts=_int("CLONE_MAX_ATTEMPTS", 3),
            clone_base_delay=_float("CLONE_BASE_DELAY", 2.0),
            clone_timeout=_int("CLONE_TIMEOUT", 300),
            retrieval_top_k=_int("RETRIEVAL_TOP_K", 5),
            answer_language=os.getenv("ANSWER_LANGUAGE", "Chinese"),
            chunk_size=_int("CHUNK_SIZE", 800),
            max_workers=_int("MAX_WORKERS", 4),
        )
