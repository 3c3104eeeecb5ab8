"""
Plain data carried between the pipeline stages.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

KNOWLEDGE_KEY = "knowledge"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Document:
    """Extracted text of one source file plus its metadata."""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)


@dataclass
class Chunk:
    """A bounded segment of one Document, ready for the vector store."""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    token_count: int = 0

    @property
    def knowledge(self) -> Optional[str]:
        return self.metadata.get(KNOWLEDGE_KEY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "metadata": self.metadata,
            "token_count": self.token_count
        }


@dataclass
class UploadedFile:
    """Raw bytes of a file submitted by a caller."""
    filename: str
    content: bytes


@dataclass
class RetrievalResult:
    """Represents a single retrieval result with score and metadata."""
    chunk_id: str
    score: float
    content: str
    metadata: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "score": self.score,
            "content": self.content,
            "metadata": self.metadata
        }


@dataclass
class CloneAttempt:
    """State of one repository acquisition while it retries."""
    attempt_number: int
    max_attempts: int
    last_error: Optional[BaseException] = None
    wait_before_next: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt_number >= self.max_attempts


@dataclass
class IngestionResult:
    """Aggregate outcome of one ingestion call."""
    tag: str
    files_processed: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    chunks_stored: int = 0
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "files_processed": self.files_processed,
            "files_failed": self.files_failed,
            "files_skipped": self.files_skipped,
            "chunks_stored": self.chunks_stored,
            "success": self.success
        }


@dataclass
class ResponseFragment:
    """One piece of a streamed model answer."""
    content: str = ""
    finish_reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None
