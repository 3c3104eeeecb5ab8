"""
Error taxonomy for the knowledge pipeline.

Every failure a caller can see is a KnowledgeBaseError carrying a kind and a
human-readable detail. `recoverable` separates per-file problems that a batch
can skip over from failures that end the enclosing operation.
"""
from typing import Any, Dict, Optional


class KnowledgeBaseError(Exception):
    """Base class for structured pipeline failures."""

    kind: str = "KnowledgeBaseError"
    recoverable: bool = False

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "detail": self.message,
            "context": self.context,
        }


class ExtractionFailed(KnowledgeBaseError):
    """A single file could not be turned into text or chunks."""

    kind = "ExtractionFailed"
    recoverable = True

    def __init__(self, source: str, reason: str):
        super().__init__(
            f"Failed to extract {source}: {reason}",
            context={"source": source},
        )
        self.source = source
        self.reason = reason


class RepositoryUnavailable(KnowledgeBaseError):
    """Cloning failed on every attempt of the retry budget."""

    kind = "RepositoryUnavailable"

    def __init__(
        self,
        repo_url: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        reason: Optional[str] = None
    ):
        detail = f"Repository {repo_url} unavailable after {attempts} attempt(s)"
        if reason or last_error is not None:
            detail += f": {reason or last_error}"
        super().__init__(detail, context={"repo_url": repo_url, "attempts": attempts})
        self.repo_url = repo_url
        self.attempts = attempts
        self.last_error = last_error


class StorageUnavailable(KnowledgeBaseError):
    """The vector store, embedding backend or tag registry could not be reached."""

    kind = "StorageUnavailable"


class InvalidInput(KnowledgeBaseError):
    """Request rejected before any I/O."""

    kind = "InvalidInput"


class InterruptedOperation(KnowledgeBaseError):
    """The caller cancelled the operation."""

    kind = "InterruptedOperation"


class LanguageModelError(KnowledgeBaseError):
    """The model provider failed to produce a response."""

    kind = "LanguageModelError"


def require_text(value: Optional[str], name: str) -> str:
    """Reject None, empty and whitespace-only request fields."""
    if value is None or not str(value).strip():
        raise InvalidInput(f"{name} must not be empty", context={"field": name})
    return str(value).strip()
