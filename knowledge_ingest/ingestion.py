"""
Ingestion pipelines: uploaded files and remote repositories.

Both paths run the same per-file pipeline (extract, chunk, tag, persist) on a
thread pool. A file that cannot be extracted is counted and skipped; a store
outage or a cancellation ends the whole call. The knowledge tag is
registered once per call, after every file has been handled.
"""
import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Sequence

from tqdm import tqdm

from .chunking import Chunker
from .discovery import FileDiscovery
from .errors import InterruptedOperation, InvalidInput, KnowledgeBaseError, require_text
from .extraction import DocumentExtractor, Source
from .models import KNOWLEDGE_KEY, IngestionResult, UploadedFile
from .repository import Credentials, RepositoryAcquirer, project_name, release
from .tag_registry import TagRegistry
from .vector_store import VectorStore

logger = logging.getLogger(__name__)


class KnowledgeIngestor:
    """
    Ingest files into the vector store under one knowledge tag per call.

    Args:
        extractor: Turns a path or upload into Documents
        chunker: Splits Documents into Chunks
        vector_store: Destination for tagged chunks
        tag_registry: Registry of known tags
        acquirer: Clones repositories (only needed for ingest_repository)
        staging_root: Parent directory for per-call checkouts
        max_workers: Files processed in parallel
        show_progress: Show a tqdm bar while files are processed
    """

    def __init__(
        self,
        extractor: DocumentExtractor,
        chunker: Chunker,
        vector_store: VectorStore,
        tag_registry: TagRegistry,
        acquirer: Optional[RepositoryAcquirer] = None,
        staging_root: str = "./git-cloned-repo",
        max_workers: int = 4,
        show_progress: bool = False
    ):
        self.extractor = extractor
        self.chunker = chunker
        self.vector_store = vector_store
        self.tag_registry = tag_registry
        self.acquirer = acquirer or RepositoryAcquirer()
        self.staging_root = staging_root
        self.max_workers = max(1, max_workers)
        self.show_progress = show_progress

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], what: str):
        if cancel_event is not None and cancel_event.is_set():
            raise InterruptedOperation(f"Ingestion cancelled before {what}", context={"at": what})

    def process_single_file(
        self,
        tag: str,
        source: Source,
        cancel_event: Optional[threading.Event] = None
    ) -> Dict[str, Any]:
        """
        Extract, chunk, tag and persist one file.

        Returns a status dict; recoverable failures are reported in it, fatal
        ones (store outage, cancellation) are raised.
        """
        name = source.filename if isinstance(source, UploadedFile) else str(source)
        self._check_cancelled(cancel_event, name)

        try:
            documents = self.extractor.extract(source)
            chunks = self.chunker.split(documents)
        except KnowledgeBaseError as e:
            if not e.recoverable:
                raise
            logger.warning("Skipping %s: %s", name, e)
            return {"status": "failed", "filename": name, "error": str(e)}
        except Exception as e:
            # Parsers raise whatever they like on malformed input
            logger.warning("Skipping %s: %s: %s", name, type(e).__name__, e)
            return {"status": "failed", "filename": name, "error": f"{type(e).__name__}: {e}"}

        for chunk in chunks:
            chunk.metadata[KNOWLEDGE_KEY] = tag

        stored = 0
        if chunks:
            self._check_cancelled(cancel_event, f"persisting {name}")
            stored = self.vector_store.persist(chunks)

        logger.debug("Stored %d chunk(s) from %s under %s", stored, name, tag)
        return {"status": "success", "filename": name, "chunks": stored}

    def _process_files(
        self,
        tag: str,
        sources: Sequence[Source],
        result: IngestionResult,
        cancel_event: Optional[threading.Event]
    ) -> List[Dict[str, Any]]:
        # Workers watch `abort` so an outage stops them before their next persist
        abort = threading.Event()
        watch = _EitherEvent(abort, cancel_event)
        outcomes: List[Dict[str, Any]] = []

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            future_to_source = {
                executor.submit(self.process_single_file, tag, source, watch): source
                for source in sources
            }

            with tqdm(total=len(sources), desc="Ingesting files", unit="file",
                      disable=not self.show_progress) as pbar:
                for future in as_completed(future_to_source):
                    try:
                        outcome = future.result()
                    except BaseException:
                        abort.set()
                        raise
                    outcomes.append(outcome)

                    if outcome["status"] == "success":
                        result.files_processed += 1
                        result.chunks_stored += outcome["chunks"]
                        pbar.set_postfix_str(f"✓ {os.path.basename(outcome['filename'])}")
                    else:
                        result.files_failed += 1
                        pbar.set_postfix_str(f"✗ {os.path.basename(outcome['filename'])}")

                    pbar.update(1)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return outcomes

    def ingest_uploaded(
        self,
        tag: str,
        uploads: Sequence[UploadedFile],
        cancel_event: Optional[threading.Event] = None
    ) -> IngestionResult:
        """
        Store uploaded files under tag.

        Raises:
            InvalidInput: empty tag, no files, or a file without a name
            StorageUnavailable: the vector store or registry failed
            InterruptedOperation: cancel_event was set
        """
        tag = require_text(tag, "tag")
        if not uploads:
            raise InvalidInput("At least one file is required", context={"field": "files"})
        for upload in uploads:
            require_text(upload.filename, "filename")

        logger.info("Ingesting %d uploaded file(s) under %s", len(uploads), tag)
        result = IngestionResult(tag=tag)
        self._process_files(tag, uploads, result, cancel_event)
        self._check_cancelled(cancel_event, "tag registration")
        self.tag_registry.add_if_absent(tag)

        logger.info(
            "Ingested %s: %d processed, %d failed, %d chunks",
            tag, result.files_processed, result.files_failed, result.chunks_stored
        )
        return result

    def staging_path(self, repo_url: str) -> str:
        """A fresh checkout location for one call."""
        return os.path.join(self.staging_root, f"{project_name(repo_url)}-{uuid.uuid4().hex[:12]}")

    def ingest_repository(
        self,
        repo_url: str,
        credentials: Optional[Credentials] = None,
        tag: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> IngestionResult:
        """
        Clone repo_url and store its supported files.

        The tag defaults to the repository's project name. The checkout is
        deleted before returning, whatever the outcome.

        Raises:
            InvalidInput: the URL or tag is empty
            RepositoryUnavailable: cloning failed on every attempt
            StorageUnavailable: the vector store or registry failed
            InterruptedOperation: cancel_event was set
        """
        repo_url = require_text(repo_url, "repo_url")
        tag = require_text(tag, "tag") if tag is not None else project_name(repo_url)
        staging_path = self.staging_path(repo_url)

        result = IngestionResult(tag=tag)
        try:
            self.acquirer.acquire(repo_url, credentials, staging_path, cancel_event)

            discovery = FileDiscovery()
            files = list(discovery.discover(staging_path, cancel_event))
            result.files_skipped = discovery.skipped
            result.files_failed = len(discovery.failed)
            logger.info("Found %d candidate file(s) in %s", len(files), repo_url)

            self._process_files(tag, files, result, cancel_event)
            self._check_cancelled(cancel_event, "tag registration")
            self.tag_registry.add_if_absent(tag)
        finally:
            release(staging_path)
            logger.debug("Removed checkout %s", staging_path)

        logger.info(
            "Ingested %s as %s: %d processed, %d failed, %d skipped, %d chunks",
            repo_url, tag, result.files_processed, result.files_failed,
            result.files_skipped, result.chunks_stored
        )
        return result


class _EitherEvent:
    """Looks set when any of the wrapped events is set."""

    def __init__(self, *events: Optional[threading.Event]):
        self._events = [e for e in events if e is not None]

    def is_set(self) -> bool:
        return any(e.is_set() for e in self._events)
