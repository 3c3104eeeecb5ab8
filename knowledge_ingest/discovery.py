"""
Lazy discovery of ingestible files under a checkout.

Each node gets an explicit decision: version-control directories are pruned,
unsupported or empty files are skipped, everything else is yielded. Files in
a directory come out in lexicographic order before its subdirectories are
entered, so two runs over the same tree yield the same sequence.
"""
import logging
import os
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .errors import InterruptedOperation

logger = logging.getLogger(__name__)

VCS_METADATA_DIR = ".git"

SUPPORTED_EXTENSIONS = {
    # Documents
    ".txt", ".md", ".pdf", ".doc", ".docx", ".rst", ".csv",
    # Source code
    ".java", ".py", ".js", ".ts", ".jsx", ".tsx", ".go", ".rs",
    ".c", ".h", ".cpp", ".hpp", ".cs", ".rb", ".php", ".kt",
    ".scala", ".swift", ".sh", ".sql", ".gradle",
    # Markup and config
    ".html", ".htm", ".xml", ".json", ".yaml", ".yml", ".toml",
    ".properties", ".ini", ".css",
}

PRUNE = "prune"
SKIP = "skip"
ACCEPT = "accept"


class FileDiscovery:
    """
    Walks a directory tree and yields candidate files.

    Counters describe the most recent walk: `skipped` counts files rejected
    by extension or size, `failed` lists (path, error) pairs for entries
    that could not be read.
    """

    def __init__(self, extensions=None, vcs_dir: str = VCS_METADATA_DIR):
        self.extensions = {e.lower() for e in (extensions or SUPPORTED_EXTENSIONS)}
        self.vcs_dir = vcs_dir
        self.skipped = 0
        self.failed: List[Tuple[str, str]] = []

    def _classify_dir(self, entry: os.DirEntry) -> str:
        return PRUNE if entry.name == self.vcs_dir else ACCEPT

    def _classify_file(self, entry: os.DirEntry) -> str:
        # Links may point outside the checkout
        if entry.is_symlink():
            return SKIP
        if Path(entry.name).suffix.lower() not in self.extensions:
            return SKIP
        if entry.stat(follow_symlinks=False).st_size == 0:
            return SKIP
        return ACCEPT

    def _record_failure(self, path: str, error: OSError):
        logger.warning("Failed to access %s: %s", path, error)
        self.failed.append((path, str(error)))

    def discover(self, root, cancel_event: Optional[threading.Event] = None) -> Iterator[Path]:
        """
        Yield supported, non-empty files under root (depth-first).

        Args:
            root: Directory to walk
            cancel_event: When set, the walk stops with InterruptedOperation
        """
        self.skipped = 0
        self.failed = []
        yield from self._walk(str(root), cancel_event)

    def _walk(self, directory: str, cancel_event: Optional[threading.Event]) -> Iterator[Path]:
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self._record_failure(directory, e)
            return

        subdirs = []
        for entry in entries:
            if cancel_event is not None and cancel_event.is_set():
                raise InterruptedOperation(
                    "File discovery cancelled", context={"directory": directory}
                )
            try:
                if entry.is_dir(follow_symlinks=False):
                    if self._classify_dir(entry) == PRUNE:
                        logger.debug("Pruning %s", entry.path)
                    else:
                        subdirs.append(entry.path)
                    continue
                if not (entry.is_symlink() or entry.is_file(follow_symlinks=False)):
                    continue
                decision = self._classify_file(entry)
            except OSError as e:
                self._record_failure(entry.path, e)
                continue

            if decision == SKIP:
                logger.debug("Skipping %s", entry.path)
                self.skipped += 1
                continue
            yield Path(entry.path)

        for subdir in subdirs:
            yield from self._walk(subdir, cancel_event)


def discover(root, cancel_event: Optional[threading.Event] = None) -> Iterator[Path]:
    """Walk root with the default rules."""
    return FileDiscovery().discover(root, cancel_event)
