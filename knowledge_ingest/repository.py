"""
Clone remote repositories into a local staging directory.

Acquisition always starts from an empty staging path and retries transient
failures with a linear backoff. Cleaning the checkout after use belongs to
the caller.
"""
import errno
import logging
import os
import shutil
import stat
import sys
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import quote, urlsplit, urlunsplit

from git import GitCommandError, Repo

from .errors import InterruptedOperation, InvalidInput, RepositoryUnavailable, require_text
from .models import CloneAttempt

logger = logging.getLogger(__name__)


@dataclass
class Credentials:
    """Username and access token for HTTPS clones."""
    username: Optional[str] = None
    token: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, token=***)"


def project_name(repo_url: str) -> str:
    """
    Derive the default knowledge tag from a repository URL.

    "https://github.com/user/my-repo.git" -> "my-repo"
    """
    repo_url = require_text(repo_url, "repo_url")
    name = repo_url.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[:-len(".git")]
    if not name:
        raise InvalidInput(f"Cannot derive a project name from {repo_url}", context={"repo_url": repo_url})
    return name


def authenticated_url(repo_url: str, credentials: Optional[Credentials]) -> str:
    """Embed credentials into an http(s) URL; other schemes pass through."""
    if credentials is None or not (credentials.username or credentials.token):
        return repo_url
    parts = urlsplit(repo_url)
    if parts.scheme not in ("http", "https"):
        return repo_url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    userinfo = quote(credentials.username or "", safe="")
    if credentials.token:
        userinfo += ":" + quote(credentials.token, safe="")
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


def _handle_remove_readonly(func, path, exc):
    # git marks pack files read-only
    excvalue = exc[1] if isinstance(exc, tuple) else exc
    if func in (os.rmdir, os.remove, os.unlink) and getattr(excvalue, "errno", None) == errno.EACCES:
        os.chmod(path, stat.S_IWRITE)
        func(path)
    else:
        raise excvalue


def release(staging_path) -> None:
    """Remove a checkout (or anything else) at staging_path."""
    path = os.fspath(staging_path)
    if os.path.isdir(path) and not os.path.islink(path):
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=_handle_remove_readonly)
    elif os.path.lexists(path):
        os.remove(path)


class RepositoryAcquirer:
    """
    Clone repositories with bounded retries.

    Args:
        max_attempts: Clone attempts before giving up
        base_delay: Seconds; attempt k waits k * base_delay before attempt k + 1
        timeout: Seconds a transfer may stall before git aborts the attempt
        clone: Replacement for Repo.clone_from (same signature)
        sleep: Replacement for time.sleep when no cancel event is given
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        timeout: int = 300,
        clone: Optional[Callable[..., Repo]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.timeout = timeout
        self._clone = clone or Repo.clone_from
        self._sleep = sleep

    def _clone_env(self) -> dict:
        return {
            "GIT_TERMINAL_PROMPT": "0",
            "GIT_HTTP_LOW_SPEED_LIMIT": "1",
            "GIT_HTTP_LOW_SPEED_TIME": str(int(self.timeout)),
        }

    def backoff(self, attempt_number: int) -> float:
        return attempt_number * self.base_delay

    def _check_cancelled(self, cancel_event: Optional[threading.Event], staging_path: str):
        if cancel_event is not None and cancel_event.is_set():
            release(staging_path)
            raise InterruptedOperation("Repository acquisition cancelled", context={"staging_path": staging_path})

    def _wait(self, delay: float, cancel_event: Optional[threading.Event], staging_path: str):
        if cancel_event is None:
            self._sleep(delay)
            return
        if cancel_event.wait(delay):
            self._check_cancelled(cancel_event, staging_path)

    def acquire(
        self,
        repo_url: str,
        credentials: Optional[Credentials],
        staging_path,
        cancel_event: Optional[threading.Event] = None
    ) -> Repo:
        """
        Clone repo_url into staging_path.

        Returns:
            The GitPython Repo of the fresh working tree

        Raises:
            RepositoryUnavailable: every attempt failed
            InterruptedOperation: cancel_event was set
        """
        repo_url = require_text(repo_url, "repo_url")
        staging_path = os.fspath(staging_path)
        clone_url = authenticated_url(repo_url, credentials)

        logger.info("Cloning %s into %s", repo_url, os.path.abspath(staging_path))
        release(staging_path)

        state = CloneAttempt(attempt_number=0, max_attempts=self.max_attempts)
        while not state.exhausted:
            self._check_cancelled(cancel_event, staging_path)
            state.attempt_number += 1
            try:
                repo = self._clone(clone_url, staging_path, env=self._clone_env())
            except (GitCommandError, OSError) as e:
                state.last_error = e
                release(staging_path)
                if state.exhausted:
                    break
                state.wait_before_next = self.backoff(state.attempt_number)
                logger.warning(
                    "Clone attempt %d/%d for %s failed, retrying in %.1fs: %s",
                    state.attempt_number, state.max_attempts, repo_url,
                    state.wait_before_next, _redact(e, clone_url, repo_url)
                )
                self._wait(state.wait_before_next, cancel_event, staging_path)
                continue

            logger.info("Cloned %s on attempt %d", repo_url, state.attempt_number)
            return repo

        logger.error("Giving up on %s after %d attempts", repo_url, state.attempt_number)
        raise RepositoryUnavailable(
            repo_url,
            state.attempt_number,
            state.last_error,
            reason=_redact(state.last_error, clone_url, repo_url)
        ) from state.last_error


def _redact(error: Optional[BaseException], clone_url: str, repo_url: str) -> str:
    text = str(error)
    if clone_url != repo_url:
        text = text.replace(clone_url, repo_url)
    return text
