"""
Registry of knowledge tags shared by every ingestion call.

The registry is an insertion-ordered list with set semantics. Concurrent
registrations of the same tag settle on one entry through an idempotent
upsert on the backing store, not through client-side locks.
"""
import logging
import threading
from typing import List

import redis

from .errors import StorageUnavailable, require_text

logger = logging.getLogger(__name__)

# KEYS[1]: ordered list, KEYS[2]: membership set, ARGV[1]: tag
_ADD_IF_ABSENT = """
if redis.call('SADD', KEYS[2], ARGV[1]) == 1 then
    redis.call('RPUSH', KEYS[1], ARGV[1])
    return 1
end
return 0
"""


class TagRegistry:
    """Capability interface: list known tags, add a tag once."""

    def list_tags(self) -> List[str]:
        raise NotImplementedError

    def add_if_absent(self, tag: str) -> None:
        raise NotImplementedError


class InMemoryTagRegistry(TagRegistry):
    """Process-local registry for single-node runs and tests."""

    def __init__(self):
        self._tags: List[str] = []
        self._lock = threading.Lock()

    def list_tags(self) -> List[str]:
        with self._lock:
            return list(self._tags)

    def add_if_absent(self, tag: str) -> None:
        tag = require_text(tag, "tag")
        with self._lock:
            if tag not in self._tags:
                self._tags.append(tag)


class RedisTagRegistry(TagRegistry):
    """
    Tag registry kept in Redis.

    Args:
        client: redis.Redis connection; bytes replies are decoded as UTF-8
        key: Name of the ordered list holding the tags
    """

    def __init__(self, client: redis.Redis, key: str = "ragTag"):
        self.client = client
        self.key = key
        self.members_key = f"{key}:members"
        self._add_script = client.register_script(_ADD_IF_ABSENT)

    @classmethod
    def from_url(cls, url: str, key: str = "ragTag", timeout: float = 5.0) -> "RedisTagRegistry":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True
        )
        return cls(client, key=key)

    def list_tags(self) -> List[str]:
        try:
            values = self.client.lrange(self.key, 0, -1)
        except redis.RedisError as e:
            raise StorageUnavailable(f"Tag registry unreachable: {e}", context={"key": self.key}) from e
        return [v.decode("utf-8") if isinstance(v, bytes) else v for v in values]

    def add_if_absent(self, tag: str) -> None:
        tag = require_text(tag, "tag")
        try:
            added = self._add_script(keys=[self.key, self.members_key], args=[tag])
        except redis.RedisError as e:
            raise StorageUnavailable(f"Tag registry unreachable: {e}", context={"key": self.key}) from e
        if added:
            logger.info("Registered knowledge tag %s", tag)
