"""
Token-bounded chunking of extracted documents.

The splitter walks a document's tokens in fixed windows, pulls each window
back to the last sentence boundary when one is far enough in, and keeps
going from where the kept text ended. The chunker around it only cares
about metadata: every chunk gets its own copy of the parent's map.
"""
import copy
from typing import Any, List, Optional, Sequence, Tuple

import tiktoken

from .models import Chunk, Document

SENTENCE_BOUNDARIES = (".", "?", "!", "\n")
REPLACEMENT_CHAR = "\ufffd"


class TokenTextSplitter:
    """
    Split text into pieces of at most `chunk_size` tokens.

    Args:
        chunk_size: Target size of each chunk in tokens
        min_chunk_size_chars: A sentence boundary is only used to cut a
            window short when it lies beyond this many characters
        min_chunk_length_to_embed: Pieces this short (after stripping) are dropped
        max_num_chunks: Upper bound on chunks produced from one text
        keep_separator: Keep newlines inside chunks instead of flattening them
        encoding: Object with encode/decode; defaults to tiktoken cl100k_base
    """

    def __init__(
        self,
        chunk_size: int = 800,
        min_chunk_size_chars: int = 350,
        min_chunk_length_to_embed: int = 5,
        max_num_chunks: int = 10000,
        keep_separator: bool = True,
        encoding: Optional[Any] = None
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.min_chunk_size_chars = min_chunk_size_chars
        self.min_chunk_length_to_embed = min_chunk_length_to_embed
        self.max_num_chunks = max_num_chunks
        self.keep_separator = keep_separator
        self._encoding = encoding

    @property
    def encoding(self):
        # cl100k_base is fetched on first use
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding("cl100k_base")
        return self._encoding

    def count_tokens(self, text: str) -> int:
        """Count tokens in text"""
        return len(self.encoding.encode(text))

    def _finish(self, text: str) -> str:
        text = text.strip()
        if not self.keep_separator:
            text = text.replace("\n", " ")
        return text

    def _clean_window(self, tokens: List[int]) -> Tuple[List[int], str]:
        """Take the next window, backing off tokens that end inside a character."""
        window = tokens[:self.chunk_size]
        text = self.encoding.decode(window)
        if len(window) == len(tokens) or not text.endswith(REPLACEMENT_CHAR):
            return window, text
        # A UTF-8 character spans at most four bytes
        for size in range(len(window) - 1, max(len(window) - 4, 0), -1):
            candidate = self.encoding.decode(window[:size])
            if not candidate.endswith(REPLACEMENT_CHAR):
                return window[:size], candidate
        return window, text

    def _tokens_covering(self, window: List[int], chars: int) -> int:
        """Shortest token prefix of window whose text reaches `chars` characters."""
        lo, hi = 1, len(window)
        while lo < hi:
            mid = (lo + hi) // 2
            if len(self.encoding.decode(window[:mid])) >= chars:
                hi = mid
            else:
                lo = mid + 1
        while lo < len(window) and self.encoding.decode(window[:lo]).endswith(REPLACEMENT_CHAR):
            lo += 1
        return lo

    def split_text(self, text: str) -> List[str]:
        if not text or not text.strip():
            return []

        tokens = self.encoding.encode(text)
        chunks: List[str] = []

        while tokens and len(chunks) < self.max_num_chunks:
            window, window_text = self._clean_window(tokens)
            tokens = tokens[len(window):]

            if not window_text.strip():
                continue

            cut = max(window_text.rfind(mark) for mark in SENTENCE_BOUNDARIES)
            if cut != -1 and cut > self.min_chunk_size_chars:
                kept = self._tokens_covering(window, cut + 1)
                # Tokens past the boundary go back to the front of the queue
                tokens = window[kept:] + tokens
                window_text = self.encoding.decode(window[:kept])

            chunk_text = self._finish(window_text)
            if len(chunk_text) > self.min_chunk_length_to_embed:
                chunks.append(chunk_text)

        if not chunks:
            # Short but non-empty text still yields one chunk
            chunks.append(self._finish(text))

        return chunks


class Chunker:
    """Turn documents into chunks, copying metadata onto every piece."""

    def __init__(self, splitter: Optional[TokenTextSplitter] = None):
        self.splitter = splitter or TokenTextSplitter()

    def split(self, documents: Sequence[Document]) -> List[Chunk]:
        chunks: List[Chunk] = []
        for document in documents:
            pieces = self.splitter.split_text(document.content)
            for piece in pieces:
                chunks.append(Chunk(
                    content=piece,
                    metadata=copy.deepcopy(document.metadata),
                    token_count=self.splitter.count_tokens(piece)
                ))
        return chunks
