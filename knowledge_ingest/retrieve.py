"""
Tag-scoped retrieval and grounded prompt assembly.

A question is answered by fetching the top-K chunks of one knowledge tag,
concatenating their text in rank order into a system instruction, and
sending [user question, system instruction] to the language model.
"""
import logging
import threading
from typing import Iterator, List, Optional

from .errors import InterruptedOperation, KnowledgeBaseError, require_text
from .llm import LanguageModel, Message, system_message, user_message
from .models import ResponseFragment, RetrievalResult
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5

SYSTEM_PROMPT = """Use the information from the DOCUMENTS section to provide accurate answers but act as if you knew this information innately.
If unsure, simply state that you don't know.
Another thing you need to note is that your reply must be in {language}!
DOCUMENTS:
    {documents}
"""


def collect_documents(results: List[RetrievalResult]) -> str:
    """Concatenate result texts in ranking order."""
    return "".join(result.content for result in results)


def build_system_prompt(documents: str, language: str) -> str:
    return SYSTEM_PROMPT.format(documents=documents, language=language)


class KnowledgeRetriever:
    """
    Answer questions against one knowledge tag.

    Args:
        vector_store: Store searched with a hard tag filter
        language_model: Provider used for answers
        top_k: Number of chunks placed in the prompt
        answer_language: Language the model is told to reply in
    """

    def __init__(
        self,
        vector_store: VectorStore,
        language_model: LanguageModel,
        top_k: int = DEFAULT_TOP_K,
        answer_language: str = "Chinese"
    ):
        self.vector_store = vector_store
        self.language_model = language_model
        self.top_k = top_k
        self.answer_language = answer_language

    def retrieve(self, tag: str, query: str) -> List[RetrievalResult]:
        """Top-K chunks of tag for query, best match first."""
        tag = require_text(tag, "tag")
        query = require_text(query, "query")
        results = self.vector_store.search(query, tag, self.top_k)
        logger.info("Retrieved %d chunk(s) for tag %s", len(results), tag)
        return results

    def build_messages(self, query: str, results: List[RetrievalResult]) -> List[Message]:
        """The user's question followed by the grounded system instruction."""
        documents = collect_documents(results)
        return [
            user_message(query),
            system_message(build_system_prompt(documents, self.answer_language)),
        ]

    def prepare(self, tag: str, query: str) -> List[Message]:
        results = self.retrieve(tag, query)
        return self.build_messages(query, results)

    def answer(self, model: str, tag: str, query: str) -> str:
        model = require_text(model, "model")
        tag = require_text(tag, "tag")
        query = require_text(query, "query")
        return self.language_model.complete(self.prepare(tag, query), model)

    def answer_streaming(
        self,
        model: str,
        tag: str,
        query: str,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[ResponseFragment]:
        """
        Stream an answer grounded in tag's chunks.

        Validation and retrieval happen before this returns; the model call
        starts when the iterator is consumed. A provider failure ends the
        stream with an error fragment.
        """
        model = require_text(model, "model")
        tag = require_text(tag, "tag")
        query = require_text(query, "query")
        messages = self.prepare(tag, query)
        return self._stream(messages, model, cancel_event)

    def generate(self, model: str, message: str) -> str:
        """Plain completion without retrieval."""
        model = require_text(model, "model")
        message = require_text(message, "message")
        return self.language_model.complete([user_message(message)], model)

    def generate_streaming(
        self,
        model: str,
        message: str,
        cancel_event: Optional[threading.Event] = None
    ) -> Iterator[ResponseFragment]:
        model = require_text(model, "model")
        message = require_text(message, "message")
        return self._stream([user_message(message)], model, cancel_event)

    def _stream(
        self,
        messages: List[Message],
        model: str,
        cancel_event: Optional[threading.Event]
    ) -> Iterator[ResponseFragment]:
        try:
            for fragment in self.language_model.stream(messages, model):
                if cancel_event is not None and cancel_event.is_set():
                    raise InterruptedOperation("Streaming cancelled", context={"model": model})
                yield fragment
        except InterruptedOperation:
            raise
        except KnowledgeBaseError as e:
            logger.error("Stream from %s failed: %s", model, e)
            yield ResponseFragment(finish_reason="error", error=e.to_dict())
