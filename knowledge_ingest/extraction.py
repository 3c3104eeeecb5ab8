"""
Turn source files and uploads into Documents.

Plain text, markdown and source files are decoded locally. Rich formats
(PDF, Word, PowerPoint, HTML) go through the Unstructured partition API.
Every failure surfaces as ExtractionFailed so a batch can skip the file.
"""
import logging
import os
import pathlib
from typing import Any, Dict, List, Optional, Tuple, Union

import unstructured_client
from unstructured_client.models import operations, shared

from .errors import ExtractionFailed
from .models import Document, UploadedFile

logger = logging.getLogger(__name__)

Source = Union[str, os.PathLike, UploadedFile]

RICH_EXTENSIONS = {".pdf", ".doc", ".docx", ".pptx", ".ppt", ".html", ".htm", ".rtf", ".odt", ".epub"}


def _read_source(source: Source) -> Tuple[str, bytes]:
    """Return (file name, raw bytes) for a path or an upload."""
    if isinstance(source, UploadedFile):
        return source.filename, source.content
    path = pathlib.Path(source)
    return str(path), path.read_bytes()


class TextFileExtractor:
    """Decode text-like files without any remote call."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract(self, source: Source) -> List[Document]:
        name = source.filename if isinstance(source, UploadedFile) else str(source)
        try:
            name, raw = _read_source(source)
            text = raw.decode(self.encoding, errors="replace")
        except (OSError, LookupError) as e:
            raise ExtractionFailed(name, str(e)) from e

        # Strip a byte-order mark left by some editors
        text = text.lstrip("\ufeff")
        return [Document(content=text, metadata={"source": name})]


class UnstructuredExtractor:
    """
    Partition rich documents through the Unstructured API.

    Args:
        api_key: Unstructured API key (defaults to UNSTRUCTURED_API_KEY)
        client: Pre-built UnstructuredClient, mainly for tests
    """

    def __init__(self, api_key: Optional[str] = None, client: Optional[Any] = None):
        self.client = client or unstructured_client.UnstructuredClient(
            api_key_auth=api_key or os.getenv("UNSTRUCTURED_API_KEY")
        )

    def _get_optimal_parameters(self, filename: str) -> Dict[str, Any]:
        """Get optimal processing parameters based on file type"""
        ext = pathlib.Path(filename).suffix.lower()

        params: Dict[str, Any] = {
            "languages": ['eng'],
        }

        # PDF: hi_res keeps tables readable
        if ext == '.pdf':
            params.update({
                "strategy": shared.Strategy.HI_RES,
                "pdf_infer_table_structure": True,
                "split_pdf_page": True,
                "split_pdf_allow_failed": True,
            })

        elif ext in ('.pptx', '.ppt', '.docx', '.doc'):
            params.update({
                "strategy": shared.Strategy.HI_RES,
                "infer_table_structure": True,
            })

        elif ext in ('.html', '.htm'):
            params.update({
                "strategy": shared.Strategy.AUTO,
            })

        else:
            params.update({
                "strategy": shared.Strategy.FAST,
            })

        return params

    def extract(self, source: Source) -> List[Document]:
        name = source.filename if isinstance(source, UploadedFile) else str(source)
        try:
            name, raw = _read_source(source)
            params = self._get_optimal_parameters(name)
            req = operations.PartitionRequest(
                partition_parameters=shared.PartitionParameters(
                    files=shared.Files(
                        content=raw,
                        file_name=os.path.basename(name),
                    ),
                    **params
                ),
            )
            res = self.client.general.partition(request=req)
        except Exception as e:
            # The SDK raises its own error types for HTTP and validation failures
            raise ExtractionFailed(name, f"{type(e).__name__}: {e}") from e

        texts = []
        for element in res.elements or []:
            text = (element.get("text") or "").strip()
            if text:
                texts.append(text)

        if not texts:
            raise ExtractionFailed(name, "no text elements returned")

        return [Document(
            content="\n\n".join(texts),
            metadata={"source": name, "element_count": len(texts)}
        )]


class DocumentExtractor:
    """Route each source to the local or the Unstructured extractor by extension."""

    def __init__(
        self,
        text_extractor: Optional[TextFileExtractor] = None,
        rich_extractor: Optional[UnstructuredExtractor] = None,
        rich_extensions=None
    ):
        self.text_extractor = text_extractor or TextFileExtractor()
        self._rich_extractor = rich_extractor
        self.rich_extensions = set(rich_extensions or RICH_EXTENSIONS)

    @property
    def rich_extractor(self) -> UnstructuredExtractor:
        # Built lazily so text-only batches need no API key
        if self._rich_extractor is None:
            self._rich_extractor = UnstructuredExtractor()
        return self._rich_extractor

    def extract(self, source: Source) -> List[Document]:
        name = source.filename if isinstance(source, UploadedFile) else str(source)
        ext = pathlib.Path(name).suffix.lower()

        if ext in self.rich_extensions:
            documents = self.rich_extractor.extract(source)
        else:
            documents = self.text_extractor.extract(source)

        for document in documents:
            document.metadata["source"] = name
            document.metadata["filename"] = os.path.basename(name)
        logger.debug("Extracted %d document(s) from %s", len(documents), name)
        return documents
