"""
Command-line entry point.

    knowledge-ingest upload --tag docs-v1 guide.md api.pdf
    knowledge-ingest repo https://github.com/user/project.git --username me --token ...
    knowledge-ingest tags
    knowledge-ingest ask --model <model-id> --tag docs-v1 "How do I log in?"
    knowledge-ingest generate --model <model-id> --stream "Hello"
"""
import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from .chunking import Chunker, TokenTextSplitter
from .config import Settings
from .embedding import EmbeddingClient
from .errors import KnowledgeBaseError
from .extraction import DocumentExtractor, UnstructuredExtractor
from .ingestion import KnowledgeIngestor
from .llm import create_language_model
from .models import IngestionResult, UploadedFile
from .repository import Credentials, RepositoryAcquirer
from .retrieve import KnowledgeRetriever
from .tag_registry import RedisTagRegistry, TagRegistry
from .vector_store import PineconeVectorStore


@dataclass
class Services:
    ingestor: KnowledgeIngestor
    retriever: KnowledgeRetriever
    tag_registry: TagRegistry


def build_services(settings: Settings, show_progress: bool = True) -> Services:
    """Wire the configured backends together."""
    embedding_client = EmbeddingClient(
        aws_region=settings.aws_region,
        model_id=settings.embedding_model,
        dimensions=settings.embedding_dimensions
    )
    vector_store = PineconeVectorStore(
        index_name=settings.pinecone_index_name,
        embedding_client=embedding_client,
        embedding_dimensions=settings.embedding_dimensions,
        aws_region=settings.aws_region,
        api_key=settings.pinecone_api_key,
        show_progress=show_progress
    )
    tag_registry = RedisTagRegistry.from_url(settings.redis_url, key=settings.rag_tag_key)

    extractor = DocumentExtractor(
        rich_extractor=UnstructuredExtractor(api_key=settings.unstructured_api_key)
        if settings.unstructured_api_key else None
    )
    ingestor = KnowledgeIngestor(
        extractor=extractor,
        chunker=Chunker(TokenTextSplitter(chunk_size=settings.chunk_size)),
        vector_store=vector_store,
        tag_registry=tag_registry,
        acquirer=RepositoryAcquirer(
            max_attempts=settings.clone_max_attempts,
            base_delay=settings.clone_base_delay,
            timeout=settings.clone_timeout
        ),
        staging_root=settings.staging_root,
        max_workers=settings.max_workers,
        show_progress=show_progress
    )
    retriever = KnowledgeRetriever(
        vector_store=vector_store,
        language_model=create_language_model(settings.llm_provider, settings),
        top_k=settings.retrieval_top_k,
        answer_language=settings.answer_language
    )
    return Services(ingestor=ingestor, retriever=retriever, tag_registry=tag_registry)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-ingest",
        description="Ingest files and repositories into tagged knowledge bases and ask questions against them."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Ingest local files under a tag")
    upload.add_argument("--tag", required=True)
    upload.add_argument("files", nargs="+")

    repo = sub.add_parser("repo", help="Clone a repository and ingest its files")
    repo.add_argument("url")
    repo.add_argument("--username")
    repo.add_argument("--token", default=os.getenv("GIT_TOKEN"))
    repo.add_argument("--tag", help="Defaults to the repository name")

    sub.add_parser("tags", help="List registered knowledge tags")

    ask = sub.add_parser("ask", help="Answer a question from one tag's knowledge")
    ask.add_argument("--model", help="Defaults to AWS_BEDROCK_CLAUDE_MODEL")
    ask.add_argument("--tag", required=True)
    ask.add_argument("--stream", action="store_true")
    ask.add_argument("question")

    generate = sub.add_parser("generate", help="Send a message without retrieval")
    generate.add_argument("--model", help="Defaults to AWS_BEDROCK_CLAUDE_MODEL")
    generate.add_argument("--stream", action="store_true")
    generate.add_argument("message")

    return parser


def read_uploads(paths: List[str]) -> List[UploadedFile]:
    uploads = []
    for path in paths:
        with open(path, "rb") as f:
            uploads.append(UploadedFile(filename=os.path.basename(path), content=f.read()))
    return uploads


def print_summary(result: IngestionResult):
    print("\n" + "=" * 60)
    print(f"Ingestion Summary ({result.tag}):")
    print(f"  Processed: {result.files_processed}")
    print(f"  Failed: {result.files_failed}")
    print(f"  Skipped: {result.files_skipped}")
    print(f"  Chunks stored: {result.chunks_stored}")
    print("=" * 60)


def print_stream(fragments) -> int:
    exit_code = 0
    for fragment in fragments:
        if fragment.is_error:
            print()
            print(json.dumps(fragment.error, ensure_ascii=False), file=sys.stderr)
            exit_code = 1
            break
        print(fragment.content, end="", flush=True)
    print()
    return exit_code


def run(args: argparse.Namespace, settings: Settings) -> int:
    services = build_services(settings)
    model = getattr(args, "model", None) or settings.claude_model

    if args.command == "upload":
        uploads = read_uploads(args.files)
        print_summary(services.ingestor.ingest_uploaded(args.tag, uploads))
    elif args.command == "repo":
        credentials = Credentials(username=args.username, token=args.token)
        print_summary(services.ingestor.ingest_repository(args.url, credentials, tag=args.tag))
    elif args.command == "tags":
        for tag in services.tag_registry.list_tags():
            print(tag)
    elif args.command == "ask":
        if args.stream:
            return print_stream(services.retriever.answer_streaming(model, args.tag, args.question))
        print(services.retriever.answer(model, args.tag, args.question))
    elif args.command == "generate":
        if args.stream:
            return print_stream(services.retriever.generate_streaming(model, args.message))
        print(services.retriever.generate(model, args.message))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        return run(args, Settings.from_env())
    except KnowledgeBaseError as e:
        print(json.dumps(e.to_dict(), ensure_ascii=False, default=str), file=sys.stderr)
        return 1
    except OSError as e:
        print(json.dumps({"kind": "InvalidInput", "detail": str(e), "context": {}}), file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(json.dumps({"kind": "InterruptedOperation", "detail": "Interrupted", "context": {}}), file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
