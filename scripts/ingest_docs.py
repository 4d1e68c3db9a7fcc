#!/usr/bin/env python3
"""
Build the vector index from the documents folder.

Run from the project root:
    python -m scripts.ingest_docs
    python -m scripts.ingest_docs --docs-folder ./dokumen_ppid --store ./data/vectorstore

Reads PDF, Markdown and WhatsApp chat exports, splits them, embeds every
chunk with Ollama and writes ``vectors.json``. A running service picks the
new index up on its next refresh. Any embedding failure aborts the run
and leaves the previous index in place.
"""
import argparse
import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ppid_bot.core.config import settings  # noqa: E402
from ppid_bot.core.exceptions import AppException  # noqa: E402
from ppid_bot.core.logging import get_logger, setup_logging  # noqa: E402
from ppid_bot.rag.embeddings import OllamaEmbeddings  # noqa: E402
from ppid_bot.rag.loader import list_source_files  # noqa: E402
from ppid_bot.rag.retriever import build_index  # noqa: E402
from ppid_bot.rag.vector_store import VectorStore  # noqa: E402

logger = get_logger("ingest_docs")


class Colors:
    GREEN = "\033[92m"
    RED = "\033[91m"
    YELLOW = "\033[93m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build the PPID knowledge index")
    parser.add_argument("--docs-folder", default=settings.DOCS_FOLDER, help="folder with .pdf, .md and .txt files")
    parser.add_argument("--store", default=settings.VECTOR_STORE_PATH, help="vector store directory")
    parser.add_argument("--chunk-size", type=int, default=settings.RAG_CHUNK_SIZE)
    parser.add_argument("--chunk-overlap", type=int, default=settings.RAG_CHUNK_OVERLAP)
    parser.add_argument("--verbose", action="store_true", help="human-readable debug logs")
    return parser.parse_args(argv)


async def ingest(args: argparse.Namespace) -> int:
    docs_folder = Path(args.docs_folder)
    files = list_source_files(docs_folder)
    if not files:
        print(f"{Colors.YELLOW}No documents found in {docs_folder}{Colors.RESET}")
        return 1

    print(f"{Colors.BOLD}Indexing {len(files)} file(s) from {docs_folder}{Colors.RESET}")
    for entry in files:
        print(f"  - {entry['name']}")

    try:
        index = await build_index(
            docs_folder,
            VectorStore(args.store),
            OllamaEmbeddings(),
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
        )
    except AppException as exc:
        print(f"{Colors.RED}Indexing failed: {exc.message}{Colors.RESET}")
        return 1

    print(f"{Colors.GREEN}Done: {len(index)} chunks written to {args.store}{Colors.RESET}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(level="DEBUG" if args.verbose else "INFO", json_format=not args.verbose, app_name="ingest-docs")
    return asyncio.run(ingest(args))


if __name__ == "__main__":
    sys.exit(main())
