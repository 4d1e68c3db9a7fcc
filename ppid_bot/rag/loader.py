"""
Source document loading and chunking.

- ``.pdf``: one document per page (PyPDFLoader), type ``pdf``
- ``.md``: whole file verbatim, type ``markdown``
- ``.txt``: exported WhatsApp chats, see ``chat_parser``

A file that fails to load is logged and skipped; the rest of the folder
is still ingested.
"""
import asyncio
from datetime import datetime, timezone
from pathlib import Path

from langchain_community.document_loaders import PyPDFLoader
from langchain_core.documents import Document
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ppid_bot.core.logging import get_logger
from ppid_bot.rag.chat_parser import CHAT_HISTORY_TYPE, parse_whatsapp_chat

logger = get_logger(__name__)

SEPARATORS = ["\n\n", "\n", ". ", " ", ""]

_TYPE_BY_SUFFIX = {
    ".pdf": "pdf",
    ".md": "markdown",
    ".txt": CHAT_HISTORY_TYPE,
}


def _load_pdf(path: Path) -> list[Document]:
    pages = PyPDFLoader(str(path)).load()
    for page in pages:
        page.metadata.update({"source": path.name, "file_name": path.name, "type": "pdf"})
    return pages


def _load_markdown(path: Path) -> list[Document]:
    content = path.read_text(encoding="utf-8")
    return [
        Document(
            page_content=content,
            metadata={"source": path.name, "file_name": path.name, "type": "markdown"},
        )
    ]


def _load_chat(path: Path) -> list[Document]:
    return parse_whatsapp_chat(path.read_text(encoding="utf-8"), path.name)


_LOADERS = {
    ".pdf": _load_pdf,
    ".md": _load_markdown,
    ".txt": _load_chat,
}


def _source_files(docs_folder: Path) -> list[Path]:
    return sorted(
        p for p in docs_folder.iterdir()
        if p.is_file() and p.suffix.lower() in _LOADERS
    )


def load_documents_sync(docs_folder: Path | str) -> list[Document]:
    folder = Path(docs_folder)
    if not folder.exists():
        folder.mkdir(parents=True, exist_ok=True)
        logger.warning("Documents folder not found, created it", extra_data={"path": str(folder)})
        return []

    documents: list[Document] = []
    for path in _source_files(folder):
        loader = _LOADERS[path.suffix.lower()]
        try:
            loaded = loader(path)
        except Exception as exc:
            logger.error(
                "Failed to load document, skipping",
                extra_data={"file": path.name, "error": str(exc)},
            )
            continue
        logger.info("Loaded document", extra_data={"file": path.name, "units": len(loaded)})
        documents.extend(loaded)

    logger.info("Documents loaded", extra_data={"folder": str(folder), "total": len(documents)})
    return documents


async def load_documents(docs_folder: Path | str) -> list[Document]:
    """PDF parsing is CPU-bound; keep it off the event loop."""
    return await asyncio.to_thread(load_documents_sync, docs_folder)


def split_documents(
    documents: list[Document],
    chunk_size: int,
    chunk_overlap: int,
) -> list[Document]:
    """Recursive separator-priority split: paragraph, line, sentence, word, char."""
    if not documents:
        return []
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        length_function=len,
        separators=SEPARATORS,
    )
    chunks = splitter.split_documents(documents)
    logger.info(
        "Split documents into chunks",
        extra_data={"documents": len(documents), "chunks": len(chunks)},
    )
    return chunks


def list_source_files(docs_folder: Path | str) -> list[dict]:
    """Ingestable files in the documents folder, for the operator console."""
    folder = Path(docs_folder)
    if not folder.exists():
        return []

    files = []
    for path in _source_files(folder):
        stat = path.stat()
        files.append({
            "name": path.name,
            "type": _TYPE_BY_SUFFIX[path.suffix.lower()],
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
        })
    return files
