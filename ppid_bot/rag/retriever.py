"""
Retriever: ingestion pipeline, similarity query and active learning.
"""
from pathlib import Path
from typing import Optional, Protocol

from langchain_core.documents import Document

from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import ExternalServiceException
from ppid_bot.core.logging import get_logger, log_async_operation
from ppid_bot.rag.chat_parser import CHAT_HISTORY_TYPE
from ppid_bot.rag.loader import list_source_files, load_documents, split_documents
from ppid_bot.rag.vector_store import DocumentChunk, EmbeddingDimensionError, VectorIndex, VectorStore

logger = get_logger(__name__)

FAQ_TYPE = "faq"
LEARNING_SOURCE = "admin-training"

KNOWLEDGE_HEADER = "--- [SUMBER INFORMASI UTAMA] ---"
STYLE_HEADER = "--- [CONTOH GAYA BAHASA / PERCAKAPAN LALU] ---"


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_many(self, texts: list[str]) -> list[list[float]]: ...


def format_context(chunks: list[DocumentChunk]) -> str:
    """Knowledge chunks first, then chat-history style examples."""
    knowledge = [c for c in chunks if c.type != CHAT_HISTORY_TYPE]
    style = [c for c in chunks if c.type == CHAT_HISTORY_TYPE]

    sections = []
    if knowledge:
        body = "\n\n".join(
            f"[Dokumen {i}: {c.metadata.get('file_name') or c.source}]\n{c.content.strip()}"
            for i, c in enumerate(knowledge, start=1)
        )
        sections.append(f"{KNOWLEDGE_HEADER}\n{body}")
    if style:
        body = "\n\n---\n\n".join(c.content.strip() for c in style)
        sections.append(f"{STYLE_HEADER}\n{body}")
    return "\n\n".join(sections)


class Retriever:
    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        top_k: int | None = None,
        docs_folder: Path | str | None = None,
    ):
        self.store = store
        self.embedder = embedder
        self.top_k = top_k or settings.RAG_TOP_K
        self.docs_folder = Path(docs_folder or settings.DOCS_FOLDER)

    @property
    def is_ready(self) -> bool:
        return self.store.is_ready

    async def query(self, text: str, k: Optional[int] = None) -> str:
        """
        Context string for ``text``; ``""`` means "no context".

        Empty or missing index and embedding failures all return ``""``.
        """
        index = self.store.index
        if index is None or not len(index):
            logger.debug("Vector store empty or not loaded, no context")
            return ""

        try:
            vector = await self.embedder.embed(text)
        except ExternalServiceException as exc:
            logger.warning("Query embedding failed, continuing without context", extra_data={"error": exc.message})
            return ""

        results = index.search(vector, k or self.top_k)
        for chunk, score in results:
            logger.debug(
                "Retrieved chunk",
                extra_data={"score": round(score, 4), "source": chunk.source, "preview": chunk.content[:30]},
            )
        return format_context([chunk for chunk, _ in results])

    async def add_learning_data(self, question: str, answer: str) -> bool:
        """Append one operator-confirmed Q/A pair as an ``faq`` chunk."""
        content = f"Pertanyaan: {question}\nJawaban: {answer}"
        try:
            vector = await self.embedder.embed(content)
        except ExternalServiceException as exc:
            logger.error("Learning data not embedded", extra_data={"error": exc.message})
            return False

        chunk = DocumentChunk(
            content=content,
            source=LEARNING_SOURCE,
            type=FAQ_TYPE,
            embedding=tuple(vector),
        )
        try:
            updated = await self.store.append(chunk)
        except EmbeddingDimensionError as exc:
            logger.error(
                "Learning data does not match the index embedding model",
                extra_data={"expected": exc.expected, "got": exc.got},
            )
            return False
        except OSError as exc:
            logger.error("Learning data not persisted", extra_data={"error": str(exc)})
            return False

        logger.info("Learning data added", extra_data={"chunks": len(updated), "question": question[:50]})
        return True

    async def sample_context(self, seed_query: str = "apa saja layanan yang tersedia", limit: int = 1500) -> str:
        return (await self.query(seed_query))[:limit]

    def list_source_files(self) -> list[dict]:
        return list_source_files(self.docs_folder)

    async def reload_if_stale(self) -> bool:
        return await self.store.reload_if_stale()


async def embed_documents(documents: list[Document], embedder: Embedder) -> VectorIndex:
    """Any embedding failure propagates and aborts the run."""
    vectors = await embedder.embed_many([d.page_content for d in documents])
    chunks = [
        DocumentChunk(
            content=doc.page_content,
            source=str(doc.metadata.get("source", "Unknown")),
            type=str(doc.metadata.get("type", "markdown")),
            embedding=tuple(vector),
            metadata={k: v for k, v in doc.metadata.items() if k not in ("source", "type")},
        )
        for doc, vector in zip(documents, vectors)
    ]
    return VectorIndex(chunks)


@log_async_operation("index build")
async def build_index(
    docs_folder: Path | str,
    store: VectorStore,
    embedder: Embedder,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> VectorIndex:
    """Load, split, embed and persist the whole documents folder."""
    documents = await load_documents(docs_folder)
    chunks = split_documents(
        documents,
        chunk_size=chunk_size or settings.RAG_CHUNK_SIZE,
        chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.RAG_CHUNK_OVERLAP,
    )
    index = await embed_documents(chunks, embedder)
    await store.replace(index)
    return index
