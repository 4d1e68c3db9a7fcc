"""
In-memory embedding index persisted as a flat JSON record list.

``VectorIndex`` is immutable once built. ``VectorStore`` holds the live
reference; writers build a new index, persist it, then swap the reference,
so a concurrent query always sees a complete snapshot.
"""
import asyncio
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import numpy as np

from ppid_bot.core.logging import get_logger
from ppid_bot.db.json_store import JsonFileStore

logger = get_logger(__name__)

VECTORS_FILE = "vectors.json"


class EmbeddingDimensionError(ValueError):
    """A chunk whose vector length differs from the live index."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"embedding has {got} dimensions, index uses {expected}")
        self.expected = expected
        self.got = got


@dataclass(frozen=True)
class DocumentChunk:
    content: str
    source: str
    type: str  # pdf | markdown | chat-history | faq
    embedding: tuple[float, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> dict:
        return {
            "content": self.content,
            "metadata": {**self.metadata, "source": self.source, "type": self.type},
            "embedding": list(self.embedding),
        }

    @classmethod
    def from_record(cls, record: dict) -> "DocumentChunk":
        metadata = dict(record.get("metadata") or {})
        embedding = tuple(float(x) for x in record["embedding"])
        if not embedding:
            raise ValueError("empty embedding")
        return cls(
            content=record["content"],
            source=metadata.pop("source", "Unknown"),
            type=metadata.pop("type", "markdown"),
            embedding=embedding,
            metadata=metadata,
        )


class VectorIndex:
    """Chunks plus a row-normalized embedding matrix for cosine search."""

    def __init__(self, chunks: list[DocumentChunk]):
        self.chunks: tuple[DocumentChunk, ...] = tuple(chunks)
        if chunks:
            matrix = np.asarray([c.embedding for c in chunks], dtype=np.float32)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            self._matrix = matrix / norms
        else:
            self._matrix = np.zeros((0, 0), dtype=np.float32)

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1]) if len(self) else 0

    def with_chunk(self, chunk: DocumentChunk) -> "VectorIndex":
        return VectorIndex([*self.chunks, chunk])

    def search(self, query_vector: list[float], k: int) -> list[tuple[DocumentChunk, float]]:
        """Top-k by cosine similarity. No score threshold is applied."""
        if not len(self) or k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        if query.shape[0] != self.dimension:
            logger.error(
                "Query vector dimension mismatch",
                extra_data={"expected": self.dimension, "got": int(query.shape[0])},
            )
            return []
        norm = np.linalg.norm(query)
        if norm == 0:
            return []

        scores = self._matrix @ (query / norm)
        k = min(k, len(self))
        top = np.argpartition(-scores, k - 1)[:k]
        top = top[np.argsort(-scores[top])]
        return [(self.chunks[i], float(scores[i])) for i in top]


def _drop_minority_dimensions(chunks: list[DocumentChunk]) -> list[DocumentChunk]:
    """Keep the chunks sharing the most common vector length (first seen wins a tie)."""
    if not chunks:
        return chunks
    dimension, _ = Counter(len(c.embedding) for c in chunks).most_common(1)[0]
    kept = [c for c in chunks if len(c.embedding) == dimension]
    if len(kept) != len(chunks):
        logger.warning(
            "Skipping vector records with a different embedding dimension",
            extra_data={"dimension": dimension, "skipped": len(chunks) - len(kept)},
        )
    return kept


class VectorStore:
    """Live index reference with atomic replace-and-persist."""

    def __init__(self, store_path: Path | str):
        self.file = JsonFileStore(Path(store_path) / VECTORS_FILE, default_factory=list)
        self._index: Optional[VectorIndex] = None
        self._loaded_mtime: Optional[float] = None
        self._write_lock = asyncio.Lock()

    @property
    def index(self) -> Optional[VectorIndex]:
        return self._index

    @property
    def is_ready(self) -> bool:
        return self._index is not None

    async def load(self) -> Optional[VectorIndex]:
        """Load from disk. Missing file means "not built yet" and returns None."""
        if not self.file.exists():
            logger.info("Vector store not built yet", extra_data={"path": str(self.file.path)})
            return None

        mtime = self.file.mtime()
        records = await self.file.read()
        chunks = []
        for record in records if isinstance(records, list) else []:
            try:
                chunks.append(DocumentChunk.from_record(record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed vector record", extra_data={"error": str(exc)})

        chunks = _drop_minority_dimensions(chunks)
        self._index = VectorIndex(chunks)
        self._loaded_mtime = mtime
        logger.info("Vector store loaded", extra_data={"chunks": len(chunks)})
        return self._index

    async def save(self, index: VectorIndex) -> None:
        await self.file.write([chunk.to_record() for chunk in index.chunks])

    async def replace(self, index: VectorIndex) -> None:
        """Persist then swap."""
        async with self._write_lock:
            await self.save(index)
            self._index = index
            self._loaded_mtime = self.file.mtime()

    async def append(self, chunk: DocumentChunk) -> VectorIndex:
        """Copy, persist, swap. Serialized with other writers."""
        async with self._write_lock:
            current = self._index or VectorIndex([])
            if len(current) and len(chunk.embedding) != current.dimension:
                raise EmbeddingDimensionError(current.dimension, len(chunk.embedding))
            updated = current.with_chunk(chunk)
            await self.save(updated)
            self._index = updated
            self._loaded_mtime = self.file.mtime()
            return updated

    async def reload_if_stale(self) -> bool:
        """Pick up an index rebuilt out of process."""
        mtime = self.file.mtime()
        if mtime is None or mtime == self._loaded_mtime:
            return False
        async with self._write_lock:
            await self.load()
        logger.info("Vector store reloaded after external rebuild")
        return True
