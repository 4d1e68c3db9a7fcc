"""
Embedding client for the Ollama ``/api/embeddings`` endpoint.

The same model embeds chunks at ingestion and queries at answer time, so
vectors from the two call sites are comparable.
"""
import httpx

from ppid_bot.core.circuit_breaker import CircuitBreaker, get_embedding_circuit_breaker
from ppid_bot.core.config import settings
from ppid_bot.core.exceptions import EmbeddingError
from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)


class OllamaEmbeddings:
    """``embed(text) -> list[float]``; raises EmbeddingError on any failure."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or settings.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or settings.OLLAMA_EMBED_MODEL
        self.timeout_seconds = timeout_seconds or settings.EMBEDDING_TIMEOUT_SECONDS
        self._circuit_breaker = circuit_breaker or get_embedding_circuit_breaker()

    async def _request(self, client: httpx.AsyncClient, text: str) -> list[float]:
        try:
            response = await client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
            )
        except httpx.TimeoutException as exc:
            raise EmbeddingError("timeout", details={"timeout_seconds": self.timeout_seconds}) from exc
        except httpx.RequestError as exc:
            raise EmbeddingError(f"network error: {exc}") from exc

        if response.status_code != 200:
            raise EmbeddingError(
                f"status {response.status_code}",
                details={"status_code": response.status_code, "response_text": response.text[:300]},
            )

        embedding = response.json().get("embedding")
        if not embedding:
            raise EmbeddingError("empty embedding in response", details={"model": self.model})
        return embedding

    async def embed(self, text: str) -> list[float]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await self._circuit_breaker.execute(lambda: self._request(client, text))

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Sequential; any failure aborts the whole batch."""
        vectors = []
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            for index, text in enumerate(texts):
                vectors.append(
                    await self._circuit_breaker.execute(lambda t=text: self._request(client, t))
                )
                if (index + 1) % 25 == 0:
                    logger.info(
                        "Embedding progress",
                        extra_data={"done": index + 1, "total": len(texts)},
                    )
        return vectors
