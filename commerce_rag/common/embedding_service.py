"""
Embedding Service

Turns snapshot and query text into fixed-dimension vectors.

Two providers are available and one is selected once at startup:
- deterministic: character-code hashing into D buckets, L2 normalized
- http: POST {"input": text} to an external endpoint under a hard timeout

EmbeddingService wraps the selected provider with bounded linear-backoff retries.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Tuple

import httpx
import numpy as np

from .config import EmbeddingConfig, DEFAULT_EMBEDDING_DIMENSION
from .errors import IndexingError, RagError, TransientError

logger = logging.getLogger("commerce_rag.common.embedding_service")

EMBEDDING_FAILED_MESSAGE = "Não foi possível gerar os embeddings da pesquisa."


class EmbeddingProvider(ABC):
    """Strategy interface for text embedding"""

    name: str = "base"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        ...

    async def close(self) -> None:
        return None


class DeterministicEmbeddingProvider(EmbeddingProvider):
    """
    Reproducible hashing embedding.

    Each UTF-16 code unit contributes (code % 97) / 97 to bucket
    index % dimension; the result is L2 normalized. Empty text (or any
    text whose vector has zero magnitude) yields the zero vector.
    """

    name = "deterministic"

    def __init__(self, dimension: int = DEFAULT_EMBEDDING_DIMENSION):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self.dimension = dimension

    def compute(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float64)
        if text:
            codes = np.frombuffer(text.encode("utf-16-le"), dtype="<u2").astype(np.int64)
            buckets = np.arange(codes.size) % self.dimension
            # add.at accumulates in input order, keeping results reproducible
            np.add.at(vector, buckets, (codes % 97) / 97)

        magnitude = float(np.sqrt(np.sum(vector * vector)))
        if magnitude == 0:
            return vector.tolist()
        return (vector / magnitude).tolist()

    async def embed(self, text: str) -> List[float]:
        return self.compute(text)


class HttpEmbeddingProvider(EmbeddingProvider):
    """External embedding endpoint: POST {"input": text} -> {"embedding": [...]}"""

    name = "http"

    def __init__(self, endpoint: str, timeout_ms: int = 5000, client: Optional[httpx.AsyncClient] = None):
        if not endpoint:
            raise RagError("Provedor de embeddings não configurado.", status_code=500)
        self.endpoint = endpoint
        self.timeout = timeout_ms / 1000
        self._client = client or httpx.AsyncClient(timeout=self.timeout)

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self._client.post(
                self.endpoint,
                json={"input": text},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientError(f"Tempo limite excedido ao gerar embeddings: {e}") from e
        except httpx.HTTPError as e:
            raise TransientError(f"Falha de rede ao gerar embeddings: {e}") from e

        if not response.is_success:
            raise TransientError(
                f"Provedor de embeddings respondeu com status {response.status_code}.",
                status_code=502,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransientError("Resposta inválida do provedor de embeddings.", status_code=502) from e

        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(embedding, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in embedding
        ):
            raise TransientError("Resposta inválida do provedor de embeddings.", status_code=502)

        return [float(v) for v in embedding]

    async def close(self) -> None:
        await self._client.aclose()


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Select the provider once from configuration"""
    provider = (config.provider or "deterministic").strip().lower()
    if provider == "deterministic":
        return DeterministicEmbeddingProvider(dimension=config.dimension)
    if provider == "http":
        return HttpEmbeddingProvider(endpoint=config.endpoint, timeout_ms=config.timeout_ms)
    raise RagError(f"Provedor de embeddings desconhecido: {config.provider}", status_code=500)


class EmbeddingService:
    """
    Retrying front for an EmbeddingProvider.

    Up to retry_count attempts with a delay of attempt * retry_delay_ms
    between them. When the last attempt fails an IndexingError is raised.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        retry_count: int = 3,
        retry_delay_ms: int = 75,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.provider = provider
        self.retry_count = max(1, retry_count)
        self.retry_delay_ms = retry_delay_ms
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingService":
        provider = create_embedding_provider(config)
        logger.info(f"Embedding provider ready (provider={provider.name})")
        return cls(provider, retry_count=config.retry_count, retry_delay_ms=config.retry_delay_ms)

    async def embed_single(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Args:
            text: String to embed

        Returns:
            Embedding vector
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.retry_count + 1):
            try:
                return await self.provider.embed(text)
            except Exception as e:
                last_error = e
                logger.warning(f"Embedding attempt {attempt}/{self.retry_count} failed: {e}")
                if attempt < self.retry_count:
                    await self._sleep(attempt * self.retry_delay_ms / 1000)

        raise IndexingError(EMBEDDING_FAILED_MESSAGE) from last_error

    async def embed_timed(self, text: str) -> Tuple[List[float], float]:
        """Embed and return (vector, latency in ms)"""
        started = time.perf_counter()
        vector = await self.embed_single(text)
        return vector, round((time.perf_counter() - started) * 1000, 3)

    async def close(self) -> None:
        await self.provider.close()


def batch_cosine_similarity(query_vec: List[float], vectors: List[List[float]]) -> List[float]:
    """
    Compute cosine similarity between a query and multiple vectors.

    Zero-magnitude vectors score 0.0.

    Args:
        query_vec: Query embedding vector
        vectors: List of embedding vectors to compare against

    Returns:
        List of similarity scores
    """
    if not vectors:
        return []

    query = np.asarray(query_vec, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)

    if matrix.ndim != 2 or matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Vector dimension mismatch: {matrix.shape} vs {query.shape}")

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores.tolist()


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Cosine similarity between two vectors"""
    return batch_cosine_similarity(vec1, [vec2])[0]
