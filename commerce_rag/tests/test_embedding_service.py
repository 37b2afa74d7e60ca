"""
Tests for embedding providers and the retrying EmbeddingService.
"""

import math
import pytest
import httpx
from unittest.mock import AsyncMock


class TestDeterministicProvider:
    """Hash embedding: fixed dimension, unit norm, reproducible"""

    @pytest.fixture
    def provider(self):
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider
        return DeterministicEmbeddingProvider(dimension=8)

    @pytest.mark.parametrize("text", ["b", "Cafeteira Premium", "pedido cancelado ção", "x" * 5000])
    def test_dimension_and_unit_norm(self, provider, text):
        vector = provider.compute(text)

        assert len(vector) == 8
        assert math.isclose(math.sqrt(sum(v * v for v in vector)), 1.0, rel_tol=1e-9)

    def test_empty_text_is_zero_vector(self, provider):
        assert provider.compute("") == [0.0] * 8

    def test_reproducible(self, provider):
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider

        other = DeterministicEmbeddingProvider(dimension=8)
        assert provider.compute("moedor manual") == other.compute("moedor manual")

    def test_bucket_accumulation(self):
        """'ab' with D=2: 'a'=97 -> 0.0 in bucket 0, 'b'=98 -> 1/97 in bucket 1"""
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider

        vector = DeterministicEmbeddingProvider(dimension=2).compute("ab")

        assert vector == pytest.approx([0.0, 1.0])

    def test_text_of_only_multiples_of_97_is_zero(self):
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider

        assert DeterministicEmbeddingProvider(dimension=4).compute("aaa") == [0.0] * 4

    def test_rejects_non_positive_dimension(self):
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider

        with pytest.raises(ValueError):
            DeterministicEmbeddingProvider(dimension=0)


class TestHttpProvider:
    """External provider through an httpx mock transport"""

    def _provider(self, handler):
        from commerce_rag.common.embedding_service import HttpEmbeddingProvider

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpEmbeddingProvider(endpoint="http://embeddings.local/embed", timeout_ms=100, client=client)

    @pytest.mark.asyncio
    async def test_posts_text_and_reads_embedding(self):
        seen = {}

        def handler(request):
            seen["body"] = request.content
            return httpx.Response(200, json={"embedding": [0.5, 1, -0.25]})

        provider = self._provider(handler)
        vector = await provider.embed("olá")
        await provider.close()

        assert vector == [0.5, 1.0, -0.25]
        assert b'"input"' in seen["body"]

    @pytest.mark.asyncio
    async def test_non_success_status_is_transient(self):
        from commerce_rag.common.errors import TransientError

        provider = self._provider(lambda request: httpx.Response(500, json={}))

        with pytest.raises(TransientError):
            await provider.embed("x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"embedding": "nope"}, {"embedding": [1, "a"]}, [1, 2]])
    async def test_malformed_body_is_transient(self, payload):
        from commerce_rag.common.errors import TransientError

        provider = self._provider(lambda request: httpx.Response(200, json=payload))

        with pytest.raises(TransientError):
            await provider.embed("x")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        from commerce_rag.common.errors import TransientError

        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        provider = self._provider(handler)

        with pytest.raises(TransientError) as exc_info:
            await provider.embed("x")
        assert exc_info.value.status_code == 503

    def test_missing_endpoint_is_configuration_error(self):
        from commerce_rag.common.embedding_service import HttpEmbeddingProvider
        from commerce_rag.common.errors import RagError

        with pytest.raises(RagError):
            HttpEmbeddingProvider(endpoint="")


class TestProviderSelection:
    def test_deterministic_by_default(self):
        from commerce_rag.common.config import EmbeddingConfig
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider, create_embedding_provider

        provider = create_embedding_provider(EmbeddingConfig(dimension=12))

        assert isinstance(provider, DeterministicEmbeddingProvider)
        assert provider.dimension == 12

    def test_unknown_provider(self):
        from commerce_rag.common.config import EmbeddingConfig
        from commerce_rag.common.embedding_service import create_embedding_provider
        from commerce_rag.common.errors import RagError

        with pytest.raises(RagError):
            create_embedding_provider(EmbeddingConfig(provider="quantum"))


class TestEmbeddingServiceRetry:
    """Linear backoff, IndexingError after exhaustion"""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        from commerce_rag.common.embedding_service import EmbeddingService
        from commerce_rag.common.errors import TransientError

        provider = AsyncMock()
        provider.embed.side_effect = [TransientError("a"), TransientError("b"), [1.0, 0.0]]
        sleep = AsyncMock()
        service = EmbeddingService(provider, retry_count=3, retry_delay_ms=75, sleep=sleep)

        assert await service.embed_single("x") == [1.0, 0.0]
        assert provider.embed.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.075, 0.15]

    @pytest.mark.asyncio
    async def test_exhaustion_raises_indexing_error(self):
        from commerce_rag.common.embedding_service import EMBEDDING_FAILED_MESSAGE, EmbeddingService
        from commerce_rag.common.errors import IndexingError, TransientError

        provider = AsyncMock()
        provider.embed.side_effect = TransientError("down")
        sleep = AsyncMock()
        service = EmbeddingService(provider, retry_count=2, retry_delay_ms=10, sleep=sleep)

        with pytest.raises(IndexingError) as exc_info:
            await service.embed_single("x")

        assert exc_info.value.message == EMBEDDING_FAILED_MESSAGE
        assert provider.embed.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_embed_timed_reports_latency(self):
        from commerce_rag.common.embedding_service import DeterministicEmbeddingProvider, EmbeddingService

        service = EmbeddingService(DeterministicEmbeddingProvider(dimension=4))
        vector, latency_ms = await service.embed_timed("café")

        assert len(vector) == 4
        assert latency_ms >= 0


class TestCosineSimilarity:
    def test_batch_scores(self):
        from commerce_rag.common.embedding_service import batch_cosine_similarity

        scores = batch_cosine_similarity([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [0.0, 0.0]])

        assert scores == pytest.approx([1.0, 0.0, 0.0])

    def test_zero_query_scores_zero(self):
        from commerce_rag.common.embedding_service import cosine_similarity

        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        from commerce_rag.common.embedding_service import batch_cosine_similarity

        with pytest.raises(ValueError):
            batch_cosine_similarity([1.0, 0.0], [[1.0, 0.0, 0.0]])
