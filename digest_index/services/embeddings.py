"""
Embedding generation service.

Turns text into fixed-dimension vectors through the OpenAI embeddings API.
Every API call goes through the shared RetryExecutor; token usage and the
estimated cost of each call accumulate into a session total.
"""
import threading
import time
from dataclasses import dataclass, asdict
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Union

import openai

from digest_index.core.common import BaseService, truncate_text
from digest_index.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DimensionMismatchError,
    EmbeddingAPIError,
    ValidationError,
)
from digest_index.core.retry import RetryExecutor, RetryPolicy
from digest_index.services.metrics import MetricsCollector

# USD per 1K tokens
PRICING_PER_1K: Dict[str, float] = {
    "text-embedding-3-small": 0.00002,
    "text-embedding-3-large": 0.00013,
    "text-embedding-ada-002": 0.0001,
}
DEFAULT_PRICE_PER_1K = PRICING_PER_1K["text-embedding-ada-002"]

TOKEN_ENCODING = "cl100k_base"
# Per-input limit shared by the OpenAI embedding models
MAX_INPUT_TOKENS = 8191

Embedding = List[float]


@lru_cache(maxsize=1)
def _get_encoding():
    import tiktoken

    return tiktoken.get_encoding(TOKEN_ENCODING)


def count_tokens(text: str) -> int:
    """Count tokens the way the embedding models do."""
    return len(_get_encoding().encode(text))


def price_per_1k(model: str) -> float:
    return PRICING_PER_1K.get(model, DEFAULT_PRICE_PER_1K)


def calculate_cost(tokens: int, model: str) -> float:
    """cost = tokens / 1000 * rate for the model."""
    return (tokens / 1000.0) * price_per_1k(model)


@dataclass
class UsageSummary:
    """Running usage totals for one generator."""
    total_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    avg_cost_per_request: float = 0.0
    avg_tokens_per_request: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EmbeddingGenerator(BaseService):
    """
    Embedding API client with retry, usage tracking and response checks.

    Any object exposing ``embeddings.create(model=, input=, encoding_format=)``
    as a coroutine can be injected as ``client``; by default an
    ``openai.AsyncOpenAI`` client is built on first use.
    """

    def __init__(
        self,
        client: Any = None,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        retry: Optional[RetryExecutor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("embeddings")
        embedding_config = self.config.embedding_config

        self._client = client
        self.model = model or embedding_config["model"]
        self.dimension = dimension or embedding_config["dimension"]
        self.retry = retry or RetryExecutor(self.config.retry_policy, service="openai")
        self.metrics = metrics or MetricsCollector()

        self._usage_lock = threading.Lock()
        self._total_tokens = 0
        self._total_cost = 0.0
        self._request_count = 0

    @property
    def client(self):
        if self._client is None:
            embedding_config = self.config.embedding_config
            if not embedding_config["api_key"]:
                raise ConfigurationError("OPENAI_API_KEY is required for embeddings", field="OPENAI_API_KEY")
            self._client = openai.AsyncOpenAI(
                api_key=embedding_config["api_key"],
                organization=embedding_config["organization"],
                max_retries=0,
            )
            self.logger.info("openai_client_created", model=self.model)
        return self._client

    @staticmethod
    def _validate_texts(texts: Sequence[str]) -> None:
        if not texts:
            raise ValidationError("No texts provided for embedding", field="texts")
        for position, text in enumerate(texts):
            if not isinstance(text, str) or not text.strip():
                raise ValidationError(
                    f"Text at position {position} is empty or not a string",
                    field="texts",
                    value=position
                )
            # a token is at least one UTF-8 byte, so short texts skip the encoder
            if len(text.encode("utf-8")) > MAX_INPUT_TOKENS:
                tokens = count_tokens(text)
                if tokens > MAX_INPUT_TOKENS:
                    raise ValidationError(
                        f"Text at position {position} has {tokens} tokens, limit is {MAX_INPUT_TOKENS}",
                        field="texts",
                        value=position
                    )

    def _parse_response(self, response: Any, expected: int) -> List[Embedding]:
        data = list(response.data)
        if len(data) != expected:
            raise ValidationError(
                f"Embedding count mismatch: expected {expected}, got {len(data)}",
                field="data"
            )

        # The API reports each item's input position; order by it
        positions = [getattr(item, "index", None) for item in data]
        if None not in positions:
            data = [item for _, item in sorted(zip(positions, data), key=lambda pair: pair[0])]
        embeddings = [list(item.embedding) for item in data]

        for embedding in embeddings:
            if len(embedding) != self.dimension:
                raise DimensionMismatchError(self.dimension, len(embedding))
        return embeddings

    def _track_usage(self, tokens: int, model: str) -> float:
        cost = calculate_cost(tokens, model)
        with self._usage_lock:
            self._total_tokens += tokens
            self._total_cost += cost
            self._request_count += 1
        return cost

    async def _generate(
        self,
        texts: List[str],
        model: str,
        operation: str,
        policy: Optional[RetryPolicy] = None,
    ) -> List[Embedding]:
        self._validate_texts(texts)
        start = time.perf_counter()

        async def call():
            return await self.client.embeddings.create(
                model=model,
                input=texts,
                encoding_format="float",
            )

        try:
            response = await self.retry.execute(call, operation_name=operation, policy=policy)
            embeddings = self._parse_response(response, len(texts))
        except (ValidationError, AuthenticationError, ConfigurationError) as e:
            self.metrics.record_error(operation, e, (time.perf_counter() - start) * 1000)
            raise
        except Exception as e:
            self.metrics.record_error(operation, e, (time.perf_counter() - start) * 1000)
            raise EmbeddingAPIError(e, model=model) from e

        duration_ms = (time.perf_counter() - start) * 1000
        usage = getattr(response, "usage", None)
        tokens = int(getattr(usage, "total_tokens", 0) or 0)
        cost = self._track_usage(tokens, model)
        self.metrics.record(operation, duration_ms, len(texts))

        self.logger.info(
            "embeddings_generated",
            model=model,
            count=len(embeddings),
            tokens=tokens,
            cost=round(cost, 8),
            duration_ms=round(duration_ms, 2)
        )
        return embeddings

    async def embed(
        self,
        texts: Union[str, Sequence[str]],
        model: Optional[str] = None,
    ) -> Union[Embedding, List[Embedding]]:
        """
        Embed one text or a sequence of texts.

        A single string yields a single vector; a sequence yields a list of
        vectors in the same order as the input.

        Raises:
            ValidationError: empty input or a malformed API response
            AuthenticationError: the API key was rejected
            EmbeddingAPIError: all retries were exhausted
        """
        single = isinstance(texts, str)
        batch = [texts] if single else list(texts)
        embeddings = await self._generate(batch, model or self.model, "generate_embeddings")
        return embeddings[0] if single else embeddings

    async def embed_query(self, text: str, model: Optional[str] = None) -> Embedding:
        """Embed a search query."""
        self.logger.debug("embedding_query", query=truncate_text(text or "", 80))
        embeddings = await self._generate([text], model or self.model, "generate_query_embedding")
        return embeddings[0]

    async def check_connectivity(self, timeout_ms: Optional[float] = None) -> bool:
        """Embed a one-word probe with a single attempt. Returns availability."""
        timeout_ms = timeout_ms or self.config.health_config["timeout_ms"]
        policy = RetryPolicy(max_retries=1, initial_delay_ms=0, max_delay_ms=0, timeout_ms=timeout_ms)
        try:
            await self._generate(["health check"], self.model, "embedding_connectivity_check", policy=policy)
        except Exception as e:
            self.logger.warning("embedding_connectivity_check_failed", error=str(e), error_type=type(e).__name__)
            return False
        return True

    def estimate_cost(self, texts: Union[str, Sequence[str]], model: Optional[str] = None) -> Dict[str, Any]:
        """Preview the tokens and cost of embedding ``texts`` without calling the API."""
        batch = [texts] if isinstance(texts, str) else list(texts)
        model = model or self.model
        tokens = sum(count_tokens(text) for text in batch)
        return {
            "model": model,
            "texts": len(batch),
            "tokens": tokens,
            "estimated_cost": calculate_cost(tokens, model),
        }

    def get_usage_summary(self) -> UsageSummary:
        with self._usage_lock:
            requests = self._request_count
            return UsageSummary(
                total_tokens=self._total_tokens,
                total_cost=self._total_cost,
                request_count=requests,
                avg_cost_per_request=self._total_cost / requests if requests else 0.0,
                avg_tokens_per_request=self._total_tokens / requests if requests else 0.0,
            )

    def reset_usage(self) -> None:
        with self._usage_lock:
            self._total_tokens = 0
            self._total_cost = 0.0
            self._request_count = 0
        self.logger.info("embedding_usage_reset")
