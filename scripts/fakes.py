"""In-memory stand-ins for the vector index and the embeddings API."""

import asyncio
import zlib
from collections import Counter, defaultdict
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import numpy as np

from digest_index.core.retry import RetryExecutor, RetryPolicy
from digest_index.models.vector import Vector
from digest_index.services.metrics import MetricsCollector
from digest_index.services.vector_store import IndexBackend, VectorStoreClient, day_epoch_seconds

DIMENSION = 1536

VALID_METADATA = {
    "publisher": "techcrunch",
    "date": "2024-01-15",
    "content_type": "daily_digest",
    "source": "gmail",
}


class FakeHTTPError(Exception):
    """SDK-style error carrying an HTTP status."""

    def __init__(self, status_code: int, message: str = "upstream error"):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code


def fast_policy(max_retries: int = 3, timeout_ms: float = 1000.0) -> RetryPolicy:
    return RetryPolicy(
        max_retries=max_retries,
        initial_delay_ms=0,
        backoff_multiplier=1,
        max_delay_ms=0,
        timeout_ms=timeout_ms,
    )


def fake_embedding(text: str, dimension: int = DIMENSION) -> List[float]:
    """Deterministic unit vector for a text."""
    rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
    values = rng.random(dimension)
    return (values / np.linalg.norm(values)).tolist()


def make_vector(vector_id: str, dimension: int = DIMENSION, **metadata: Any) -> Vector:
    merged = dict(VALID_METADATA)
    merged.update(metadata)
    merged.setdefault("timestamp", day_epoch_seconds(merged["date"]))
    return Vector(id=vector_id, values=fake_embedding(vector_id, dimension), metadata=merged)


def _matches_filter(metadata: Dict[str, Any], filter: Optional[Dict[str, Any]]) -> bool:
    """Pinecone filter semantics; range operators reject non-numeric operands with a 400."""
    for field, condition in (filter or {}).items():
        value = metadata.get(field)
        if not isinstance(condition, dict):
            condition = {"$eq": condition}
        for op, expected in condition.items():
            if op in ("$gte", "$lte") and (isinstance(expected, bool) or not isinstance(expected, (int, float))):
                raise FakeHTTPError(400, f"{op} operator requires a number, got {expected!r}")
            if op == "$eq" and value != expected:
                return False
            if op == "$gte" and (value is None or value < expected):
                return False
            if op == "$lte" and (value is None or value > expected):
                return False
    return True


class FakeIndexBackend(IndexBackend):
    """Dict-backed index that records every call."""

    def __init__(self, delay: float = 0.0, failing_ids=(), stats_error: Optional[Exception] = None):
        self.delay = delay
        self.failing_ids = set(failing_ids)
        self.stats_error = stats_error
        self.namespaces: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls = Counter()
        self.upsert_sizes: List[int] = []
        self.last_query: Optional[Dict[str, Any]] = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def upsert(self, vectors, namespace):
        self.calls["upsert"] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if vectors[0]["id"] in self.failing_ids:
                raise ConnectionError("connection reset by peer")
            for payload in vectors:
                self.namespaces[namespace][payload["id"]] = payload
            self.upsert_sizes.append(len(vectors))
            return len(vectors)
        finally:
            self.in_flight -= 1

    async def query(self, vector, top_k, namespace, filter=None, include_metadata=True, include_values=False):
        self.calls["query"] += 1
        self.last_query = {
            "top_k": top_k,
            "namespace": namespace,
            "filter": filter,
            "include_metadata": include_metadata,
            "include_values": include_values,
        }
        query = np.asarray(vector)
        scored = []
        for payload in self.namespaces[namespace].values():
            metadata = payload.get("metadata") or {}
            if _matches_filter(metadata, filter):
                score = float(np.dot(query, np.asarray(payload["values"])))
                scored.append((score, payload))
        scored.sort(key=lambda pair: pair[0], reverse=True)

        matches = [
            {
                "id": payload["id"],
                "score": score,
                "values": payload["values"] if include_values else None,
                "metadata": payload.get("metadata") if include_metadata else None,
            }
            for score, payload in scored[:top_k]
        ]
        return {"matches": matches, "namespace": namespace}

    async def delete(self, ids, namespace):
        self.calls["delete"] += 1
        for vector_id in ids:
            self.namespaces[namespace].pop(vector_id, None)

    async def fetch(self, ids, namespace):
        self.calls["fetch"] += 1
        stored = self.namespaces[namespace]
        return {vector_id: stored[vector_id] for vector_id in ids if vector_id in stored}

    async def describe_index_stats(self):
        self.calls["describe_index_stats"] += 1
        if self.stats_error is not None:
            raise self.stats_error
        return {
            "dimension": DIMENSION,
            "total_vector_count": sum(len(v) for v in self.namespaces.values()),
            "namespaces": {name: {"vector_count": len(v)} for name, v in self.namespaces.items()},
        }


class FakeEmbeddingsClient:
    """Mimics ``AsyncOpenAI().embeddings``."""

    def __init__(self, dimension: int = DIMENSION, errors: Optional[List[Exception]] = None, always_fail: Optional[Exception] = None):
        self.dimension = dimension
        self.errors = list(errors or [])
        self.always_fail = always_fail
        self.calls: List[List[str]] = []
        self.embeddings = self

    async def create(self, model, input, encoding_format):
        self.calls.append(list(input))
        if self.always_fail is not None:
            raise self.always_fail
        if self.errors:
            raise self.errors.pop(0)

        data = [
            SimpleNamespace(index=i, embedding=fake_embedding(text, self.dimension), object="embedding")
            for i, text in enumerate(input)
        ]
        tokens = sum(len(text.split()) for text in input)
        return SimpleNamespace(data=data, model=model, usage=SimpleNamespace(total_tokens=tokens))


def build_store(backend: Optional[FakeIndexBackend] = None, **kwargs: Any) -> VectorStoreClient:
    kwargs.setdefault("retry", RetryExecutor(fast_policy()))
    kwargs.setdefault("metrics", MetricsCollector(enabled=True))
    return VectorStoreClient(backend or FakeIndexBackend(), **kwargs)
