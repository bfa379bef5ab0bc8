#!/usr/bin/env python3
"""Test script for Embedding Generator."""

import sys
import os
import asyncio
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from digest_index.core.exceptions import (
    AuthenticationError,
    DimensionMismatchError,
    EmbeddingAPIError,
    ValidationError,
)
from digest_index.core.retry import RetryExecutor
from digest_index.services.embeddings import (
    MAX_INPUT_TOKENS,
    PRICING_PER_1K,
    EmbeddingGenerator,
    calculate_cost,
    count_tokens,
    price_per_1k,
)
from digest_index.services.metrics import MetricsCollector

from fakes import DIMENSION, FakeEmbeddingsClient, FakeHTTPError, fake_embedding, fast_policy


def _generator(client=None, **kwargs) -> EmbeddingGenerator:
    return EmbeddingGenerator(
        client=client or FakeEmbeddingsClient(),
        retry=RetryExecutor(fast_policy()),
        metrics=kwargs.pop("metrics", MetricsCollector(enabled=True)),
        **kwargs
    )


def test_single_string_yields_single_vector():
    print("Testing embedding shape...")
    generator = _generator()

    vector = asyncio.run(generator.embed("hello"))

    assert isinstance(vector, list)
    assert len(vector) == DIMENSION
    assert isinstance(vector[0], float)
    print("✓ 'hello' returns one unwrapped vector")


def test_sequence_preserves_order():
    client = FakeEmbeddingsClient()
    generator = _generator(client)

    vectors = asyncio.run(generator.embed(["a", "b"]))

    assert len(vectors) == 2
    assert vectors[0] == fake_embedding("a")
    assert vectors[1] == fake_embedding("b")
    assert client.calls == [["a", "b"]]
    print("✓ ['a', 'b'] returns [vecA, vecB] in order")


def test_usage_tracking_and_reset():
    print("Testing usage tracking...")
    generator = _generator(model="text-embedding-3-small")

    asyncio.run(generator.embed(["one two three", "four five"]))
    asyncio.run(generator.embed("six"))

    summary = generator.get_usage_summary()
    assert summary.total_tokens == 6
    assert summary.request_count == 2
    assert abs(summary.total_cost - 6 / 1000 * 0.00002) < 1e-15
    assert summary.avg_tokens_per_request == 3
    print(f"✓ Usage: {summary.to_dict()}")

    generator.reset_usage()
    reset = generator.get_usage_summary()
    assert (reset.total_tokens, reset.request_count, reset.total_cost) == (0, 0, 0.0)
    print("✓ Usage reset independently")


def test_pricing_table():
    assert price_per_1k("text-embedding-3-large") == PRICING_PER_1K["text-embedding-3-large"]
    assert price_per_1k("some-future-model") == PRICING_PER_1K["text-embedding-ada-002"]
    assert calculate_cost(2000, "text-embedding-ada-002") == 0.0002
    print("✓ Pricing table with ada-002 fallback")


def test_cost_estimate_counts_tokens():
    print("Testing cost estimate...")
    client = FakeEmbeddingsClient()
    generator = _generator(client, model="text-embedding-3-small")

    estimate = generator.estimate_cost(["hello world"])

    assert estimate["tokens"] == count_tokens("hello world") == 2
    assert estimate["texts"] == 1
    assert estimate["estimated_cost"] == estimate["tokens"] / 1000 * PRICING_PER_1K["text-embedding-3-small"]
    assert generator.estimate_cost("hello world")["tokens"] == 2
    assert client.calls == []
    print(f"✓ {estimate['tokens']} tokens estimated without calling the API")


def test_over_limit_text_rejected_before_api_call():
    client = FakeEmbeddingsClient()
    generator = _generator(client)
    too_long = "word " * (MAX_INPUT_TOKENS + 500)

    try:
        asyncio.run(generator.embed(["fine", too_long]))
    except ValidationError as e:
        assert e.details["value"] == "1"
    else:
        raise AssertionError("over-limit text accepted")
    assert client.calls == []
    print("✓ Texts over the model token limit rejected locally")


def test_retry_exhaustion_raises_embedding_api_error():
    print("Testing failure handling...")
    client = FakeEmbeddingsClient(always_fail=ConnectionError("connection reset"))
    metrics = MetricsCollector(enabled=True)
    generator = _generator(client, metrics=metrics)

    try:
        asyncio.run(generator.embed("hello"))
    except EmbeddingAPIError as e:
        assert e.details["operation"] == "generate_embeddings"
        assert e.last_error is not None
    else:
        raise AssertionError("EmbeddingAPIError not raised")

    assert len(client.calls) == 3
    assert metrics.get_metrics()["errors"]["generate_embeddings"]["count"] == 1
    print("✓ Exhaustion after 3 attempts raises EmbeddingAPIError")


def test_transient_failure_recovers():
    client = FakeEmbeddingsClient(errors=[FakeHTTPError(502)])
    generator = _generator(client)

    vector = asyncio.run(generator.embed("hello"))

    assert len(vector) == DIMENSION
    assert len(client.calls) == 2
    print("✓ Transient 502 retried")


def test_authentication_error_not_retried():
    client = FakeEmbeddingsClient(always_fail=FakeHTTPError(401, "bad key"))
    generator = _generator(client)

    try:
        asyncio.run(generator.embed("hello"))
    except AuthenticationError:
        pass
    else:
        raise AssertionError("AuthenticationError not raised")
    assert len(client.calls) == 1
    print("✓ 401 surfaced immediately")


def test_response_dimension_checked():
    generator = _generator(FakeEmbeddingsClient(dimension=768))

    try:
        asyncio.run(generator.embed("hello"))
    except DimensionMismatchError as e:
        assert (e.expected, e.actual) == (DIMENSION, 768)
    else:
        raise AssertionError("dimension mismatch not detected")
    print("✓ Wrong-dimension responses rejected")


def test_empty_input_rejected_before_api_call():
    client = FakeEmbeddingsClient()
    generator = _generator(client)

    for bad in ([], ["fine", "  "]):
        try:
            asyncio.run(generator.embed(bad))
        except ValidationError:
            pass
        else:
            raise AssertionError(f"{bad!r} accepted")
    assert client.calls == []
    print("✓ Empty input rejected without calling the API")


def test_query_embedding_and_connectivity():
    metrics = MetricsCollector(enabled=True)
    generator = _generator(metrics=metrics)

    vector = asyncio.run(generator.embed_query("latest funding news"))
    assert vector == fake_embedding("latest funding news")
    assert metrics.get_operation("generate_query_embedding").count == 1

    assert asyncio.run(generator.check_connectivity()) is True
    failing = _generator(FakeEmbeddingsClient(always_fail=ConnectionError("down")))
    assert asyncio.run(failing.check_connectivity()) is False
    print("✓ Query embedding and connectivity probe")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Embedding Generator")
    print("=" * 60)

    test_single_string_yields_single_vector()
    test_sequence_preserves_order()
    test_usage_tracking_and_reset()
    test_pricing_table()
    test_cost_estimate_counts_tokens()
    test_over_limit_text_rejected_before_api_call()
    test_retry_exhaustion_raises_embedding_api_error()
    test_transient_failure_recovers()
    test_authentication_error_not_retried()
    test_response_dimension_checked()
    test_empty_input_rejected_before_api_call()
    test_query_embedding_and_connectivity()

    print("\n✅ All embedding tests passed!")
