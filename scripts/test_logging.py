#!/usr/bin/env python3
"""Test script for logging setup."""

import sys
import os
import asyncio
import logging
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from digest_index.core.config import settings
from digest_index.core.logging import (
    NOISY_LOGGERS,
    add_app_context,
    add_correlation_id,
    get_correlation_id,
    set_correlation_id,
    setup_logging,
)


def test_correlation_id_scoped_per_task():
    print("Testing correlation ids...")

    async def submission(name):
        correlation_id = set_correlation_id(f"submission-{name}")
        await asyncio.sleep(0)
        return correlation_id, get_correlation_id()

    async def run():
        return await asyncio.gather(submission("a"), submission("b"))

    results = asyncio.run(run())
    assert results == [("submission-a", "submission-a"), ("submission-b", "submission-b")]
    assert set_correlation_id() != set_correlation_id()
    print("✓ Each submission keeps its own correlation id")


def test_processors_add_context():
    set_correlation_id("abc")
    event = add_app_context(None, "info", add_correlation_id(None, "info", {"event": "x"}))
    assert event["correlation_id"] == "abc"
    assert {"app_name", "app_version", "index_name"} <= set(event)
    print("✓ Correlation id and index name on every event")


def test_sdk_loggers_quieted():
    setup_logging()
    expected = logging.DEBUG if settings.LOG_LEVEL.upper() == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        assert logging.getLogger(name).level == expected, name
    print("✓ SDK request logging held at WARNING")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Logging")
    print("=" * 60)

    test_correlation_id_scoped_per_task()
    test_processors_add_context()
    test_sdk_loggers_quieted()

    print("\n✅ All logging tests passed!")
