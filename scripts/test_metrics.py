#!/usr/bin/env python3
"""Test script for Metrics Collector."""

import sys
import os
import asyncio
import threading
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from digest_index.services.metrics import MetricsCollector


def test_record_accumulates():
    print("Testing metric accumulation...")
    metrics = MetricsCollector(slow_query_threshold_ms=100, enabled=True)

    metrics.record("query", 10)
    metrics.record("query", 30, count=4)
    metrics.record("query", 250)

    metric = metrics.get_operation("query")
    assert metric.count == 6
    assert metric.calls == 3
    assert metric.total_duration == 290
    assert metric.min_duration == 10
    assert metric.max_duration == 250
    assert metric.slow_count == 1
    assert abs(metric.avg_duration - 290 / 3) < 1e-9
    assert 30 < metric.p95_duration <= 250
    print("✓ Count, durations and slow operations tracked")


def test_record_error_taxonomy():
    metrics = MetricsCollector(enabled=True)

    metrics.record_error("upsert", ConnectionError("reset"))
    metrics.record_error("upsert", ConnectionError("reset again"))
    metrics.record_error("upsert", ValueError("bad"), duration_ms=5)

    errors = metrics.get_metrics()["errors"]["upsert"]
    assert errors["count"] == 3
    assert errors["error_types"] == {"ConnectionError": 2, "ValueError": 1}
    assert errors["last_error"]["message"] == "bad"
    assert errors["last_error"]["type"] == "ValueError"
    assert errors["last_error"]["timestamp"]
    print("✓ Errors keyed by operation and type")


def test_snapshot_is_read_only_and_clear():
    metrics = MetricsCollector(enabled=True)
    metrics.record("fetch", 5)

    snapshot = metrics.get_metrics()
    snapshot["operations"]["fetch"]["count"] = 1000
    assert metrics.get_operation("fetch").count == 1

    metrics.clear()
    assert metrics.get_metrics()["operations"] == {}
    assert metrics.get_operation("fetch") is None
    print("✓ Snapshot detached; clear resets counters")


def test_concurrent_writers():
    print("Testing concurrent writers...")
    metrics = MetricsCollector(slow_query_threshold_ms=1e9, enabled=True)

    def writer():
        for _ in range(1000):
            metrics.record("batch_upsert", 1.0, count=2)

    threads = [threading.Thread(target=writer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    metric = metrics.get_operation("batch_upsert")
    assert metric.calls == 8000
    assert metric.count == 16000
    print("✓ 8 threads x 1000 records counted exactly")


def test_timed_context_manager():
    metrics = MetricsCollector(enabled=True)

    async def run():
        async with metrics.timed("delete", count=3):
            await asyncio.sleep(0)
        try:
            async with metrics.timed("delete"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

    asyncio.run(run())
    assert metrics.get_operation("delete").count == 3
    assert metrics.get_metrics()["errors"]["delete"]["error_types"] == {"RuntimeError": 1}
    print("✓ timed() records success and failure")


def test_disabled_collector_ignores_records():
    metrics = MetricsCollector(enabled=False)
    metrics.record("query", 10)
    metrics.record_error("query", RuntimeError("boom"), 5)
    snapshot = metrics.get_metrics()
    assert snapshot["operations"] == {}
    assert snapshot["errors"] == {}
    print("✓ Disabled collector records nothing")


def test_summary_and_reporting_loop():
    metrics = MetricsCollector(enabled=True)
    metrics.record("query", 1)

    class StaticHealth:
        def get_status(self):
            return {"status": "healthy"}

    metrics.attach_health_source(StaticHealth())
    summary = metrics.log_summary()
    assert summary["health"] == {"status": "healthy"}

    async def run():
        task = metrics.start_reporting(interval_ms=10)
        assert task is not None
        await asyncio.sleep(0.03)
        await metrics.stop_reporting()
        assert task.done()

    asyncio.run(run())
    print("✓ Periodic summary loop starts and stops")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Metrics Collector")
    print("=" * 60)

    test_record_accumulates()
    test_record_error_taxonomy()
    test_snapshot_is_read_only_and_clear()
    test_concurrent_writers()
    test_timed_context_manager()
    test_disabled_collector_ignores_records()
    test_summary_and_reporting_loop()

    print("\n✅ All metrics tests passed!")
