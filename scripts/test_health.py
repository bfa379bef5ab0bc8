#!/usr/bin/env python3
"""Test script for Health Monitor."""

import sys
import os
import asyncio
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from digest_index.services.health import HealthMonitor

from fakes import FakeHTTPError, FakeIndexBackend, build_store


class SwitchableProbe:
    def __init__(self):
        self.fail = False
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("index unreachable")
        return {"total_vector_count": 0}


def _monitor(probe, **kwargs) -> HealthMonitor:
    options = {"interval_ms": 0, "timeout_ms": 200, "healthy_threshold": 2, "unhealthy_threshold": 3}
    options.update(kwargs)
    return HealthMonitor(probe, **options)


def test_state_machine_transitions():
    print("Testing health transitions...")
    probe = SwitchableProbe()
    monitor = _monitor(probe)

    status = monitor.get_status()
    assert status["status"] == "unknown" and not status["is_healthy"]

    asyncio.run(monitor.probe())
    assert monitor.get_status()["status"] == "unknown"
    asyncio.run(monitor.probe())
    assert monitor.is_healthy
    print("✓ unknown -> healthy after 2 successes")

    probe.fail = True
    for _ in range(2):
        asyncio.run(monitor.probe())
        assert monitor.is_healthy
    asyncio.run(monitor.probe())
    assert not monitor.is_healthy
    status = monitor.get_status()
    assert status["status"] == "unhealthy"
    assert status["consecutive_failures"] == 3
    assert "ConnectionError" in status["last_error"]
    print("✓ healthy -> unhealthy after 3 failures")

    probe.fail = False
    asyncio.run(monitor.probe())
    assert not monitor.is_healthy
    assert monitor.get_status()["consecutive_failures"] == 0
    asyncio.run(monitor.probe())
    assert monitor.is_healthy
    print("✓ One success does not flip back; two do")


def test_counters_reset_each_other():
    probe = SwitchableProbe()
    monitor = _monitor(probe, healthy_threshold=5)

    asyncio.run(monitor.probe())
    asyncio.run(monitor.probe())
    probe.fail = True
    asyncio.run(monitor.probe())

    status = monitor.get_status()
    assert status["consecutive_successes"] == 0
    assert status["consecutive_failures"] == 1
    assert status["total_checks"] == 3
    print("✓ Outcomes reset the opposite counter")


def test_probe_timeout_counts_as_failure():
    async def hanging():
        await asyncio.sleep(1)

    monitor = _monitor(hanging, timeout_ms=20, unhealthy_threshold=1)
    assert asyncio.run(monitor.probe()) is False
    assert monitor.get_status()["status"] == "unhealthy"
    print("✓ Timed-out probe counted as failure")


def test_probe_against_store_and_embeddings():
    print("Testing probes against the client...")
    backend = FakeIndexBackend()
    store = build_store(backend)

    async def embedding_down():
        return False

    monitor = _monitor(store.get_index_stats, embedding_probe=embedding_down, healthy_threshold=1)
    assert asyncio.run(monitor.run_once()) is True
    status = monitor.get_status()
    assert status["is_healthy"]
    assert status["embedding"]["available"] is False
    assert status["embedding"]["reason"] == "api_connectivity"
    assert backend.calls["describe_index_stats"] == 1
    print("✓ Embedding probe reported separately from index state")

    failing = build_store(FakeIndexBackend(stats_error=FakeHTTPError(500)))
    monitor = _monitor(failing.get_index_stats, unhealthy_threshold=1)
    asyncio.run(monitor.probe())
    assert monitor.get_status()["status"] == "unhealthy"
    print("✓ Store failures drive the state machine")


def test_loop_start_stop():
    probe = SwitchableProbe()
    monitor = _monitor(probe, interval_ms=10)

    async def run():
        task = monitor.start()
        assert monitor.start() is task
        await asyncio.sleep(0.08)
        assert monitor.is_running
        await monitor.stop()
        assert not monitor.is_running

    asyncio.run(run())
    assert probe.calls >= 2
    assert monitor.is_healthy
    print(f"✓ Loop ran {probe.calls} probes and stopped")

    disabled = _monitor(SwitchableProbe(), interval_ms=0)

    async def run_disabled():
        assert disabled.start() is None

    asyncio.run(run_disabled())
    print("✓ Interval 0 disables the loop")


if __name__ == "__main__":
    print("=" * 60)
    print("Testing Health Monitor")
    print("=" * 60)

    test_state_machine_transitions()
    test_counters_reset_each_other()
    test_probe_timeout_counts_as_failure()
    test_probe_against_store_and_embeddings()
    test_loop_start_stop()

    print("\n✅ All health monitor tests passed!")
