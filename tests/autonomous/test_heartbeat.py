# tests/autonomous/test_heartbeat.py
"""
Tests for the heartbeat: due calculation, single-flight skipping,
failure accounting with the circuit breaker, and the run loop.
"""

import asyncio
from datetime import timedelta

import pytest

from agentloop.autonomous.heartbeat import HeartbeatManager, HeartbeatTask


class Counter:
    def __init__(self, error=None):
        self.calls = 0
        self.error = error

    async def __call__(self):
        self.calls += 1
        if self.error:
            raise RuntimeError(self.error)


@pytest.fixture
def heartbeat(clock):
    return HeartbeatManager(interval=timedelta(seconds=1), clock=clock)


# =============================================================================
# HeartbeatTask
# =============================================================================


class TestHeartbeatTask:
    def test_new_job_is_due(self, clock):
        job = HeartbeatTask("job", Counter(), timedelta(minutes=5))
        assert job.is_due(clock())

    def test_disabled_job_is_never_due(self, clock):
        job = HeartbeatTask("job", Counter(), timedelta(0), enabled=False)
        assert not job.is_due(clock())

    def test_circuit_breaker(self, clock):
        job = HeartbeatTask("job", Counter(), timedelta(0), max_consecutive_errors=2)
        job.mark_failed("one")
        job.mark_failed("two")

        assert job.is_circuit_broken
        assert not job.is_due(clock())

        job.reset()
        assert job.is_due(clock())
        assert job.failures == 2

    def test_success_clears_consecutive_failures(self):
        job = HeartbeatTask("job", Counter(), timedelta(0))
        job.mark_failed("boom")
        job.mark_succeeded()
        assert job.consecutive_failures == 0
        assert job.last_error is None
        assert job.runs == 2


# =============================================================================
# Beats
# =============================================================================


class TestBeat:
    @pytest.mark.asyncio
    async def test_interval_is_respected(self, heartbeat, clock):
        counter = Counter()
        heartbeat.register(HeartbeatTask("job", counter, timedelta(minutes=1)))

        assert heartbeat.beat() == ["job"]
        await heartbeat.drain()
        assert heartbeat.beat() == []

        clock.advance(minutes=1)
        assert heartbeat.beat() == ["job"]
        await heartbeat.drain()
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_in_flight_job_is_skipped(self, heartbeat):
        release = asyncio.Event()
        calls = []

        async def slow():
            calls.append(1)
            await release.wait()

        heartbeat.register(HeartbeatTask("slow", slow, timedelta(0)))

        heartbeat.beat()
        await asyncio.sleep(0)
        assert heartbeat.beat() == []
        assert heartbeat.get_job("slow").skipped == 1

        release.set()
        await heartbeat.drain()
        assert calls == [1]
        assert heartbeat.get_job("slow").runs == 1

    @pytest.mark.asyncio
    async def test_failures_reach_error_callbacks(self, heartbeat):
        seen = []

        async def on_error(name, error):
            seen.append((name, str(error)))

        heartbeat.on_error(on_error)
        heartbeat.register(HeartbeatTask("bad", Counter(error="boom"), timedelta(0)))

        heartbeat.beat()
        await heartbeat.drain()

        job = heartbeat.get_job("bad")
        assert job.failures == 1
        assert job.last_error == "boom"
        assert seen == [("bad", "boom")]

    @pytest.mark.asyncio
    async def test_broken_job_stops_running(self, heartbeat):
        counter = Counter(error="boom")
        heartbeat.register(HeartbeatTask("bad", counter, timedelta(0), max_consecutive_errors=2))

        for _ in range(4):
            heartbeat.beat()
            await heartbeat.drain()

        assert counter.calls == 2
        assert heartbeat.get_status()["jobs"]["bad"]["is_circuit_broken"] is True

    def test_register(self, heartbeat):
        heartbeat.register(HeartbeatTask("job", Counter(), timedelta(0)))
        assert heartbeat.get_job("job").name == "job"
        assert heartbeat.get_job("missing") is None


# =============================================================================
# Loop
# =============================================================================


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        heartbeat = HeartbeatManager(interval=timedelta(milliseconds=10))
        counter = Counter()
        heartbeat.register(HeartbeatTask("job", counter, timedelta(0)))

        await heartbeat.start()
        await heartbeat.start()
        await asyncio.sleep(0.05)
        await heartbeat.stop()

        assert counter.calls >= 1
        assert heartbeat.is_running is False
        assert heartbeat.get_status()["beats"] >= 1

    @pytest.mark.asyncio
    async def test_paused_heartbeat_launches_nothing(self):
        heartbeat = HeartbeatManager(interval=timedelta(milliseconds=10))
        counter = Counter()
        heartbeat.register(HeartbeatTask("job", counter, timedelta(0)))

        heartbeat.pause()
        await heartbeat.start()
        await asyncio.sleep(0.03)
        await heartbeat.stop()

        assert counter.calls == 0
        assert heartbeat.get_status()["paused"] is True
