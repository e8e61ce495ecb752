"""Tests for the rate-limited DeliveryQueue.

Uses a fake millisecond clock and an AsyncMock sink.
"""

import asyncio
import threading
import time

import pytest
from unittest.mock import AsyncMock

from eew_relay.core.alert import CanonicalAlert
from eew_relay.core.errors import SinkError
from eew_relay.core.rate_limit import DeliveryState
from eew_relay.core.sink import PostOptions
from eew_relay.delivery import DeliveryQueue, DeliveryStatus, monotonic_ms


SPACING_MS = 2000


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now=10_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


def render(alert):
    return f"M{alert.magnitude}", PostOptions()


def alert(magnitude):
    return CanonicalAlert(magnitude=magnitude)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    mock_sink = AsyncMock()
    mock_sink.post.return_value = "note-id"
    return mock_sink


@pytest.fixture
def queue(sink, clock):
    return DeliveryQueue(sink=sink, render=render, min_spacing_ms=SPACING_MS, clock=clock)


def posted_texts(sink):
    return [c.args[0] for c in sink.post.await_args_list]


class TestSubmit:
    """Tests for DeliveryQueue.submit()."""

    @pytest.mark.asyncio
    async def test_first_alert_delivered_immediately(self, queue, sink, clock):
        first = alert(5.0)

        result = await queue.submit(first)

        assert result.status == DeliveryStatus.DELIVERED
        assert result.post_id == "note-id"
        assert queue.state.last_sent_at == clock.now
        assert queue.state.last_sent_alert is first
        assert queue.state.delivered_count == 1
        sink.post.assert_awaited_once_with("M5.0", PostOptions())

    @pytest.mark.asyncio
    async def test_second_alert_within_interval_is_queued(self, queue, sink, clock):
        await queue.submit(alert(5.0))
        clock.advance(500)

        result = await queue.submit(alert(5.5))

        assert result.status == DeliveryStatus.QUEUED
        assert len(queue.state.pending) == 1
        assert sink.post.await_count == 1

    @pytest.mark.asyncio
    async def test_queued_alert_delivered_after_interval_and_drain(self, queue, sink, clock):
        await queue.submit(alert(5.0))
        clock.advance(500)
        await queue.submit(alert(5.5))

        assert await queue.drain() == []

        clock.advance(SPACING_MS)
        results = await queue.drain()

        assert [r.status for r in results] == [DeliveryStatus.DELIVERED]
        assert posted_texts(sink) == ["M5.0", "M5.5"]
        assert len(queue.state.pending) == 0

    @pytest.mark.asyncio
    async def test_new_alert_waits_behind_pending(self, queue, sink, clock):
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.5))
        clock.advance(SPACING_MS)

        result = await queue.submit(alert(6.0))

        # The older pending alert goes out first; the new one waits.
        assert result.status == DeliveryStatus.QUEUED
        assert posted_texts(sink) == ["M5.0", "M5.5"]
        assert [a.magnitude for a in queue.state.pending] == [6.0]

    @pytest.mark.asyncio
    async def test_result_belongs_to_submitted_alert(self, queue, clock):
        first = alert(5.0)
        await queue.submit(first)
        queue.state.pending.append(alert(5.2))
        clock.advance(SPACING_MS)

        result = await queue.submit(alert(5.4))

        assert result.alert.magnitude == 5.4
        assert result.status == DeliveryStatus.QUEUED


class TestDrain:
    """Tests for DeliveryQueue.drain()."""

    @pytest.mark.asyncio
    async def test_delivers_in_arrival_order(self, queue, sink, clock):
        await queue.submit(alert(5.0))
        for magnitude in (5.2, 5.4, 5.6):
            await queue.submit(alert(magnitude))

        for _ in range(3):
            clock.advance(SPACING_MS)
            await queue.drain()

        assert posted_texts(sink) == ["M5.0", "M5.2", "M5.4", "M5.6"]

    @pytest.mark.asyncio
    async def test_too_early_alert_stays_at_front(self, queue, clock):
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.2))
        await queue.submit(alert(5.4))
        clock.advance(1000)

        await queue.drain()

        assert [a.magnitude for a in queue.state.pending] == [5.2, 5.4]

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, queue, sink, clock):
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.2))
        await queue.submit(alert(5.4))
        clock.advance(SPACING_MS)
        sink.post.side_effect = SinkError("down", 503)

        results = await queue.drain()

        assert [r.status for r in results] == [DeliveryStatus.FAILED]
        assert [a.magnitude for a in queue.state.pending] == [5.4]

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.drain() == []


class TestFailure:
    """Tests for failed sink calls."""

    @pytest.mark.asyncio
    async def test_failure_reported_not_requeued(self, queue, sink):
        sink.post.side_effect = SinkError("Rate limit exceeded", 429)

        result = await queue.submit(alert(5.0))

        assert result.status == DeliveryStatus.FAILED
        assert result.error == "Rate limit exceeded"
        assert queue.state.failed_count == 1
        assert queue.state.delivered_count == 0
        assert len(queue.state.pending) == 0

    @pytest.mark.asyncio
    async def test_failure_leaves_last_sent_untouched(self, queue, sink, clock):
        first = alert(5.0)
        await queue.submit(first)
        sent_at = queue.state.last_sent_at
        clock.advance(SPACING_MS)
        sink.post.side_effect = SinkError("down")

        await queue.submit(alert(6.0))

        assert queue.state.last_sent_at == sent_at
        assert queue.state.last_sent_alert is first
        assert queue.state.in_flight is False


class TestInFlight:
    """Tests for the at-most-one-outstanding-call guarantee."""

    @pytest.mark.asyncio
    async def test_submissions_during_call_are_queued(self, queue, sink):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_post(content, options):
            started.set()
            await release.wait()
            return "slow-id"

        sink.post.side_effect = slow_post

        first = asyncio.create_task(queue.submit(alert(5.0)))
        await started.wait()

        assert queue.state.in_flight is True
        second = await queue.submit(alert(5.5))
        direct = await queue.attempt_delivery(alert(6.0))

        assert second.status == DeliveryStatus.QUEUED
        assert direct.status == DeliveryStatus.QUEUED
        assert sink.post.await_count == 1

        release.set()
        result = await first

        assert result.status == DeliveryStatus.DELIVERED
        assert queue.state.in_flight is False
        assert [a.magnitude for a in queue.state.pending] == [5.5, 6.0]

    @pytest.mark.asyncio
    async def test_render_error_releases_in_flight(self, sink, clock):
        def broken_render(alert):
            raise RuntimeError("bad template")

        queue = DeliveryQueue(sink=sink, render=broken_render, min_spacing_ms=SPACING_MS, clock=clock)

        with pytest.raises(RuntimeError):
            await queue.submit(alert(5.0))

        assert queue.state.in_flight is False
        sink.post.assert_not_awaited()


class SlowSink:
    """Sink whose post takes real time, recording when each call started."""

    def __init__(self, delay):
        self.delay = delay
        self.calls = []

    async def post(self, content, options):
        self.calls.append(time.monotonic())
        await asyncio.sleep(self.delay)
        return "slow-id"

    async def test_connectivity(self):
        return True


class TestThreadedSubmit:
    """Requests handled on separate threads share one queue."""

    def test_concurrent_submits_make_one_sink_call(self):
        sink = SlowSink(delay=0.2)

        def slow_render(alert):
            time.sleep(0.05)
            return render(alert)

        queue = DeliveryQueue(
            sink=sink,
            render=slow_render,
            min_spacing_ms=SPACING_MS,
            clock=monotonic_ms,
        )
        barrier = threading.Barrier(2)
        results = []

        def handle_request(magnitude):
            barrier.wait()
            results.append(asyncio.run(queue.submit(alert(magnitude))))

        threads = [
            threading.Thread(target=handle_request, args=(m,)) for m in (5.0, 5.5)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(sink.calls) == 1
        assert sorted(r.status.value for r in results) == ["delivered", "queued"]
        assert queue.state.delivered_count == 1
        assert len(queue.state.pending) == 1
        assert queue.state.in_flight is False


class TestFlush:
    """Tests for DeliveryQueue.flush()."""

    @pytest.mark.asyncio
    async def test_waits_out_spacing(self, sink, clock):
        waits = []

        async def fake_sleep(seconds):
            waits.append(seconds)
            clock.advance(seconds * 1000)

        queue = DeliveryQueue(
            sink=sink,
            render=render,
            min_spacing_ms=SPACING_MS,
            clock=clock,
            sleep=fake_sleep,
        )
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.2))
        await queue.submit(alert(5.4))

        results = await queue.flush()

        assert [r.status for r in results] == [DeliveryStatus.DELIVERED] * 2
        assert waits == [2.0, 2.0]
        assert len(queue.state.pending) == 0


class TestStatsAndReset:
    """Tests for stats() and reset()."""

    @pytest.mark.asyncio
    async def test_stats(self, queue):
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.2))

        stats = queue.stats()

        assert stats.delivered_count == 1
        assert stats.queue_length == 1
        assert stats.in_flight is False

    @pytest.mark.asyncio
    async def test_reset(self, queue):
        await queue.submit(alert(5.0))
        await queue.submit(alert(5.2))

        queue.reset()

        assert queue.state.last_sent_at is None
        assert queue.state.last_sent_alert is None
        assert len(queue.state.pending) == 0
        assert queue.state.delivered_count == 0

    def test_uses_given_state(self, sink, clock):
        state = DeliveryState()
        queue = DeliveryQueue(sink=sink, render=render, min_spacing_ms=SPACING_MS, state=state, clock=clock)
        assert queue.state is state
