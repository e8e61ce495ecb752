"""Delivery Queue - Rate-limited delivery to the notification sink.

This module owns the mutable DeliveryState and the single await point of
the pipeline: the sink call. Spacing decisions are delegated to the pure
functions in eew_relay.core.rate_limit.

Concurrency: while a sink call is outstanding (``state.in_flight``), new
submissions go to the tail of ``pending`` and no second attempt is issued.
The HTTP server runs requests on several threads, each with its own event
loop, so every read and write of the state happens under a threading lock.
A delivery is claimed (spacing checked, ``in_flight`` set) in one locked
step, and the outcome is recorded before ``in_flight`` is released. The
lock is never held across an await.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from eew_relay.core.alert import CanonicalAlert
from eew_relay.core.errors import SinkError
from eew_relay.core.rate_limit import (
    DeliveryState,
    DeliveryStats,
    can_deliver_now,
    is_spacing_satisfied,
    remaining_spacing_ms,
    snapshot,
)
from eew_relay.core.sink import PostOptions, Sink


logger = logging.getLogger(__name__)


Renderer = Callable[[CanonicalAlert], tuple[str, PostOptions]]


def monotonic_ms() -> float:
    """Default clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000


class DeliveryStatus(str, Enum):
    """What happened to a submitted alert."""
    DELIVERED = "delivered"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass
class DeliveryResult:
    """Result of submitting or delivering one alert.

    Attributes:
        alert: The alert concerned
        status: Delivered, queued or failed
        post_id: Sink id of the published post (if delivered)
        error: Error message (if failed)
    """
    alert: CanonicalAlert
    status: DeliveryStatus
    post_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        """Returns True if the alert was delivered."""
        return self.status == DeliveryStatus.DELIVERED


class DeliveryQueue:
    """Enforces a minimum spacing between deliveries to a sink.

    Pending alerts are delivered strictly in arrival order. An alert
    drained too early goes back to the front of the queue, never the tail.
    Failed deliveries are reported, not requeued.
    """

    def __init__(
        self,
        sink: Sink,
        render: Renderer,
        min_spacing_ms: float,
        state: DeliveryState | None = None,
        clock: Callable[[], float] = monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the queue.

        Args:
            sink: Notification sink to deliver to
            render: Turns an alert into (content, options) for the sink
            min_spacing_ms: Minimum time between successful deliveries
            state: Delivery state (a fresh one if not provided)
            clock: Millisecond clock
            sleep: Async sleep (seconds) used by flush
        """
        self.sink = sink
        self.render = render
        self.min_spacing_ms = min_spacing_ms
        self.state = state if state is not None else DeliveryState()
        self.clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

    async def submit(self, alert: CanonicalAlert) -> DeliveryResult:
        """Deliver an alert now, or queue it until the spacing elapses.

        Args:
            alert: Alert that passed the posting policy

        Returns:
            DeliveryResult for this alert (QUEUED if it is still pending)
        """
        with self._lock:
            claimed = can_deliver_now(self.state, self.clock(), self.min_spacing_ms)
            if claimed:
                self.state.in_flight = True
            else:
                self.state.pending.append(alert)
                pending_count = len(self.state.pending)

        if claimed:
            return await self._deliver_and_drain(alert)

        logger.info("Rate limited, queueing alert (%d pending)", pending_count)

        for result in await self.drain():
            if result.alert is alert:
                return result

        return DeliveryResult(alert=alert, status=DeliveryStatus.QUEUED)

    async def attempt_delivery(self, alert: CanonicalAlert) -> DeliveryResult:
        """Deliver an alert, then drain the pending queue on success.

        If a sink call is already outstanding the alert is queued instead.

        Args:
            alert: Alert to deliver

        Returns:
            DeliveryResult for this alert
        """
        with self._lock:
            if self.state.in_flight:
                self.state.pending.append(alert)
                return DeliveryResult(alert=alert, status=DeliveryStatus.QUEUED)
            self.state.in_flight = True

        return await self._deliver_and_drain(alert)

    async def _deliver_and_drain(self, alert: CanonicalAlert) -> DeliveryResult:
        result = await self._deliver(alert)
        if result.success:
            await self.drain()
        return result

    def _claim_next(self) -> CanonicalAlert | None:
        """Pop the head of the queue and mark it in flight, if allowed now."""
        with self._lock:
            if not self.state.pending or self.state.in_flight:
                return None

            alert = self.state.pending.popleft()

            if not is_spacing_satisfied(self.state, self.clock(), self.min_spacing_ms):
                self.state.pending.appendleft(alert)
                return None

            self.state.in_flight = True
            return alert

    async def drain(self) -> list[DeliveryResult]:
        """Deliver pending alerts from the head while the spacing allows.

        An alert popped too early is put back at the front. Draining
        stops at the first failed delivery.

        Returns:
            Results for the alerts that were attempted
        """
        results: list[DeliveryResult] = []

        while True:
            alert = self._claim_next()
            if alert is None:
                break

            result = await self._deliver(alert)
            results.append(result)

            if not result.success:
                break

        return results

    async def flush(self) -> list[DeliveryResult]:
        """Wait out the spacing and deliver everything pending.

        Stops early if a delivery fails.

        Returns:
            Results for the alerts that were attempted
        """
        results: list[DeliveryResult] = []

        while True:
            with self._lock:
                if not self.state.pending or self.state.in_flight:
                    break
                wait_ms = remaining_spacing_ms(self.state, self.clock(), self.min_spacing_ms)

            if wait_ms > 0:
                await self._sleep(wait_ms / 1000)

            drained = await self.drain()
            results.extend(drained)

            if drained and not drained[-1].success:
                break

        return results

    async def _deliver(self, alert: CanonicalAlert) -> DeliveryResult:
        """Make exactly one sink call and record the outcome.

        The caller must have claimed the delivery (set ``in_flight``).
        """
        post_id = None
        error: SinkError | None = None
        delivered = False

        try:
            content, options = self.render(alert)
            post_id = await self.sink.post(content, options)
            delivered = True
        except SinkError as e:
            error = e
        finally:
            with self._lock:
                if delivered:
                    self.state.last_sent_at = self.clock()
                    self.state.last_sent_alert = alert
                    self.state.delivered_count += 1
                elif error is not None:
                    self.state.failed_count += 1
                delivered_count = self.state.delivered_count
                self.state.in_flight = False

        if error is not None:
            logger.error("Failed to deliver alert: %s", error)
            return DeliveryResult(
                alert=alert,
                status=DeliveryStatus.FAILED,
                error=str(error),
            )

        logger.info("Delivered alert %s (delivered: %d)", post_id, delivered_count)

        return DeliveryResult(
            alert=alert,
            status=DeliveryStatus.DELIVERED,
            post_id=post_id,
        )

    def stats(self) -> DeliveryStats:
        """Snapshot of delivery counters."""
        with self._lock:
            return snapshot(self.state)

    def reset(self) -> None:
        """Clear the pending queue and all counters."""
        with self._lock:
            self.state.last_sent_at = None
            self.state.last_sent_alert = None
            self.state.pending.clear()
            self.state.delivered_count = 0
            self.state.failed_count = 0
