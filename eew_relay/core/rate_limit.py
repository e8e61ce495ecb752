"""Delivery spacing logic - State and pure functions.

This module holds the delivery state owned by the DeliveryQueue and the
pure checks used to enforce a minimum spacing between deliveries.
"""

import math
from collections import deque
from dataclasses import dataclass, field

from eew_relay.core.alert import CanonicalAlert


@dataclass
class DeliveryState:
    """Mutable delivery state, owned by a single DeliveryQueue.

    Attributes:
        last_sent_at: Clock reading (ms) of the last successful delivery
            (None until the first delivery)
        last_sent_alert: The last alert delivered successfully
        pending: Alerts waiting for the spacing to elapse, oldest first
        delivered_count: Successful deliveries
        failed_count: Failed delivery attempts
        in_flight: Whether a sink call is outstanding
    """
    last_sent_at: float | None = None
    last_sent_alert: CanonicalAlert | None = None
    pending: deque[CanonicalAlert] = field(default_factory=deque)
    delivered_count: int = 0
    failed_count: int = 0
    in_flight: bool = False


@dataclass(frozen=True)
class DeliveryStats:
    """Snapshot of delivery counters.

    Attributes:
        delivered_count: Successful deliveries
        failed_count: Failed delivery attempts
        queue_length: Alerts waiting in the pending queue
        last_sent_at: Clock reading (ms) of the last delivery
        in_flight: Whether a sink call is outstanding
    """
    delivered_count: int
    failed_count: int
    queue_length: int
    last_sent_at: float | None
    in_flight: bool


def time_since_last_delivery(state: DeliveryState, now_ms: float) -> float:
    """Milliseconds elapsed since the last successful delivery.

    Pure function. Infinite before the first delivery.
    """
    if state.last_sent_at is None:
        return math.inf
    return now_ms - state.last_sent_at


def is_spacing_satisfied(
    state: DeliveryState,
    now_ms: float,
    min_spacing_ms: float,
) -> bool:
    """Check if enough time has passed to deliver again.

    Pure function.

    Args:
        state: Current delivery state
        now_ms: Current clock reading in milliseconds
        min_spacing_ms: Minimum spacing between deliveries

    Returns:
        True if a delivery may be attempted now
    """
    return time_since_last_delivery(state, now_ms) >= min_spacing_ms


def remaining_spacing_ms(
    state: DeliveryState,
    now_ms: float,
    min_spacing_ms: float,
) -> float:
    """Milliseconds left until the spacing is satisfied (0 if it already is).

    Pure function.
    """
    return max(0.0, min_spacing_ms - time_since_last_delivery(state, now_ms))


def can_deliver_now(
    state: DeliveryState,
    now_ms: float,
    min_spacing_ms: float,
) -> bool:
    """Check if a new alert may bypass the pending queue.

    Pure function. Requires the spacing to have elapsed, no sink call
    outstanding and nothing older waiting.
    """
    return (
        not state.in_flight
        and not state.pending
        and is_spacing_satisfied(state, now_ms, min_spacing_ms)
    )


def snapshot(state: DeliveryState) -> DeliveryStats:
    """Take a read-only snapshot of the delivery counters.

    Pure function.
    """
    return DeliveryStats(
        delivered_count=state.delivered_count,
        failed_count=state.failed_count,
        queue_length=len(state.pending),
        last_sent_at=state.last_sent_at,
        in_flight=state.in_flight,
    )
