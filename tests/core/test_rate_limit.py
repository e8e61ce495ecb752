"""Unit tests for delivery spacing logic.

Pure function tests - fast, no mocks needed.
"""

import math

from eew_relay.core.alert import CanonicalAlert
from eew_relay.core.rate_limit import (
    DeliveryState,
    can_deliver_now,
    is_spacing_satisfied,
    remaining_spacing_ms,
    snapshot,
    time_since_last_delivery,
)


class TestDeliveryState:
    """Tests for the initial delivery state."""

    def test_fresh_state(self):
        state = DeliveryState()
        assert state.last_sent_at is None
        assert state.last_sent_alert is None
        assert len(state.pending) == 0
        assert state.delivered_count == 0
        assert state.failed_count == 0
        assert state.in_flight is False

    def test_states_are_independent(self):
        first = DeliveryState()
        second = DeliveryState()
        first.pending.append(CanonicalAlert())
        assert len(second.pending) == 0


class TestSpacing:
    """Tests for spacing checks."""

    def test_never_delivered_is_infinitely_long_ago(self):
        assert time_since_last_delivery(DeliveryState(), 0.0) == math.inf

    def test_spacing_satisfied_before_first_delivery(self):
        assert is_spacing_satisfied(DeliveryState(), 0.0, 2000) is True

    def test_spacing_not_satisfied(self):
        state = DeliveryState(last_sent_at=1000.0)
        assert is_spacing_satisfied(state, 2500.0, 2000) is False

    def test_spacing_satisfied_exactly(self):
        state = DeliveryState(last_sent_at=1000.0)
        assert is_spacing_satisfied(state, 3000.0, 2000) is True

    def test_remaining_spacing(self):
        state = DeliveryState(last_sent_at=1000.0)
        assert remaining_spacing_ms(state, 2500.0, 2000) == 500.0
        assert remaining_spacing_ms(state, 5000.0, 2000) == 0.0

    def test_remaining_spacing_before_first_delivery(self):
        assert remaining_spacing_ms(DeliveryState(), 0.0, 2000) == 0.0


class TestCanDeliverNow:
    """Tests for can_deliver_now()."""

    def test_idle_state(self):
        assert can_deliver_now(DeliveryState(), 0.0, 2000) is True

    def test_in_flight(self):
        assert can_deliver_now(DeliveryState(in_flight=True), 0.0, 2000) is False

    def test_pending_alerts_go_first(self):
        state = DeliveryState()
        state.pending.append(CanonicalAlert())
        assert can_deliver_now(state, 0.0, 2000) is False

    def test_within_spacing(self):
        state = DeliveryState(last_sent_at=0.0)
        assert can_deliver_now(state, 1999.0, 2000) is False


class TestSnapshot:
    """Tests for snapshot()."""

    def test_reports_queue_length(self):
        state = DeliveryState(delivered_count=3, failed_count=1, last_sent_at=42.0)
        state.pending.extend([CanonicalAlert(), CanonicalAlert()])

        stats = snapshot(state)

        assert stats.delivered_count == 3
        assert stats.failed_count == 1
        assert stats.queue_length == 2
        assert stats.last_sent_at == 42.0
        assert stats.in_flight is False
