"""Orchestrator - Wires Functional Core and Imperative Shell.

This module coordinates the flow of each inbound alert through the pure
core (normalization, severity, policy, rendering) and the delivery queue
that talks to the sink. It's the "glue" that makes the application work.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from eew_relay.core.alert import CanonicalAlert
from eew_relay.core.config import Config
from eew_relay.core.errors import NormalizationError, SinkError
from eew_relay.core.formatter import (
    build_post_options,
    format_short,
    format_test_note,
    render_note,
)
from eew_relay.core.normalizer import normalize_batch, partition_results
from eew_relay.core.rate_limit import DeliveryStats
from eew_relay.core.rules import PolicyDecision, evaluate_policy
from eew_relay.core.sink import PostOptions, Sink
from eew_relay.delivery import DeliveryQueue, DeliveryResult, monotonic_ms
from eew_relay.shell.misskey_client import MisskeyClient, MisskeySink


logger = logging.getLogger(__name__)


@dataclass
class AlertOutcome:
    """Result of processing a single canonical alert.

    Attributes:
        alert: The alert that was processed
        decision: Policy decision for the alert
        delivery: Delivery result (None if the alert was not submitted)
    """
    alert: CanonicalAlert
    decision: PolicyDecision
    delivery: DeliveryResult | None = None

    @property
    def status(self) -> str:
        """'dropped', 'disabled', or the delivery status."""
        if not self.decision.deliver:
            return "dropped"
        if self.delivery is None:
            return "disabled"
        return self.delivery.status.value

    def to_dict(self) -> dict[str, Any]:
        """Summary for the HTTP response."""
        result: dict[str, Any] = {
            "type": self.alert.kind,
            "severity": self.decision.severity,
            "status": self.status,
            "summary": format_short(self.alert),
        }
        if self.decision.reason:
            result["reason"] = self.decision.reason
        if self.delivery is not None:
            if self.delivery.post_id:
                result["post_id"] = self.delivery.post_id
            if self.delivery.error:
                result["error"] = self.delivery.error
        return result


@dataclass
class ProcessingResult:
    """Result of processing one inbound body (single item or batch).

    Attributes:
        items_received: Items found in the body
        outcomes: Per-alert outcomes, in input order
        errors: Rejection messages for items that could not be normalized
        drained: Deliveries of previously queued alerts made before this body
    """
    items_received: int
    outcomes: list[AlertOutcome]
    errors: list[str]
    drained: list[DeliveryResult] = field(default_factory=list)

    @property
    def alerts_normalized(self) -> int:
        return len(self.outcomes)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def delivered(self) -> int:
        return self._count("delivered")

    @property
    def queued(self) -> int:
        return self._count("queued")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def dropped(self) -> int:
        return self._count("dropped")

    @property
    def success(self) -> bool:
        """Returns True if nothing was rejected and no delivery failed."""
        return not self.errors and self.failed == 0

    @property
    def summary(self) -> str:
        """Human-readable summary of the processing result."""
        return (
            f"Received {self.items_received} items, "
            f"{self.alerts_normalized} alerts, "
            f"{self.delivered} delivered, "
            f"{self.queued} queued, "
            f"{self.dropped} dropped, "
            f"{self.failed} failed, "
            f"{len(self.errors)} rejected"
        )


@dataclass
class ReceiverStats:
    """Running counters for the receiver.

    Attributes:
        started_at: Wall-clock start time (seconds since epoch)
        total_received: Inbound items seen
        total_processed: Items normalized into alerts
        total_posted: Alerts delivered to the sink
        errors: Rejected items plus failed deliveries
    """
    started_at: float = field(default_factory=time.time)
    total_received: int = 0
    total_processed: int = 0
    total_posted: int = 0
    errors: int = 0

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at

    def record(self, result: ProcessingResult) -> None:
        self.total_received += result.items_received
        self.total_processed += result.alerts_normalized
        self.total_posted += result.delivered + sum(1 for r in result.drained if r.success)
        self.errors += len(result.errors) + result.failed


class Orchestrator:
    """Coordinates alert normalization, filtering and delivery.

    This class wires together:
    - Normalizer (raw inbound payloads to canonical alerts)
    - Policy filter (severity, bounds, regions, significant updates)
    - Formatter (note text and post options)
    - DeliveryQueue (rate-limited delivery to the sink)
    """

    def __init__(
        self,
        config: Config,
        sink: Sink | None = None,
        queue: DeliveryQueue | None = None,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        """Initialize orchestrator with configuration.

        Args:
            config: Application configuration
            sink: Notification sink (Misskey sink created if not provided)
            queue: Delivery queue (created if not provided)
            clock: Millisecond clock for the delivery queue
        """
        self.config = config
        self.sink = sink or MisskeySink(MisskeyClient(config.misskey))
        self.queue = queue or DeliveryQueue(
            sink=self.sink,
            render=self.render,
            min_spacing_ms=config.policy.rate_limit_interval_ms,
            clock=clock,
        )
        self.receiver_stats = ReceiverStats()

    def render(self, alert: CanonicalAlert) -> tuple[str, PostOptions]:
        """Render an alert with the configured posting options."""
        return render_note(alert, self.config.posting)

    async def process_alert(self, alert: CanonicalAlert) -> AlertOutcome:
        """Filter one alert and submit it to the delivery queue.

        Args:
            alert: Canonical alert

        Returns:
            AlertOutcome with the policy decision and delivery result
        """
        decision = evaluate_policy(
            alert,
            self.config.policy,
            self.queue.state.last_sent_alert,
        )

        if not decision.deliver:
            logger.info("Dropped %s: %s", format_short(alert), decision.reason)
            return AlertOutcome(alert=alert, decision=decision)

        if not self.config.posting.enabled:
            logger.info("Posting disabled, not delivering %s", format_short(alert))
            return AlertOutcome(alert=alert, decision=decision)

        delivery = await self.queue.submit(alert)

        logger.info(
            "%s (severity %.1f): %s",
            format_short(alert),
            decision.severity,
            delivery.status.value,
        )

        return AlertOutcome(alert=alert, decision=decision, delivery=delivery)

    async def process_batch(self, body: Any) -> ProcessingResult:
        """Process an inbound body of one or more raw alerts.

        Pending alerts whose spacing has elapsed are delivered first. Each
        item is then normalized independently; rejected items are reported
        in the result and never abort the rest of the batch.

        Args:
            body: Single payload, array, or newline-delimited payloads

        Returns:
            ProcessingResult summarizing the body
        """
        drained = await self.queue.drain()

        results = normalize_batch(body)
        alerts, rejections = partition_results(results)

        outcomes = []
        for alert in alerts:
            outcomes.append(await self.process_alert(alert))

        result = ProcessingResult(
            items_received=len(results),
            outcomes=outcomes,
            errors=[_describe_rejection(e) for e in rejections],
            drained=drained,
        )
        self.receiver_stats.record(result)

        logger.info("Processed inbound body: %s", result.summary)

        return result

    async def process_raw(self, raw: Any) -> ProcessingResult:
        """Process a single raw payload."""
        return await self.process_batch([raw])

    async def flush_pending(self) -> list[DeliveryResult]:
        """Wait out the spacing and deliver every pending alert."""
        return await self.queue.flush()

    async def test_connection(self) -> bool:
        """Check that the sink is reachable."""
        return await self.sink.test_connectivity()

    async def post_test(self) -> str | None:
        """Post a test note directly to the sink, bypassing the queue.

        Returns:
            Post id, or None if the post failed
        """
        text = format_test_note(datetime.now(timezone.utc))
        options = build_post_options(self.config.posting)

        try:
            post_id = await self.sink.post(
                text,
                PostOptions(visibility=options.visibility, local_only=options.local_only),
            )
        except SinkError as e:
            logger.error("Test post failed: %s", e)
            return None

        logger.info("Test post successful: %s", post_id)
        return post_id

    def stats(self) -> DeliveryStats:
        """Delivery queue counters."""
        return self.queue.stats()


def _describe_rejection(error: NormalizationError) -> str:
    return f"{error.kind}: {error}"
