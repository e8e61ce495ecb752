"""Posting policy evaluation - Pure functions.

This module decides which alerts should be delivered based on the
configured PostingPolicy. All functions are pure with no side effects.
"""

from dataclasses import dataclass

from eew_relay.core.alert import CanonicalAlert
from eew_relay.core.comparator import is_significant
from eew_relay.core.config import PostingPolicy
from eew_relay.core.severity import score


@dataclass(frozen=True)
class PolicyDecision:
    """Result of evaluating an alert against the policy.

    Attributes:
        alert: The alert evaluated
        deliver: Whether the alert should be delivered
        reason: Why it was dropped (None if delivered)
        severity: The alert's severity score
    """
    alert: CanonicalAlert
    deliver: bool
    reason: str | None
    severity: float


def matches_cancellation_rule(alert: CanonicalAlert, policy: PostingPolicy) -> bool:
    """Check that cancellations are allowed if this is one.

    Pure function.
    """
    return not (alert.is_canceled and not policy.include_cancellations)


def matches_warning_rule(alert: CanonicalAlert, policy: PostingPolicy) -> bool:
    """Check the warnings-only restriction.

    Pure function. Cancellations pass so a delivered warning can be
    retracted.
    """
    if not policy.only_warnings:
        return True
    return alert.is_warning or alert.is_canceled


def matches_magnitude_rule(alert: CanonicalAlert, policy: PostingPolicy) -> bool:
    """Check the minimum magnitude (skipped when either side is unset).

    Pure function.
    """
    if policy.min_magnitude is None or alert.magnitude is None:
        return True
    return alert.magnitude >= policy.min_magnitude


def matches_depth_rule(alert: CanonicalAlert, policy: PostingPolicy) -> bool:
    """Check the maximum depth (skipped when either side is unset).

    Pure function.
    """
    if policy.max_depth is None or alert.depth is None:
        return True
    return alert.depth <= policy.max_depth


def matches_region_rule(alert: CanonicalAlert, policy: PostingPolicy) -> bool:
    """Check the allowed/blocked region lists.

    Pure function.

    Returns True if:
    - No allow list, OR at least one affected region is allowed, AND
    - No block list, OR no affected region is blocked
    """
    codes = alert.affected_region_codes

    if policy.allowed_regions is not None:
        if not codes & policy.allowed_regions:
            return False

    if policy.blocked_regions is not None:
        if codes & policy.blocked_regions:
            return False

    return True


def evaluate_policy(
    alert: CanonicalAlert,
    policy: PostingPolicy,
    last_delivered: CanonicalAlert | None = None,
) -> PolicyDecision:
    """Evaluate an alert against the policy and the last delivered alert.

    Pure function. Earthquake-specific checks (magnitude, depth,
    regions) are skipped when the alert carries no earthquake data.

    Args:
        alert: Alert to evaluate
        policy: Posting policy
        last_delivered: Last alert delivered to the sink (if any)

    Returns:
        PolicyDecision naming the first failed check
    """
    severity = score(alert)

    def drop(reason: str) -> PolicyDecision:
        return PolicyDecision(alert=alert, deliver=False, reason=reason, severity=severity)

    if not matches_cancellation_rule(alert, policy):
        return drop("cancellations excluded")

    if not matches_warning_rule(alert, policy):
        return drop("not a warning")

    if severity < policy.min_severity:
        return drop(f"severity {severity:.1f} below {policy.min_severity:.1f}")

    if alert.has_earthquake:
        if not matches_magnitude_rule(alert, policy):
            return drop(f"magnitude {alert.magnitude} below {policy.min_magnitude}")

        if not matches_depth_rule(alert, policy):
            return drop(f"depth {alert.depth}km exceeds {policy.max_depth}km")

        if not matches_region_rule(alert, policy):
            return drop("region filter")

    if last_delivered is not None and not is_significant(alert, last_delivered):
        return drop("not a significant update")

    return PolicyDecision(alert=alert, deliver=True, reason=None, severity=severity)


def should_deliver(
    alert: CanonicalAlert,
    policy: PostingPolicy,
    last_delivered: CanonicalAlert | None = None,
) -> bool:
    """Determine if an alert should be delivered.

    Pure function.

    Args:
        alert: Alert to evaluate
        policy: Posting policy
        last_delivered: Last alert delivered to the sink (if any)

    Returns:
        True if every policy check passes
    """
    return evaluate_policy(alert, policy, last_delivered).deliver
