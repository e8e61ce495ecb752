"""Update significance comparison - Pure functions.

EEW reports for the same earthquake arrive in quick succession. This
module decides whether a new report differs enough from the last one
delivered to be worth another notification.

Note: Which alert was last delivered is tracked by the delivery queue.
This module only contains the pure comparison.
"""

from eew_relay.core.alert import CanonicalAlert


# Minimum magnitude change considered significant
MAGNITUDE_THRESHOLD = 0.2

# Absorbs binary rounding so that e.g. 5.9 - 5.7 counts as 0.2
_EPSILON = 1e-9


def magnitude_changed(current: CanonicalAlert, previous: CanonicalAlert) -> bool:
    """Check if magnitude moved by at least MAGNITUDE_THRESHOLD.

    Pure function. Only evaluated when both magnitudes are present.
    """
    if current.magnitude is None or previous.magnitude is None:
        return False
    delta = abs(current.magnitude - previous.magnitude)
    return delta >= MAGNITUDE_THRESHOLD - _EPSILON


def intensity_changed(current: CanonicalAlert, previous: CanonicalAlert) -> bool:
    """Check if either bound of the forecast maximum intensity changed.

    Pure function.
    """
    return current.max_intensity != previous.max_intensity


def new_warning_regions(
    current: CanonicalAlert,
    previous: CanonicalAlert,
) -> frozenset[str]:
    """Codes warned in the current alert but not in the previous one.

    Pure function.
    """
    return current.warned_region_codes - previous.warned_region_codes


def is_significant(
    current: CanonicalAlert,
    previous: CanonicalAlert | None,
) -> bool:
    """Determine if an alert is a significant update over the previous one.

    Pure function.

    Args:
        current: The newly received alert
        previous: The last delivered alert (None if nothing delivered)

    Returns:
        True if the alert is worth notifying about again
    """
    if previous is None:
        return True

    if current.is_canceled != previous.is_canceled:
        return True

    if current.is_warning != previous.is_warning:
        return True

    if magnitude_changed(current, previous):
        return True

    if intensity_changed(current, previous):
        return True

    return bool(new_warning_regions(current, previous))
