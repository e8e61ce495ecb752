"""Severity scoring - Pure functions.

A single number combining forecast intensity and magnitude, used for
threshold filtering and ranking.
"""

from eew_relay.core.alert import CanonicalAlert, IntensityCode


# Ordinal weight per intensity code; subgrades sit between levels
INTENSITY_WEIGHTS: dict[IntensityCode, float] = {
    IntensityCode.SHINDO_2: 2.0,
    IntensityCode.SHINDO_3: 3.0,
    IntensityCode.SHINDO_4: 4.0,
    IntensityCode.SHINDO_5_LOWER: 5.0,
    IntensityCode.SHINDO_5_UPPER: 5.5,
    IntensityCode.SHINDO_6_LOWER: 6.0,
    IntensityCode.SHINDO_6_UPPER: 6.5,
    IntensityCode.SHINDO_7: 7.0,
}


def intensity_weight(code: IntensityCode | None) -> float:
    """Weight of an intensity code (0 when absent).

    Pure function.
    """
    if code is None:
        return 0.0
    return INTENSITY_WEIGHTS[code]


def score(alert: CanonicalAlert) -> float:
    """Compute the severity score of an alert.

    Pure function. Cancellations always score 0; otherwise the score is
    ``weight(max intensity upper bound) * 10 + magnitude``.

    Args:
        alert: Alert to score

    Returns:
        Severity score (higher is more severe)
    """
    if alert.is_canceled:
        return 0.0

    upper = alert.max_intensity.to if alert.max_intensity is not None else None
    magnitude = alert.magnitude if alert.magnitude is not None else 0.0

    return intensity_weight(upper) * 10 + magnitude
