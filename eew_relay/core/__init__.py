"""Functional Core - Pure functions with no side effects.

This module contains all business logic as pure functions:
- Normalization of inbound alert encodings
- Severity scoring and update comparison
- Posting policy evaluation
- Delivery spacing checks
- Note formatting

All functions here are deterministic and have no I/O.
"""

from eew_relay.core.alert import CanonicalAlert, IntensityCode, IntensityRange
from eew_relay.core.normalizer import Encoding, normalize, normalize_batch
from eew_relay.core.severity import score
from eew_relay.core.comparator import is_significant
from eew_relay.core.rules import evaluate_policy, should_deliver
from eew_relay.core.formatter import format_note, render_note

__all__ = [
    # Alert
    "CanonicalAlert",
    "IntensityCode",
    "IntensityRange",
    # Normalizer
    "Encoding",
    "normalize",
    "normalize_batch",
    # Severity
    "score",
    # Comparator
    "is_significant",
    # Rules
    "evaluate_policy",
    "should_deliver",
    # Formatter
    "format_note",
    "render_note",
]
