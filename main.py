"""Cloud Function Entry Point - Root Module.

This is the root-level entry point for Google Cloud Functions.
It imports from the eew_relay package.
"""

from eew_relay.main import eew_receiver

__all__ = [
    "eew_receiver",
]
