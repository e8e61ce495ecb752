"""Imperative Shell - I/O and side effects.

This module contains all code that interacts with external systems:
- Misskey API client (HTTP)
- Secret Manager client (secrets)
- Configuration loading (environment/files)

Keep this layer thin and simple. All business logic should be in core.
"""

from eew_relay.shell.misskey_client import MisskeyClient, MisskeySink
from eew_relay.shell.config_loader import load_config, load_config_from_env

__all__ = [
    "MisskeyClient",
    "MisskeySink",
    "load_config",
    "load_config_from_env",
]
