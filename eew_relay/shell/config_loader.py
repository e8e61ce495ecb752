"""Configuration Loader - Imperative Shell.

This module handles loading configuration from YAML files and
environment variables. All I/O is contained here.

Models (Config, PostingPolicy, ...) are defined in eew_relay/core/config.py
to avoid information leakage between layers.
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml

from eew_relay.core.config import (
    VISIBILITIES,
    Config,
    MisskeyConfig,
    PostingOptions,
    PostingPolicy,
)
from eew_relay.shell.secret_manager_client import (
    SecretManagerClient,
    get_secret_manager_client,
)


logger = logging.getLogger(__name__)


# Environment presets: default values that differ per preset
PRESETS: dict[str, dict[str, Any]] = {
    "default": {
        "min_severity": 30.0,
        "only_warnings": None,
        "use_content_warning": False,
        "content_warning_text": "緊急地震速報",
        "rate_limit_ms": 2000,
        "min_magnitude": 3.0,
    },
    "warnings_only": {
        "min_severity": 50.0,
        "only_warnings": True,
        "use_content_warning": True,
        "content_warning_text": "緊急地震速報（警報）",
        "rate_limit_ms": 1000,
        "min_magnitude": 4.5,
    },
}

DEFAULT_MAX_DEPTH = 700.0


def _resolve_value(value: Any, secret_client: Optional[SecretManagerClient] = None) -> Any:
    """Resolve a value that may contain secret or env var placeholders.

    Args:
        value: Value to resolve (may be ${VAR} or ${secret:name})
        secret_client: Client for resolving secrets

    Returns:
        Resolved value
    """
    if not isinstance(value, str):
        return value

    if secret_client:
        return secret_client.resolve(value)

    # No secret client - only handle env vars
    if value.startswith("${") and value.endswith("}"):
        var_name = value[2:-1]
        if not var_name.startswith("secret:"):
            env_value = os.environ.get(var_name)
            if env_value:
                return env_value
            logger.warning("Environment variable %s not set", var_name)

    return value


def _parse_region_list(value: Any) -> frozenset[str] | None:
    """Parse a region code list (YAML list or comma-separated string)."""
    if value is None:
        return None
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    codes = frozenset(item.strip() for item in items if item.strip())
    return codes or None


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


def _parse_misskey(
    data: dict[str, Any],
    secret_client: Optional[SecretManagerClient] = None,
) -> MisskeyConfig:
    """Parse Misskey connection settings from config data."""
    return MisskeyConfig(
        host=_resolve_value(data.get("host", ""), secret_client),
        token=_resolve_value(data.get("token", ""), secret_client),
        timeout_seconds=float(data.get("timeout_seconds", 30)),
        max_retries=int(data.get("max_retries", 3)),
    )


def _parse_posting(data: dict[str, Any]) -> PostingOptions:
    """Parse posting options from config data."""
    visibility = data.get("visibility", "public")
    if visibility not in VISIBILITIES:
        raise ValueError(f"Invalid visibility: {visibility!r}")

    return PostingOptions(
        enabled=bool(data.get("enabled", True)),
        visibility=visibility,
        local_only=bool(data.get("local_only", False)),
        use_content_warning=bool(data.get("use_content_warning", False)),
        content_warning_text=data.get("content_warning_text", "緊急地震速報"),
        custom_template=data.get("custom_template"),
    )


def _parse_policy(data: dict[str, Any]) -> PostingPolicy:
    """Parse the posting policy from config data."""
    return PostingPolicy(
        min_severity=float(data.get("min_severity", 0.0)),
        only_warnings=bool(data.get("only_warnings", False)),
        include_cancellations=bool(data.get("include_cancellations", True)),
        min_magnitude=_optional_float(data.get("min_magnitude")),
        max_depth=_optional_float(data.get("max_depth")),
        allowed_regions=_parse_region_list(data.get("allowed_regions")),
        blocked_regions=_parse_region_list(data.get("blocked_regions")),
        rate_limit_interval_ms=int(data.get("rate_limit_interval_ms", 2000)),
    )


def load_config_from_dict(data: dict[str, Any]) -> Config:
    """Load configuration from a dictionary.

    This is a pure-ish function (only placeholder expansion has side effects).

    Args:
        data: Configuration dictionary

    Returns:
        Parsed Config object
    """
    secret_client = get_secret_manager_client()

    return Config(
        misskey=_parse_misskey(data.get("misskey") or {}, secret_client),
        posting=_parse_posting(data.get("posting") or {}),
        policy=_parse_policy(data.get("policy") or {}),
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from a YAML file.

    This method performs file I/O.

    Args:
        config_path: Path to YAML config file.
                    If None, uses CONFIG_PATH env var or default.

    Returns:
        Parsed Config object

    Raises:
        yaml.YAMLError: If config file is invalid YAML
    """
    if config_path is None:
        config_path = os.environ.get("CONFIG_PATH", "config/config.yaml")

    path = Path(config_path)

    logger.info("Loading configuration from %s", path)

    if not path.exists():
        logger.warning("Config file not found: %s, using defaults", path)
        return Config()

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        logger.warning("Config file is empty, using defaults")
        return Config()

    config = load_config_from_dict(data)

    logger.info(
        "Loaded config: host=%s, min_severity=%.1f, rate limit %dms",
        config.misskey.host or "(none)",
        config.policy.min_severity,
        config.policy.rate_limit_interval_ms,
    )

    return config


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var.

    Default-true switches stay on unless set to "false"; default-false
    switches turn on only for "true".
    """
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    value = value.strip().lower()
    if default:
        return value != "false"
    return value == "true"


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    return float(value)


def load_config_from_env(preset: str = "default") -> Config:
    """Load configuration from environment variables.

    Useful for simple deployments without a YAML file.

    Environment variables:
        MISSKEY_HOST, MISSKEY_TOKEN: Misskey instance and access token
        POSTING_ENABLED, POSTING_MIN_SEVERITY, POSTING_ONLY_WARNINGS,
        POSTING_INCLUDE_CANCELLATIONS, POSTING_VISIBILITY, POSTING_LOCAL_ONLY,
        POSTING_USE_CONTENT_WARNING, POSTING_CONTENT_WARNING_TEXT,
        CUSTOM_TEMPLATE, POSTING_RATE_LIMIT_MS: Posting behaviour
        FILTER_MIN_MAGNITUDE, FILTER_MAX_DEPTH: Earthquake bounds
        FILTER_ALLOWED_REGIONS, FILTER_BLOCKED_REGIONS: Comma-separated codes

    Args:
        preset: 'default' or 'warnings_only' (stricter defaults)

    Returns:
        Config object from environment
    """
    if preset not in PRESETS:
        raise ValueError(f"Unknown preset: {preset!r}")
    defaults = PRESETS[preset]

    secret_client = get_secret_manager_client()

    misskey = MisskeyConfig(
        host=_resolve_value(os.environ.get("MISSKEY_HOST", ""), secret_client),
        token=_resolve_value(os.environ.get("MISSKEY_TOKEN", ""), secret_client),
    )
    if not misskey.is_configured:
        logger.warning("MISSKEY_HOST or MISSKEY_TOKEN not set")

    visibility = os.environ.get("POSTING_VISIBILITY") or "public"
    if visibility not in VISIBILITIES:
        raise ValueError(f"Invalid POSTING_VISIBILITY: {visibility!r}")

    posting = PostingOptions(
        enabled=_env_bool("POSTING_ENABLED", True),
        visibility=visibility,
        local_only=_env_bool("POSTING_LOCAL_ONLY", False),
        use_content_warning=_env_bool(
            "POSTING_USE_CONTENT_WARNING", defaults["use_content_warning"]
        ),
        content_warning_text=(
            os.environ.get("POSTING_CONTENT_WARNING_TEXT") or defaults["content_warning_text"]
        ),
        custom_template=os.environ.get("CUSTOM_TEMPLATE") or None,
    )

    only_warnings = defaults["only_warnings"]
    if only_warnings is None:
        only_warnings = _env_bool("POSTING_ONLY_WARNINGS", False)

    policy = PostingPolicy(
        min_severity=_env_float("POSTING_MIN_SEVERITY", defaults["min_severity"]),
        only_warnings=only_warnings,
        include_cancellations=_env_bool("POSTING_INCLUDE_CANCELLATIONS", True),
        min_magnitude=_env_float("FILTER_MIN_MAGNITUDE", defaults["min_magnitude"]),
        max_depth=_env_float("FILTER_MAX_DEPTH", DEFAULT_MAX_DEPTH),
        allowed_regions=_parse_region_list(os.environ.get("FILTER_ALLOWED_REGIONS")),
        blocked_regions=_parse_region_list(os.environ.get("FILTER_BLOCKED_REGIONS")),
        rate_limit_interval_ms=int(
            _env_float("POSTING_RATE_LIMIT_MS", defaults["rate_limit_ms"])
        ),
    )

    return Config(misskey=misskey, posting=posting, policy=policy)
