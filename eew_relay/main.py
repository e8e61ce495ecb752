"""Cloud Function Entry Point.

This module provides the HTTP entry point for Google Cloud Functions
(or `functions-framework` locally). It's a thin wrapper that loads
configuration, keeps one orchestrator per instance and routes requests.
"""

import asyncio
import logging
import os
from typing import Any

import functions_framework
from flask import Request

from eew_relay.core.config import Config
from eew_relay.orchestrator import Orchestrator
from eew_relay.shell.config_loader import load_config, load_config_from_env


# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# Delivery state must survive between requests on the same instance
_orchestrator: Orchestrator | None = None


def _get_config() -> Config:
    """Load configuration from file or environment."""
    config_path = os.environ.get("CONFIG_PATH")

    if config_path:
        return load_config(config_path)
    elif os.environ.get("MISSKEY_HOST"):
        # Simple env-based config
        return load_config_from_env(os.environ.get("POSTING_PRESET", "default"))
    else:
        # Try default config path
        return load_config()


def get_orchestrator() -> Orchestrator:
    """Return the instance orchestrator, creating it on first use."""
    global _orchestrator

    if _orchestrator is None:
        config = _get_config()
        if not config.misskey.is_configured:
            logger.warning("Misskey is not configured, deliveries will fail")
        _orchestrator = Orchestrator(config)

    return _orchestrator


def reset_orchestrator() -> None:
    """Drop the instance orchestrator (used by tests)."""
    global _orchestrator
    _orchestrator = None


def _handle_receive(request: Request) -> tuple[dict[str, Any], int]:
    body = request.get_data(as_text=True)
    if not body or not body.strip():
        return {"status": "error", "message": "Request body is required"}, 400

    orchestrator = get_orchestrator()
    result = asyncio.run(orchestrator.process_batch(body))

    if result.alerts_normalized == 0:
        return {
            "status": "error",
            "message": "No valid EEW messages found",
            "errors": result.errors,
        }, 400

    response: dict[str, Any] = {
        "status": "success" if result.success else "partial_failure",
        "summary": result.summary,
        "processed": result.alerts_normalized,
        "results": [outcome.to_dict() for outcome in result.outcomes],
    }

    if result.errors:
        response["errors"] = result.errors

    logger.info("Completed: %s", result.summary)

    return response, 200


def _handle_health() -> tuple[dict[str, Any], int]:
    orchestrator = get_orchestrator()
    return {
        "status": "healthy",
        "uptime_seconds": round(orchestrator.receiver_stats.uptime_seconds, 1),
        "posting_configured": orchestrator.config.misskey.is_configured,
    }, 200


def _handle_stats() -> tuple[dict[str, Any], int]:
    orchestrator = get_orchestrator()
    receiver = orchestrator.receiver_stats
    delivery = orchestrator.stats()

    return {
        "uptime_seconds": round(receiver.uptime_seconds, 1),
        "total_received": receiver.total_received,
        "total_processed": receiver.total_processed,
        "total_posted": receiver.total_posted,
        "errors": receiver.errors,
        "delivery": {
            "delivered": delivery.delivered_count,
            "failed": delivery.failed_count,
            "queue_length": delivery.queue_length,
            "in_flight": delivery.in_flight,
        },
    }, 200


def _handle_test() -> tuple[dict[str, Any], int]:
    orchestrator = get_orchestrator()

    if not orchestrator.config.misskey.is_configured:
        return {"status": "error", "message": "Posting service not configured"}, 503

    post_id = asyncio.run(orchestrator.post_test())

    if post_id is None:
        return {"success": False, "message": "Test post failed"}, 200

    return {"success": True, "message": "Test post successful", "post_id": post_id}, 200


@functions_framework.http
def eew_receiver(request: Request) -> tuple[dict[str, Any], int]:
    """HTTP Cloud Function entry point.

    Routes:
        POST /receive (or /): inbound alert(s) as a JSON object, JSON
            array or newline-delimited JSON
        GET /health: liveness
        GET /stats: receiver and delivery counters
        POST /test: post a test note

    Args:
        request: Flask request object

    Returns:
        Tuple of (response dict, HTTP status code)
    """
    path = request.path.rstrip("/") or "/"
    method = request.method.upper()

    try:
        if method == "POST" and path in ("/", "/receive"):
            return _handle_receive(request)
        if method == "GET" and path == "/health":
            return _handle_health()
        if method == "GET" and path == "/stats":
            return _handle_stats()
        if method == "POST" and path == "/test":
            return _handle_test()

        return {"status": "error", "message": "Endpoint not found"}, 404

    except Exception as e:
        logger.exception("Unexpected error handling %s %s", method, path)
        return {
            "status": "error",
            "message": str(e),
        }, 500
