"""Misskey API Client - Imperative Shell.

This module handles HTTP communication with a Misskey instance.
All I/O is contained here; note text is rendered in the core module.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from eew_relay.core.config import MisskeyConfig
from eew_relay.core.errors import SinkError
from eew_relay.core.sink import PostOptions


logger = logging.getLogger(__name__)


# Default timeout for API requests (seconds)
DEFAULT_TIMEOUT = 30

# Attempts per note in create_note_with_retry
DEFAULT_MAX_RETRIES = 3


@dataclass
class MisskeyNote:
    """A note to create.

    Attributes:
        text: Note body
        visibility: 'public', 'home', 'followers' or 'specified'
        local_only: Do not federate the note
        cw: Content warning label (None for no warning)
    """
    text: str
    visibility: str = "public"
    local_only: bool = False
    cw: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Build the notes/create request body (without the token)."""
        payload: dict[str, Any] = {
            "text": self.text,
            "visibility": self.visibility,
            "localOnly": self.local_only,
        }
        if self.cw:
            payload["cw"] = self.cw
        return payload


@dataclass
class MisskeyResponse:
    """Response from the Misskey API.

    Attributes:
        success: Whether the request succeeded
        status_code: HTTP status code (0 if no response)
        note_id: ID of the created note if successful
        error: Error message if failed
    """
    success: bool
    status_code: int
    note_id: str | None = None
    error: str | None = None


def _json_object(response: requests.Response) -> dict[str, Any] | None:
    """Decode a response body, or None if it is not a JSON object."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class MisskeyClient:
    """Client for posting notes to Misskey.

    This is part of the imperative shell - it handles HTTP I/O.
    The access token is sent as the ``i`` field of every request body.
    """

    def __init__(
        self,
        config: MisskeyConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize Misskey client.

        Args:
            config: Host, token, timeout and retry settings
            sleep: Sleep function used between retries
        """
        self.config = config
        self.timeout = config.timeout_seconds or DEFAULT_TIMEOUT
        self._sleep = sleep

    @property
    def base_url(self) -> str:
        """API root, e.g. https://misskey.io/api"""
        return f"https://{self.config.host}/api"

    def _post(self, endpoint: str, body: dict[str, Any]) -> requests.Response:
        return requests.post(
            f"{self.base_url}/{endpoint}",
            json={**body, "i": self.config.token},
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
        )

    def create_note(self, note: MisskeyNote) -> MisskeyResponse:
        """Create a note.

        This method performs HTTP I/O.

        Args:
            note: Note to create

        Returns:
            MisskeyResponse indicating success or failure
        """
        logger.info("Posting note to Misskey (%s)", self.config.host)

        try:
            response = self._post("notes/create", note.to_payload())

            if response.status_code == 200:
                body = _json_object(response)
                if body is None:
                    logger.error("Misskey returned an unexpected body: %s", response.text)
                    return MisskeyResponse(
                        success=False,
                        status_code=response.status_code,
                        error="Unexpected response body",
                    )

                created = body.get("createdNote")
                note_id = created.get("id") if isinstance(created, dict) else None
                logger.info("Note posted successfully: %s", note_id)
                return MisskeyResponse(
                    success=True,
                    status_code=response.status_code,
                    note_id=note_id,
                )
            elif response.status_code == 401:
                logger.error("Misskey authentication failed")
                return MisskeyResponse(
                    success=False,
                    status_code=response.status_code,
                    error="Authentication failed - check access token",
                )
            elif response.status_code == 429:
                logger.warning("Misskey rate limit exceeded")
                return MisskeyResponse(
                    success=False,
                    status_code=response.status_code,
                    error="Rate limit exceeded",
                )
            else:
                error_text = response.text
                logger.warning(
                    "Misskey API returned non-200: %d - %s",
                    response.status_code,
                    error_text,
                )
                return MisskeyResponse(
                    success=False,
                    status_code=response.status_code,
                    error=error_text,
                )

        except requests.Timeout:
            logger.error("Misskey API request timed out")
            return MisskeyResponse(
                success=False,
                status_code=0,
                error="Request timed out",
            )
        except requests.RequestException as e:
            logger.error("Misskey API request failed: %s", str(e))
            return MisskeyResponse(
                success=False,
                status_code=0,
                error=str(e),
            )

    def create_note_with_retry(
        self,
        note: MisskeyNote,
        max_retries: int | None = None,
    ) -> MisskeyResponse:
        """Create a note, retrying with exponential backoff.

        Waits 2, 4, 8... seconds between attempts. Authentication
        failures are not retried.

        Args:
            note: Note to create
            max_retries: Total attempts (defaults to config.max_retries)

        Returns:
            The first successful response, or the last failure
        """
        attempts = max_retries or self.config.max_retries or DEFAULT_MAX_RETRIES
        response = MisskeyResponse(success=False, status_code=0, error="No attempt made")

        for attempt in range(1, attempts + 1):
            response = self.create_note(note)
            if response.success or response.status_code == 401:
                return response

            logger.warning(
                "Note creation attempt %d/%d failed: %s",
                attempt, attempts, response.error,
            )

            if attempt < attempts:
                self._sleep(2 ** attempt)

        return response

    def test_connection(self) -> bool:
        """Check that the instance is reachable and the token is valid.

        This method performs HTTP I/O.
        """
        try:
            response = self._post("i", {})

            if response.status_code != 200:
                logger.error("Misskey connection test returned %d", response.status_code)
                return False

            body = _json_object(response)
            return body is not None and bool(body.get("id"))

        except requests.RequestException as e:
            logger.error("Misskey connection test failed: %s", str(e))
            return False


class MisskeySink:
    """Adapts MisskeyClient to the async Sink contract.

    The blocking HTTP call runs in a worker thread so the event loop
    keeps normalizing and filtering while a post is outstanding.
    """

    def __init__(self, client: MisskeyClient) -> None:
        self.client = client

    async def post(self, content: str, options: PostOptions) -> str:
        note = MisskeyNote(
            text=content,
            visibility=options.visibility,
            local_only=options.local_only,
            cw=options.content_warning,
        )

        response = await asyncio.to_thread(self.client.create_note_with_retry, note)

        if not response.success:
            raise SinkError(response.error or "Unknown Misskey error", response.status_code)

        return response.note_id or ""

    async def test_connectivity(self) -> bool:
        return await asyncio.to_thread(self.client.test_connection)
