"""Notification sink contract.

The sink is the external system that publishes alert text. Bounded
retry, if any, lives entirely inside the sink implementation.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PostOptions:
    """Per-post options passed to the sink.

    Attributes:
        visibility: Note visibility
        content_warning: Content warning label (None for no warning)
        local_only: Do not federate the note
    """
    visibility: str = "public"
    content_warning: str | None = None
    local_only: bool = False


class Sink(Protocol):
    """Async notification sink."""

    async def post(self, content: str, options: PostOptions) -> str:
        """Publish content and return the posted id.

        Raises:
            SinkError: If the post could not be published
        """
        ...

    async def test_connectivity(self) -> bool:
        """Return True if the sink is reachable and authenticated."""
        ...
