"""Configuration models - Pure data structures.

These are domain models for configuration. The actual loading
(I/O) is handled by the shell layer.
"""

from dataclasses import dataclass, field


VISIBILITIES = ("public", "home", "followers", "specified")


@dataclass(frozen=True)
class PostingPolicy:
    """Admission policy for alerts.

    None for an optional bound or region list means "not configured".

    Attributes:
        min_severity: Minimum severity score to deliver
        only_warnings: Only deliver warnings (and cancellations)
        include_cancellations: Whether cancellations are eligible at all
        min_magnitude: Minimum magnitude (inclusive)
        max_depth: Maximum depth in km (inclusive)
        allowed_regions: Deliver only if an affected region is listed
        blocked_regions: Never deliver if an affected region is listed
        rate_limit_interval_ms: Minimum spacing between deliveries
    """
    min_severity: float = 0.0
    only_warnings: bool = False
    include_cancellations: bool = True
    min_magnitude: float | None = None
    max_depth: float | None = None
    allowed_regions: frozenset[str] | None = None
    blocked_regions: frozenset[str] | None = None
    rate_limit_interval_ms: int = 2000


@dataclass
class MisskeyConfig:
    """Connection settings for the Misskey instance.

    Attributes:
        host: Instance host name (e.g. 'misskey.io')
        token: API access token
        timeout_seconds: HTTP request timeout
        max_retries: Attempts per note before giving up
    """
    host: str = ""
    token: str = ""
    timeout_seconds: float = 30.0
    max_retries: int = 3

    @property
    def is_configured(self) -> bool:
        """Returns True if host and token are both set."""
        return bool(self.host and self.token)


@dataclass
class PostingOptions:
    """How delivered alerts are rendered and posted.

    Attributes:
        enabled: Master switch for posting
        visibility: Note visibility ('public', 'home', 'followers', 'specified')
        local_only: Do not federate the note
        use_content_warning: Hide the note body behind a content warning
        content_warning_text: Content warning label
        custom_template: Template for format_custom (None for default layout)
    """
    enabled: bool = True
    visibility: str = "public"
    local_only: bool = False
    use_content_warning: bool = False
    content_warning_text: str = "緊急地震速報"
    custom_template: str | None = None


@dataclass
class Config:
    """Application configuration.

    This is a pure data structure - no I/O or side effects.

    Attributes:
        misskey: Sink connection settings
        posting: Rendering and posting options
        policy: Admission policy and delivery spacing
    """
    misskey: MisskeyConfig = field(default_factory=MisskeyConfig)
    posting: PostingOptions = field(default_factory=PostingOptions)
    policy: PostingPolicy = field(default_factory=PostingPolicy)
