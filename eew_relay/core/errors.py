"""Error taxonomy for the alert pipeline.

Normalization errors are recovered per item during batch processing.
SinkError is recovered at the delivery queue boundary.
"""


class NormalizationError(Exception):
    """Base class for inbound payloads that cannot become a CanonicalAlert."""

    kind = "normalization"


class ParseError(NormalizationError):
    """Payload is not valid JSON."""

    kind = "parse"


class ValidationError(NormalizationError):
    """Payload has a recognized shape but is missing required fields."""

    kind = "validation"


class UnsupportedFormatError(NormalizationError):
    """Payload carries an unknown type discriminator."""

    kind = "unsupported"


class SinkError(Exception):
    """A delivery attempt to the notification sink failed.

    Attributes:
        status_code: HTTP status code if the sink responded (0 otherwise)
    """

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
