"""Inbound alert normalization - Pure functions.

This module turns raw EEW payloads in three wire encodings into
CanonicalAlert objects. The encoding is picked from explicit
discriminators in the envelope, never by trying parsers in turn.

Encodings:
- DIRECT: ``data`` is an object already in the standard shape
- ENVELOPED: ``data`` is a JSON string, optionally wrapping the standard
  shape in a ``{"_schema": ..., "body": ...}`` envelope
- COMPACT: an ``eewbot`` object with flattened, localized fields

All functions are pure; rejected payloads come back as error results.
"""

import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable

from eew_relay.core.alert import (
    CanonicalAlert,
    Epicenter,
    IntensityCode,
    IntensityRange,
    LandOrSea,
    WarningRegion,
)
from eew_relay.core.errors import (
    NormalizationError,
    ParseError,
    UnsupportedFormatError,
    ValidationError,
)


logger = logging.getLogger(__name__)


SUPPORTED_TYPES = frozenset({"eew"})

# Key marking a schema envelope inside an ENVELOPED payload
SCHEMA_MARKER = "_schema"

# Filled in for coordinates the COMPACT encoding does not report
UNKNOWN_COORDINATE = 0.0

# Naive timestamps in COMPACT payloads are Japan Standard Time
JST = timezone(timedelta(hours=9), name="JST")

_STATUS_FLAGS = ("isLastInfo", "isCanceled", "isWarning")

_QUALIFIERS = {
    "弱": "-",
    "強": "+",
    "weak": "-",
    "strong": "+",
    "lower": "-",
    "upper": "+",
    "-": "-",
    "+": "+",
}

_LOCALIZED_INTENSITY = re.compile(
    r"^(?:震度)?\s*([2-7])\s*(弱|強|weak|strong|lower|upper|-|\+)?$",
    re.IGNORECASE,
)

_RANGE_SEPARATOR = re.compile(r"\s*[〜～~]\s*")


class Encoding(str, Enum):
    """Known inbound wire encodings."""
    DIRECT = "direct"
    ENVELOPED = "enveloped"
    COMPACT = "compact"


@dataclass(frozen=True)
class NormalizeResult:
    """Outcome of normalizing one raw payload.

    Exactly one of ``alert`` and ``error`` is set.

    Attributes:
        alert: The canonical alert if normalization succeeded
        error: The rejection reason if it failed
        encoding: The detected encoding (None if rejected before detection)
    """
    alert: CanonicalAlert | None = None
    error: NormalizationError | None = None
    encoding: Encoding | None = None

    @property
    def success(self) -> bool:
        """Returns True if a canonical alert was produced."""
        return self.error is None


# --- small value readers -------------------------------------------------


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _text(value: Any) -> str | None:
    """Free-text fields are kept only when they are strings."""
    return value if isinstance(value, str) else None


def _value_of(node: Any) -> Any:
    """Unwrap ``{"value": ...}`` nodes used by the standard shape."""
    if isinstance(node, dict):
        return node.get("value")
    return node


def _to_float(value: Any) -> float | None:
    """Convert a wire number or numeric string to float.

    Returns None for missing, unparseable or non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _to_magnitude(value: Any) -> float | None:
    if isinstance(value, str):
        value = value.strip().lstrip("Mm")
    magnitude = _to_float(value)
    if magnitude is None or magnitude < 0:
        return None
    return magnitude


def _to_depth(value: Any) -> float | None:
    if isinstance(value, str):
        value = re.sub(r"\s*km$", "", value.strip(), flags=re.IGNORECASE)
    return _to_float(value)


def _to_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 (or 'YYYY/MM/DD HH:MM:SS') timestamp."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("/", "-"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=JST)
    return parsed


def _flag(node: dict[str, Any], key: str, default: bool = False) -> bool:
    value = node.get(key, default)
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean, got {value!r}")
    return value


def _load_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Malformed JSON: {e.msg} at position {e.pos}") from e
    except RecursionError as e:
        raise ParseError("Malformed JSON: nested too deeply") from e
    except ValueError as e:
        raise ParseError(f"Malformed JSON: {e}") from e


# --- intensity ------------------------------------------------------------


def _parse_intensity_code(value: Any) -> IntensityCode:
    try:
        return IntensityCode.parse(value)
    except ValueError as e:
        raise ValidationError(f"Unknown intensity code: {value!r}") from e


def _parse_intensity_range(node: Any) -> IntensityRange | None:
    """Parse a ``{"from": ..., "to": ...}`` intensity node."""
    if not isinstance(node, dict):
        return None
    if node.get("from") is None and node.get("to") is None:
        return None
    to = _parse_intensity_code(node.get("to") or node.get("from"))
    from_ = _parse_intensity_code(node.get("from") or node.get("to"))
    return IntensityRange(from_=from_, to=to)


def parse_localized_intensity_code(text: str) -> IntensityCode:
    """Parse a localized intensity such as '5弱', '6強' or '震度4'.

    The weak/strong qualifier is only valid on levels 5 and 6, and
    those two levels require it.

    Raises:
        ValidationError: If the text is not a known intensity
    """
    match = _LOCALIZED_INTENSITY.match(str(text).strip())
    if not match:
        raise ValidationError(f"Unknown localized intensity: {text!r}")

    base, qualifier = match.groups()
    suffix = _QUALIFIERS[qualifier.lower()] if qualifier else ""

    if (base in ("5", "6")) != bool(suffix):
        raise ValidationError(f"Unknown localized intensity: {text!r}")

    return IntensityCode(base + suffix)


def parse_localized_intensity(text: Any) -> IntensityRange | None:
    """Parse a localized intensity or range ('5弱〜6強') into a range.

    Returns None for missing or empty values.
    """
    if not isinstance(text, str) or not text.strip():
        return None

    parts = _RANGE_SEPARATOR.split(text.strip())
    if len(parts) > 2:
        raise ValidationError(f"Unknown localized intensity: {text!r}")

    from_ = parse_localized_intensity_code(parts[0])
    to = parse_localized_intensity_code(parts[-1])
    return IntensityRange(from_=from_, to=to)


# --- envelope ---------------------------------------------------------------


def _load_envelope(raw: Any) -> dict[str, Any]:
    """Turn raw input into the envelope object."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Payload is not UTF-8: {e}") from e

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise ParseError("Empty payload")
        raw = _load_json(text)

    if not isinstance(raw, dict):
        raise ValidationError(
            f"Payload must be a JSON object, got {type(raw).__name__}"
        )

    return raw


def _check_envelope(envelope: dict[str, Any]) -> datetime:
    """Validate the type tag and timestamp; return the report time."""
    type_tag = envelope.get("type")
    if type_tag is None or type_tag == "":
        raise ValidationError("Missing type discriminator")

    if not isinstance(type_tag, str) or type_tag not in SUPPORTED_TYPES:
        raise UnsupportedFormatError(f"Unsupported type: {type_tag!r}")

    timestamp = envelope.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise ValidationError("Missing or non-numeric timestamp")

    # Timestamps are milliseconds since epoch
    try:
        return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValidationError(f"Timestamp out of range: {timestamp!r}") from e


def detect_encoding(envelope: dict[str, Any]) -> Encoding:
    """Pick the wire encoding from explicit discriminators.

    Pure function.

    Raises:
        ValidationError: If no discriminator is present
    """
    if isinstance(envelope.get("eewbot"), dict):
        return Encoding.COMPACT

    data = envelope.get("data")
    if isinstance(data, str):
        return Encoding.ENVELOPED
    if isinstance(data, dict):
        return Encoding.DIRECT

    raise ValidationError("Missing data or eewbot field")


# --- decoders -------------------------------------------------------------


def _decode_standard(data: dict[str, Any], reported_at: datetime) -> CanonicalAlert:
    """Decode the standard (DIRECT) payload shape."""
    missing = [key for key in _STATUS_FLAGS if key not in data]
    if missing:
        raise ValidationError(f"Missing status fields: {', '.join(missing)}")

    is_final = _flag(data, "isLastInfo")
    is_canceled = _flag(data, "isCanceled")
    is_warning = _flag(data, "isWarning")

    origin_time = None
    magnitude = None
    depth = None
    epicenter = None

    earthquake = data.get("earthquake")
    if isinstance(earthquake, dict):
        hypocenter = _as_dict(earthquake.get("hypocenter"))
        coordinate = _as_dict(hypocenter.get("coordinate"))

        origin_time = _to_datetime(earthquake.get("originTime"))
        magnitude = _to_magnitude(_value_of(earthquake.get("magnitude")))
        depth = _to_depth(_value_of(hypocenter.get("depth")))

        if hypocenter.get("name"):
            latitude = _to_float(_value_of(coordinate.get("latitude")))
            longitude = _to_float(_value_of(coordinate.get("longitude")))
            epicenter = Epicenter(
                name=str(hypocenter["name"]),
                latitude=UNKNOWN_COORDINATE if latitude is None else latitude,
                longitude=UNKNOWN_COORDINATE if longitude is None else longitude,
                land_or_sea=LandOrSea.parse(hypocenter.get("landOrSea")),
            )

    max_intensity = None
    warning_regions: list[WarningRegion] = []

    intensity = data.get("intensity")
    if isinstance(intensity, dict):
        max_intensity = _parse_intensity_range(intensity.get("forecastMaxInt"))
        for region in _as_list(intensity.get("regions")):
            if not isinstance(region, dict) or not region.get("isWarning"):
                continue
            warning_regions.append(WarningRegion(
                code=str(region.get("code", "")),
                name=str(region.get("name", "")),
                intensity=_parse_intensity_range(region.get("forecastMaxInt")),
                condition=_text(region.get("condition")),
            ))

    affected_codes = frozenset(
        str(r["code"])
        for r in _as_list(data.get("regions"))
        if isinstance(r, dict) and r.get("code") is not None
    )

    prefecture_names = tuple(
        str(p["name"])
        for p in _as_list(data.get("prefectures"))
        if isinstance(p, dict) and p.get("name")
    )

    warning = _as_dict(_as_dict(data.get("comments")).get("warning"))

    return CanonicalAlert(
        is_final=is_final,
        is_canceled=is_canceled,
        is_warning=is_warning,
        origin_time=origin_time,
        magnitude=magnitude,
        depth=depth,
        epicenter=epicenter,
        max_intensity=max_intensity,
        warning_regions=tuple(warning_regions),
        affected_region_codes=affected_codes,
        free_text=_text(data.get("text")),
        reported_at=reported_at,
        warning_message=_text(warning.get("text")),
        prefecture_names=prefecture_names,
    )


def _decode_direct(envelope: dict[str, Any], reported_at: datetime) -> CanonicalAlert:
    return _decode_standard(envelope["data"], reported_at)


def _decode_enveloped(envelope: dict[str, Any], reported_at: datetime) -> CanonicalAlert:
    payload = _load_json(envelope["data"])

    if isinstance(payload, dict) and SCHEMA_MARKER in payload and "body" in payload:
        payload = payload["body"]

    if not isinstance(payload, dict):
        raise ValidationError("Enveloped data does not hold a JSON object")

    return _decode_standard(payload, reported_at)


def _decode_compact_region(
    region: Any,
    default_warning: bool,
) -> tuple[WarningRegion, bool] | None:
    if isinstance(region, str) and region.strip():
        name = region.strip()
        return WarningRegion(code=name, name=name), default_warning

    if not isinstance(region, dict):
        return None

    name = str(region.get("name", ""))
    code = str(region.get("code") or name)
    if not code:
        return None

    is_warning = region.get("isWarning", default_warning)
    return WarningRegion(
        code=code,
        name=name or code,
        intensity=parse_localized_intensity(region.get("maxIntensity")),
        condition=_text(region.get("condition")),
    ), bool(is_warning)


def _decode_compact(envelope: dict[str, Any], reported_at: datetime) -> CanonicalAlert:
    bot = envelope["eewbot"]

    is_canceled = _flag(bot, "isCanceled")
    is_warning = _flag(bot, "isWarning")
    is_final = _flag(bot, "isFinal")

    epicenter = None
    if bot.get("epicenter"):
        latitude = _to_float(bot.get("lat"))
        longitude = _to_float(bot.get("lon"))
        epicenter = Epicenter(
            name=str(bot["epicenter"]).strip(),
            latitude=UNKNOWN_COORDINATE if latitude is None else latitude,
            longitude=UNKNOWN_COORDINATE if longitude is None else longitude,
            land_or_sea=LandOrSea.parse(bot.get("landOrSea")),
        )

    warning_regions: list[WarningRegion] = []
    affected_codes: set[str] = set()

    for item in _as_list(bot.get("regions")):
        decoded = _decode_compact_region(item, is_warning)
        if decoded is None:
            continue
        region, warned = decoded
        affected_codes.add(region.code)
        if warned:
            warning_regions.append(region)

    serial_no = bot.get("serialNo")

    return CanonicalAlert(
        is_final=is_final,
        is_canceled=is_canceled,
        is_warning=is_warning,
        origin_time=_to_datetime(bot.get("originTime")),
        magnitude=_to_magnitude(bot.get("magnitude")),
        depth=_to_depth(bot.get("depth")),
        epicenter=epicenter,
        max_intensity=parse_localized_intensity(bot.get("maxIntensity")),
        warning_regions=tuple(warning_regions),
        affected_region_codes=frozenset(affected_codes),
        free_text=_text(bot.get("text")),
        reported_at=reported_at,
        serial_no=None if serial_no is None else str(serial_no),
    )


_DECODERS: dict[Encoding, Callable[[dict[str, Any], datetime], CanonicalAlert]] = {
    Encoding.DIRECT: _decode_direct,
    Encoding.ENVELOPED: _decode_enveloped,
    Encoding.COMPACT: _decode_compact,
}


# --- public API -------------------------------------------------------------


def normalize(raw: Any) -> NormalizeResult:
    """Normalize one raw payload into a CanonicalAlert.

    Pure function (apart from logging rejections).

    Args:
        raw: JSON text, UTF-8 bytes or an already-parsed object

    Returns:
        NormalizeResult with either the alert or the rejection error
    """
    encoding = None
    try:
        envelope = _load_envelope(raw)
        reported_at = _check_envelope(envelope)
        encoding = detect_encoding(envelope)
        alert = _DECODERS[encoding](envelope, reported_at)
    except NormalizationError as e:
        logger.warning("Rejected inbound alert (%s): %s", e.kind, e)
        return NormalizeResult(error=e, encoding=encoding)

    return NormalizeResult(alert=alert, encoding=encoding)


def split_batch(body: Any) -> list[Any]:
    """Split a batch body into independently parseable items.

    Accepts a list of items, a JSON array text, a single JSON object
    (text or parsed) or newline-separated JSON text. Blank lines are
    skipped. A body that cannot be split is returned as one item so
    that normalize() reports the problem.
    """
    if isinstance(body, list):
        return list(body)

    if isinstance(body, (bytes, bytearray)):
        try:
            body = bytes(body).decode("utf-8")
        except UnicodeDecodeError:
            return [body]

    if not isinstance(body, str):
        return [body]

    text = body.strip()
    if not text:
        return []

    if text[0] in "[{":
        try:
            value = json.loads(text)
        except (ValueError, RecursionError):
            value = None
        if isinstance(value, list):
            return value
        if isinstance(value, dict):
            return [value]

    return [line for line in text.splitlines() if line.strip()]


def normalize_batch(body: Any) -> list[NormalizeResult]:
    """Normalize every item of a batch independently.

    A rejected item never prevents its siblings from being normalized.

    Args:
        body: Batch body (see split_batch)

    Returns:
        One NormalizeResult per item, in input order
    """
    return [normalize(item) for item in split_batch(body)]


def partition_results(
    results: list[NormalizeResult],
) -> tuple[list[CanonicalAlert], list[NormalizationError]]:
    """Separate successful alerts from rejection errors.

    Pure function.
    """
    alerts = [r.alert for r in results if r.alert is not None]
    errors = [r.error for r in results if r.error is not None]
    return alerts, errors
