"""Note formatting - Pure functions.

This module renders canonical alerts into Misskey note text.
All functions are pure with no side effects, except that
format_note/format_custom read the current time when the alert has no
report time.
"""

from datetime import datetime, timedelta, timezone

from eew_relay.core.alert import CanonicalAlert, IntensityCode, IntensityRange, LandOrSea
from eew_relay.core.config import PostingOptions
from eew_relay.core.sink import PostOptions

# JST is UTC+9
JST = timezone(timedelta(hours=9), name="JST")

MAX_LISTED_REGIONS = 5
MAX_HASHTAGS = 8

_LAND_OR_SEA_LABELS = {
    LandOrSea.LAND: "内陸",
    LandOrSea.SEA: "海域",
}

_SEVERITY_EMOJI = {
    IntensityCode.SHINDO_7: "🔴",
    IntensityCode.SHINDO_6_UPPER: "🟠",
    IntensityCode.SHINDO_6_LOWER: "🟡",
    IntensityCode.SHINDO_5_UPPER: "🟡",
    IntensityCode.SHINDO_5_LOWER: "🟢",
}

_STRONG_SHAKING = (IntensityCode.SHINDO_6_LOWER, IntensityCode.SHINDO_6_UPPER, IntensityCode.SHINDO_7)
_MODERATE_SHAKING = (IntensityCode.SHINDO_5_LOWER, IntensityCode.SHINDO_5_UPPER)


def format_intensity(intensity: IntensityRange) -> str:
    """Format an intensity range, e.g. '震度5-' or '震度5-〜6+'.

    Pure function.
    """
    if intensity.from_ == intensity.to:
        return f"震度{intensity.from_.value}"
    return f"震度{intensity.from_.value}〜{intensity.to.value}"


def format_time(moment: datetime | None) -> str:
    """Format a timestamp in JST.

    Pure function.
    """
    if moment is None:
        return "N/A"
    return moment.astimezone(JST).strftime("%Y/%m/%d %H:%M:%S")


def _report_time(alert: CanonicalAlert) -> str:
    return format_time(alert.reported_at or datetime.now(timezone.utc))


def _format_magnitude(alert: CanonicalAlert) -> str:
    return f"{alert.magnitude:.1f}" if alert.magnitude is not None else "不明"


def _format_depth(alert: CanonicalAlert) -> str:
    return f"{alert.depth:.0f}km" if alert.depth is not None else "不明"


def _earthquake_lines(alert: CanonicalAlert) -> list[str]:
    epicenter = alert.epicenter
    lines = [
        f"📍 **震源地**: {epicenter.name if epicenter else '不明'}",
        f"📊 **マグニチュード**: M{_format_magnitude(alert)}",
        f"📏 **深さ**: {_format_depth(alert)}",
    ]
    if epicenter is not None:
        lines.append(f"🌊 **陸海**: {_LAND_OR_SEA_LABELS[epicenter.land_or_sea]}")
    lines.append("")
    return lines


def _footer_lines(alert: CanonicalAlert) -> list[str]:
    return [
        f"🕐 **発生時刻**: {format_time(alert.origin_time)}",
        f"⏰ **情報時刻**: {_report_time(alert)}",
        "",
        "📋 最終報" if alert.is_final else "📄 続報あり",
    ]


def format_cancellation(alert: CanonicalAlert) -> str:
    """Format a cancellation note.

    Pure function.
    """
    parts = [
        "🚫 **緊急地震速報 取り消し**",
        "",
        alert.free_text or "先ほどの緊急地震速報を取り消します。",
        "",
        f"⏰ {_report_time(alert)}",
    ]
    return "\n".join(parts)


def format_warning(alert: CanonicalAlert) -> str:
    """Format a warning (警報) note with the regions under warning.

    Pure function.
    """
    parts = ["🚨 **緊急地震速報（警報）**", ""]
    parts.extend(_earthquake_lines(alert))

    if alert.max_intensity is not None:
        parts.append(f"⚡ **最大予想震度**: {format_intensity(alert.max_intensity)}")
        parts.append("")

    regions = alert.warning_regions
    if regions:
        parts.append("🔴 **警報対象地域**:")
        for region in regions[:MAX_LISTED_REGIONS]:
            intensity = format_intensity(region.intensity) if region.intensity else ""
            condition = f" ({region.condition})" if region.condition else ""
            parts.append(f"　• {region.name}: {intensity}{condition}")
        if len(regions) > MAX_LISTED_REGIONS:
            parts.append(f"　...他{len(regions) - MAX_LISTED_REGIONS}地域")
        parts.append("")

    if alert.warning_message:
        parts.append(f"⚠️ {alert.warning_message}")
        parts.append("")

    parts.extend(_footer_lines(alert))
    return "\n".join(parts)


def format_forecast(alert: CanonicalAlert) -> str:
    """Format a forecast (予報) note.

    Pure function.
    """
    parts = ["📊 **緊急地震速報（予報）**", ""]
    parts.extend(_earthquake_lines(alert))

    if alert.max_intensity is not None:
        parts.append(f"⚡ **最大予想震度**: {format_intensity(alert.max_intensity)}")
        parts.append("")

    parts.extend(_footer_lines(alert))
    return "\n".join(parts)


def format_basic(alert: CanonicalAlert) -> str:
    """Format a note for an alert without earthquake details.

    Pure function.
    """
    parts = [
        "📡 **緊急地震速報**",
        "",
        "詳細情報を取得中...",
        "",
        f"⏰ {_report_time(alert)}",
    ]
    return "\n".join(parts)


def format_note(alert: CanonicalAlert) -> str:
    """Format an alert as note text, picking the layout by alert kind.

    Args:
        alert: Alert to format

    Returns:
        Note text
    """
    if alert.is_canceled:
        return format_cancellation(alert)
    if alert.is_warning and alert.has_earthquake and alert.max_intensity is not None:
        return format_warning(alert)
    if alert.has_earthquake:
        return format_forecast(alert)
    return format_basic(alert)


def format_short(alert: CanonicalAlert) -> str:
    """One-line summary for logs and quick notifications.

    Pure function.
    """
    if alert.is_canceled:
        return "🚫 緊急地震速報 取り消し"

    if not alert.has_earthquake:
        return "📡 緊急地震速報"

    name = alert.epicenter.name if alert.epicenter else "震源不明"
    intensity = ""
    if alert.max_intensity is not None:
        intensity = f" 最大{format_intensity(alert.max_intensity)}"

    icon = "🚨" if alert.is_warning else "📊"
    return f"{icon} {name} M{_format_magnitude(alert)}{intensity}"


def get_severity_emoji(alert: CanonicalAlert) -> str:
    """Emoji for the forecast maximum intensity.

    Pure function.
    """
    if alert.is_canceled:
        return "🚫"
    if alert.max_intensity is None:
        return "📊"
    return _SEVERITY_EMOJI.get(alert.max_intensity.to, "🔵")


def create_hashtags(alert: CanonicalAlert) -> list[str]:
    """Hashtags for a note (at most MAX_HASHTAGS).

    Pure function.
    """
    tags = ["#緊急地震速報", "#EEW"]

    if alert.is_warning:
        tags.append("#地震警報")

    if alert.is_canceled:
        tags.append("#取り消し")

    if alert.has_earthquake:
        tags.extend(f"#{name}" for name in alert.prefecture_names[:3])

        if alert.max_intensity is not None:
            if alert.max_intensity.to in _STRONG_SHAKING:
                tags.append("#強震")
            elif alert.max_intensity.to in _MODERATE_SHAKING:
                tags.append("#中震")

    return tags[:MAX_HASHTAGS]


def format_custom(alert: CanonicalAlert, template: str) -> str:
    """Render a user template.

    Supported placeholders: {type}, {canceled}, {magnitude}, {depth},
    {epicenter}, {intensity}, {time}, {emoji}, {hashtags}. Unknown
    placeholders are left as they are.
    """
    replacements = {
        "{type}": "警報" if alert.is_warning else "予報",
        "{canceled}": "取り消し" if alert.is_canceled else "",
        "{magnitude}": f"{alert.magnitude}" if alert.magnitude is not None else "N/A",
        "{depth}": f"{alert.depth:g}" if alert.depth is not None else "N/A",
        "{epicenter}": alert.epicenter.name if alert.epicenter else "N/A",
        "{intensity}": format_intensity(alert.max_intensity) if alert.max_intensity else "N/A",
        "{time}": format_time(alert.origin_time),
        "{emoji}": get_severity_emoji(alert),
        "{hashtags}": " ".join(create_hashtags(alert)),
    }

    result = template
    for placeholder, value in replacements.items():
        result = result.replace(placeholder, value)
    return result


def build_post_options(options: PostingOptions) -> PostOptions:
    """Translate posting options into per-post sink options.

    Pure function.
    """
    content_warning = None
    if options.use_content_warning:
        content_warning = options.content_warning_text or "緊急地震速報"

    return PostOptions(
        visibility=options.visibility,
        content_warning=content_warning,
        local_only=options.local_only,
    )


def render_note(
    alert: CanonicalAlert,
    options: PostingOptions,
) -> tuple[str, PostOptions]:
    """Render an alert into (content, post options) for the sink.

    Args:
        alert: Alert to render
        options: Posting options (template, visibility, content warning)

    Returns:
        Tuple of note text and sink post options
    """
    if options.custom_template:
        text = format_custom(alert, options.custom_template)
    else:
        text = format_note(alert)
    return text, build_post_options(options)


def format_test_note(now: datetime) -> str:
    """Text of the connectivity test note.

    Pure function.
    """
    parts = [
        "🧪 緊急地震速報 テスト投稿",
        "",
        "緊急地震速報の投稿機能をテストしています。",
        "",
        f"⏰ {format_time(now)}",
    ]
    return "\n".join(parts)
