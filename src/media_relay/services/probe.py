"""Probe service: resolve a media URL into normalized metadata via the extractor."""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

from media_relay.core.config import Settings, get_settings
from media_relay.domain.errors import ExtractionFailure
from media_relay.domain.probe import FormatDescriptor, MediaDescriptor
from media_relay.infra.extractor import Extractor, ExtractorResult, get_extractor
from media_relay.infra.urls import (
    detect_platform,
    fallback_thumbnail,
    is_special_source,
    validate_media_url,
)
from media_relay.services.classify import DiagnosticClassifier, build_classifier

logger = logging.getLogger(__name__)

GENERIC_PROBE_ARGS: tuple[str, ...] = (
    "--dump-json",
    "--flat-playlist",
    "--no-playlist",
    "--playlist-items",
    "1",
    "--no-warnings",
)
SINGLE_URL_PROBE_ARGS: tuple[str, ...] = (
    "--dump-single-json",
    "--no-playlist",
    "--no-warnings",
)
DEFAULT_TITLE: str = "Untitled"
_SIZE_UNITS: tuple[str, ...] = ("Bytes", "KB", "MB", "GB", "TB")


def _has_track(codec: Any) -> bool:
    """yt-dlp uses the literal string ``"none"`` for an absent track."""

    return isinstance(codec, str) and bool(codec) and codec != "none"


def _estimated_size(fmt: dict[str, Any]) -> Optional[float]:
    for key in ("filesize", "filesize_approx"):
        value = fmt.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            return float(value)
    return None


def format_bytes(num: Optional[float]) -> str:
    """Render a byte count with 1024-based units and at most two decimals.

    Unknown or non-positive sizes render as ``"N/A"``.
    """

    if not num or num <= 0:
        return "N/A"
    value: float = float(num)
    idx: int = 0
    while value >= 1024 and idx < len(_SIZE_UNITS) - 1:
        value /= 1024
        idx += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[idx]}"


def resolution_label(fmt: dict[str, Any]) -> str:
    """Explicit resolution, else ``"{height}p"``, else ``"audio only"``."""

    explicit = fmt.get("resolution")
    if isinstance(explicit, str) and explicit.strip():
        return explicit.strip()
    height = fmt.get("height")
    if isinstance(height, (int, float)) and not isinstance(height, bool) and height > 0:
        return f"{int(height)}p"
    return "audio only"


def normalize_formats(raw_formats: list[Any], limit: int) -> list[FormatDescriptor]:
    """Normalize a yt-dlp ``formats`` list.

    Notes
    -----
    - Entries with neither a video nor an audio codec (storyboards, manifests) are dropped.
    - Ordered by estimated size, largest first; entries with unknown size follow. The sort
      is stable, so the extractor's own order breaks ties.
    - At most ``limit`` entries are returned.
    """

    candidates: list[tuple[dict[str, Any], Optional[float], bool, bool]] = []
    for fmt in raw_formats:
        if not isinstance(fmt, dict):
            continue
        has_video: bool = _has_track(fmt.get("vcodec"))
        has_audio: bool = _has_track(fmt.get("acodec"))
        if not has_video and not has_audio:
            continue
        candidates.append((fmt, _estimated_size(fmt), has_video, has_audio))

    candidates.sort(key=lambda c: (c[1] is None, -(c[1] or 0.0)))

    return [
        FormatDescriptor(
            formatId=str(fmt.get("format_id", "")),
            extension=str(fmt.get("ext") or "unknown"),
            resolutionLabel=resolution_label(fmt),
            approxSizeLabel=format_bytes(size),
            isVideoOnly=has_video and not has_audio,
            isAudioOnly=has_audio and not has_video,
        )
        for fmt, size, has_video, has_audio in candidates[: max(limit, 0)]
    ]


def _best_available(info: dict[str, Any]) -> FormatDescriptor:
    """Single generic entry for sources that expose no per-format detail."""

    has_dimensions: bool = bool(info.get("resolution") or info.get("height"))
    return FormatDescriptor(
        formatId="best",
        extension=str(info.get("ext") or "mp4"),
        resolutionLabel=resolution_label(info) if has_dimensions else "best available",
        approxSizeLabel=format_bytes(_estimated_size(info)),
        isVideoOnly=False,
        isAudioOnly=False,
    )


def parse_first_json(stdout: str) -> dict[str, Any]:
    """Decode the first JSON value in ``stdout`` and require it to be an object.

    Raises
    ------
    ExtractionFailure
        If the output is empty, not JSON, or not a JSON object.
    """

    text: str = stdout.lstrip()
    if not text:
        raise ExtractionFailure(diagnostics="extractor produced no metadata")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except json.JSONDecodeError as ex:
        raise ExtractionFailure(diagnostics=f"unparsable metadata: {ex}") from ex
    if not isinstance(value, dict):
        raise ExtractionFailure(diagnostics="metadata is not a JSON object")
    return value


def _pick_thumbnail(info: dict[str, Any], url: str) -> Optional[str]:
    thumb = info.get("thumbnail")
    if isinstance(thumb, str) and thumb:
        return thumb
    thumbs = info.get("thumbnails")
    if isinstance(thumbs, list):
        for entry in reversed(thumbs):
            if isinstance(entry, dict) and isinstance(entry.get("url"), str):
                return entry["url"]
    platform, media_id = detect_platform(url)
    return fallback_thumbnail(platform, media_id)


def probe_arguments(url: str, special: bool) -> list[str]:
    """Extractor arguments for probing ``url``; the URL always follows ``--``."""

    if special:
        return [*SINGLE_URL_PROBE_ARGS, "--", url]
    return [*GENERIC_PROBE_ARGS, "--", url]


async def probe_media(
    url: Optional[str],
    *,
    extractor: Optional[Extractor] = None,
    settings: Optional[Settings] = None,
    classifier: Optional[DiagnosticClassifier] = None,
) -> MediaDescriptor:
    """Probe a media URL and return a normalized descriptor.

    Parameters
    ----------
    url: Optional[str]
        The URL submitted by the client, used verbatim.

    Returns
    -------
    MediaDescriptor
        Metadata plus at most ``settings.max_formats`` formats. ``originalUrl`` is ``url``.

    Raises
    ------
    ValidationError
        Missing, blank or non-http(s) URL. No process is spawned.
    ProtectedContentError
        The extractor reported login-gated or otherwise restricted content.
    ExtractionFailure
        Any other extractor failure or unusable metadata.
    """

    valid_url: str = validate_media_url(url)
    cfg: Settings = settings or get_settings()
    ext: Extractor = extractor or get_extractor()

    special: bool = is_special_source(valid_url, cfg.special_source_patterns)
    logger.info("probing", extra={"url": valid_url})
    result: ExtractorResult = await ext.run(probe_arguments(valid_url, special), timeout=cfg.probe_timeout_sec)

    if result.returncode != 0:
        logger.warning(
            "probe failed",
            extra={"url": valid_url, "returncode": result.returncode, "stderr": result.stderr[-2000:]},
        )
        raise (classifier or build_classifier(cfg)).classify(result.stderr, ExtractionFailure())

    try:
        info: dict[str, Any] = parse_first_json(result.stdout)
    except ExtractionFailure as ex:
        logger.error("probe output rejected: %s", ex.diagnostics, extra={"url": valid_url})
        raise

    raw_formats = info.get("formats")
    formats: list[FormatDescriptor] = normalize_formats(
        raw_formats if isinstance(raw_formats, list) else [], cfg.max_formats
    )
    if not formats and (special or info.get("url")):
        formats = [_best_available(info)]

    title = info.get("title")
    duration = info.get("duration")
    platform, _ = detect_platform(valid_url)

    return MediaDescriptor(
        title=title.strip() if isinstance(title, str) and title.strip() else DEFAULT_TITLE,
        thumbnailUrl=_pick_thumbnail(info, valid_url),
        durationSeconds=float(duration) if isinstance(duration, (int, float)) and not isinstance(duration, bool) else None,
        originalUrl=valid_url,
        platform=platform,
        formats=formats,
    )
