"""URL helpers for platform detection and fallback artwork."""
from __future__ import annotations

import re
from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

from media_relay.domain.errors import ValidationError


def detect_platform(url: str) -> tuple[str, str]:
    """Return a coarse ``(platform, media_id)`` pair for a media URL.

    Notes
    -----
    - Recognizes YouTube watch, short-link and shorts URLs, and Instagram post/reel URLs.
    - Unknown hosts yield ``("unknown", "")``; the id may be empty when the path is unusual.
    """

    parsed = urlparse(url)
    host: str = (parsed.hostname or "").lower()
    parts: list[str] = [p for p in parsed.path.split("/") if p]

    if host == "youtu.be" or host.endswith(".youtu.be"):
        return "youtube", parts[0] if parts else ""
    if host == "youtube.com" or host.endswith(".youtube.com"):
        if len(parts) >= 2 and parts[0] in {"shorts", "live", "embed"}:
            return "youtube", parts[1]
        ids: list[str] = parse_qs(parsed.query).get("v", [])
        return "youtube", ids[0] if ids else ""
    if host == "instagram.com" or host.endswith(".instagram.com"):
        for marker in ("p", "reel", "reels"):
            if marker in parts:
                idx: int = parts.index(marker)
                if idx + 1 < len(parts):
                    return "instagram", parts[idx + 1]
        return "instagram", ""
    return "unknown", ""


def fallback_thumbnail(platform: str, media_id: str) -> Optional[str]:
    """Static thumbnail URL for platforms that expose one without an API call."""

    if platform == "youtube" and media_id:
        return f"https://img.youtube.com/vi/{media_id}/mqdefault.jpg"
    return None


def is_special_source(url: str, patterns: Iterable[str]) -> bool:
    """Whether ``url`` must be probed with the plain single-URL metadata mode."""

    return any(re.search(pattern, url, flags=re.IGNORECASE) for pattern in patterns)


def validate_media_url(url: Optional[str], label: str = "URL") -> str:
    """Check presence and scheme of a client-supplied media URL.

    Notes
    -----
    - Accepts only ``http`` and ``https`` with a non-empty host, which also keeps
      the extractor away from local ``file:`` URLs.
    - Returns ``url`` unchanged; callers must pass it on verbatim.

    Raises
    ------
    ValidationError
        If the URL is missing, blank or not http(s).
    """

    if url is None or not url.strip():
        raise ValidationError(f"{label} required")
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValidationError("Invalid URL: only http(s) URLs are supported")
    return url
