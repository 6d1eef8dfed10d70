"""Application configuration utilities.

This module defines relay settings loaded from environment variables and
resolves the extractor executable once at startup.
"""
from __future__ import annotations

import shutil
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PROTECTED_PHRASES: list[str] = [
    "private video",
    "this video is private",
    "video is private",
    "account is private",
    "members-only",
    "members only",
    "join this channel",
    "sign in to confirm your age",
    "sign in to confirm you",
    "login required",
    "requires login",
    "log in to",
    "you need to log in",
    "registered users",
    "use --cookies",
    "age-restricted",
    "age restricted",
    "available in your country",
    "made this video available",
    "geo-restricted",
    "geo restricted",
]

DEFAULT_SPECIAL_SOURCE_PATTERNS: list[str] = [
    r"^https?://(?:www\.)?instagram\.com/(?:reels?|p)/[^/?#]+",
]


class Settings(BaseSettings):
    """Typed relay settings loaded from the environment.

    Notes
    -----
    - Environment variables are read with the ``MRELAY_`` prefix (e.g., ``MRELAY_CHUNK_SIZE``).
    - List fields (``extractor_cmd``, ``protected_phrases``) are parsed from JSON strings.
    - The video height ceiling is intentionally absent: it is a fixed bandwidth control
      defined next to the stream selectors, not a deployment knob.
    """

    model_config = SettingsConfigDict(env_prefix="MRELAY_", env_file=".env", extra="ignore")

    app_name: str = Field(default="Media Relay", description="Application display name")
    debug: bool = Field(default=False, description="Enable debug mode")
    host: str = Field(default="127.0.0.1", description="Bind address for the development server")
    port: int = Field(default=5000, description="Bind port for the development server")

    extractor_cmd: Optional[list[str]] = Field(
        default=None,
        description="Explicit argv prefix for the extractor, e.g. [\"/opt/bin/yt-dlp\"]",
    )
    extractor_dir: Optional[Path] = Field(
        default=None,
        description="Deployment directory that may contain a bundled yt-dlp binary",
    )

    probe_timeout_sec: float = Field(default=60.0, description="Hard limit for a metadata probe")
    stream_idle_timeout_sec: float = Field(
        default=120.0,
        description="Abort a stream when the extractor produces no bytes for this long",
    )
    kill_grace_sec: float = Field(
        default=3.0,
        description="Seconds to wait after SIGTERM before escalating to SIGKILL",
    )
    chunk_size: int = Field(default=64 * 1024, description="Maximum bytes read from the extractor per step")
    max_formats: int = Field(default=20, description="Maximum number of formats returned by a probe")

    protected_phrases: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROTECTED_PHRASES),
        description="Case-insensitive extractor diagnostics that indicate protected content",
    )
    special_source_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SPECIAL_SOURCE_PATTERNS),
        description="URL regexes probed with the plain single-URL metadata mode",
    )


def resolve_extractor_command(settings: Settings) -> list[str]:
    """Resolve the argv prefix used to invoke the extractor.

    Notes
    -----
    - Resolution order: explicit ``extractor_cmd``; a ``yt-dlp`` binary inside
      ``extractor_dir``; ``yt-dlp`` on ``PATH``; finally ``python -m yt_dlp`` with the
      running interpreter, which works whenever the ``yt-dlp`` distribution is installed.
    - The returned list is never interpreted by a shell.

    Parameters
    ----------
    settings: Settings
        The resolved application settings instance.

    Returns
    -------
    list[str]
        The argv prefix; request-specific flags and the URL are appended by callers.
    """

    if settings.extractor_cmd:
        return list(settings.extractor_cmd)

    if settings.extractor_dir is not None:
        base: Path = settings.extractor_dir.expanduser()
        for name in ("yt-dlp", "yt-dlp.exe"):
            candidate: Path = base / name
            if candidate.is_file():
                return [str(candidate)]

    on_path: Optional[str] = shutil.which("yt-dlp")
    if on_path:
        return [on_path]

    return [sys.executable, "-m", "yt_dlp"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache application settings.

    Notes
    -----
    - Cached with ``functools.lru_cache(maxsize=1)`` to provide a single settings instance
      across the process. Tests call ``get_settings.cache_clear()`` after changing the env.

    Returns
    -------
    Settings
        The application settings instance.
    """

    return Settings()
