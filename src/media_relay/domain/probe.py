"""Domain models for probing media metadata and formats.

These models define the request and response payloads for the probe API.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class FormatDescriptor(BaseModel):
    """A single downloadable format entry returned by probing.

    Notes
    -----
    - ``resolutionLabel`` is for display only ("720p", "1280x720", "audio only");
      callers that need to compare heights must parse it themselves.
    """

    formatId: str = Field(description="Extractor format identifier or selector")
    extension: str = Field(description="Container/extension reported by the extractor")
    resolutionLabel: str = Field(description="Human-readable resolution label")
    approxSizeLabel: str = Field(description="Human-readable estimated size, or 'N/A'")
    isVideoOnly: bool = Field(description="True when the entry carries video without audio")
    isAudioOnly: bool = Field(description="True when the entry carries audio without video")


class ProbeRequest(BaseModel):
    """Request payload to probe a media URL.

    ``url`` is optional at the schema level so that a missing value is reported as a
    relay validation error (400) rather than a framework schema error.
    """

    url: Optional[str] = Field(default=None, description="Media URL to probe")


class MediaDescriptor(BaseModel):
    """Normalized metadata for a single media item."""

    title: str = Field(description="Media title, or a placeholder when unknown")
    thumbnailUrl: Optional[str] = Field(default=None, description="Thumbnail URL if available")
    durationSeconds: Optional[float] = Field(default=None, description="Duration in seconds if known")
    originalUrl: str = Field(description="The probed URL, echoed verbatim for the stream call")
    platform: str = Field(default="unknown", description="Coarse source platform label")
    formats: list[FormatDescriptor] = Field(default_factory=list, description="Available formats")
