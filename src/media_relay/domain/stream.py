"""Domain models for relaying media bytes."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Fixed bandwidth ceiling for video streams.
VIDEO_HEIGHT_CEILING: int = 720


class StreamKind(str, Enum):
    """Coarse variant selector for a stream request."""

    VIDEO = "video"
    AUDIO = "audio"

    @property
    def media_type(self) -> str:
        return "audio/mpeg" if self is StreamKind.AUDIO else "video/mp4"

    @property
    def extension(self) -> str:
        return "mp3" if self is StreamKind.AUDIO else "mp4"


class StreamRequest(BaseModel):
    """Parameters of a stream call.

    Notes
    -----
    - ``originalUrl`` is the ``originalUrl`` echoed by a previous probe.
    - ``title`` only feeds the attachment filename and is sanitized before use.
    """

    originalUrl: Optional[str] = Field(default=None, description="URL returned by probe")
    title: Optional[str] = Field(default=None, description="Display title used for the filename")
    kind: StreamKind = Field(default=StreamKind.VIDEO, description="Requested variant")
