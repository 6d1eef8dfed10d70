"""HTTP API routes for the media relay."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from media_relay.domain.probe import MediaDescriptor, ProbeRequest
from media_relay.domain.stream import StreamRequest
from media_relay.services.probe import probe_media
from media_relay.services.stream import MediaStreamResponse, open_media_stream, parse_kind

router: APIRouter = APIRouter(prefix="/api", tags=["api"])


@router.post("/probe", response_model=MediaDescriptor)
async def post_probe(payload: Optional[ProbeRequest] = None) -> MediaDescriptor:
    """Probe a media URL and return its metadata and formats.

    Parameters
    ----------
    payload: Optional[ProbeRequest]
        The request payload containing the media URL; a missing body counts as a
        missing URL.

    Returns
    -------
    MediaDescriptor
        Normalized metadata; ``originalUrl`` echoes the submitted URL.

    Notes
    -----
    - Failures are ``RelayError`` subclasses and are rendered as ``{"error": ...}``
      by the application-level exception handler: 400 for invalid input, 403 for
      protected content, 500 for any other extraction failure.
    """

    return await probe_media(payload.url if payload is not None else None)


@router.get("/stream")
async def get_stream(
    originalUrl: Optional[str] = Query(default=None, description="URL returned by probe"),
    title: Optional[str] = Query(default=None, description="Title used for the attachment filename"),
    kind: Optional[str] = Query(default=None, description="'video' (default) or 'audio'"),
    legacy_type: Optional[str] = Query(default=None, alias="type", description="Alias of 'kind'"),
) -> MediaStreamResponse:
    """Relay the selected variant of a media URL as an attachment.

    Notes
    -----
    - ``video`` is capped at 720p and muxed to fragmented MP4; ``audio`` is transcoded
      to MP3.
    - Errors detected before the first byte are answered with a JSON error status;
      a failure after that truncates the body.
    """

    request: StreamRequest = StreamRequest(
        originalUrl=originalUrl,
        title=title,
        kind=parse_kind(kind if kind is not None else legacy_type),
    )
    return await open_media_stream(request)
