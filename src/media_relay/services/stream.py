"""Stream service: pipe extractor output straight into an HTTP response.

Bytes are read from the extractor's stdout one bounded chunk at a time and handed
to the ASGI server; the next read only happens after the previous chunk was sent.
A slow client therefore fills the OS pipe and blocks the extractor instead of
growing a buffer in this process.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import AsyncIterator, Optional

import anyio
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from media_relay.core.config import Settings, get_settings
from media_relay.domain.errors import StreamFailure, ValidationError
from media_relay.domain.stream import VIDEO_HEIGHT_CEILING, StreamKind, StreamRequest
from media_relay.infra.extractor import Extractor, ExtractorStream, get_extractor
from media_relay.infra.urls import validate_media_url
from media_relay.services.classify import DiagnosticClassifier, build_classifier

logger = logging.getLogger(__name__)

VIDEO_SELECTOR: str = (
    f"bestvideo[height<={VIDEO_HEIGHT_CEILING}]+bestaudio/best[height<={VIDEO_HEIGHT_CEILING}]"
)
AUDIO_SELECTOR: str = "bestaudio/best"
# ffmpeg output options, appended after yt-dlp's own ``-f``; they pick the container
# written to stdout.
AUDIO_OUTPUT_ARGS: str = "-vn -c:a libmp3lame -q:a 0 -f mp3"
VIDEO_OUTPUT_ARGS: str = "-f mp4 -movflags frag_keyframe+empty_moov"
DEFAULT_FILENAME: str = "video"
_MAX_FILENAME_STEM: int = 120
_UNSAFE_FILENAME_CHARS: re.Pattern[str] = re.compile(r"[^A-Za-z0-9]")


def parse_kind(raw: Optional[str]) -> StreamKind:
    """Parse the ``kind`` query value; absent means video."""

    if raw is None or not raw.strip():
        return StreamKind.VIDEO
    try:
        return StreamKind(raw.strip().lower())
    except ValueError as ex:
        raise ValidationError("kind must be 'video' or 'audio'") from ex


def sanitize_filename(title: Optional[str], kind: StreamKind) -> str:
    """Attachment filename: every non-alphanumeric character becomes ``_``."""

    stem: str = _UNSAFE_FILENAME_CHARS.sub("_", title or "")[:_MAX_FILENAME_STEM]
    if not stem.strip("_"):
        stem = DEFAULT_FILENAME
    return f"{stem}.{kind.extension}"


def stream_arguments(url: str, kind: StreamKind) -> list[str]:
    """Extractor arguments that write the selected variant to stdout.

    Notes
    -----
    - The download always goes through yt-dlp's ffmpeg downloader, which muxes or
      transcodes on the fly: MP3 for audio, fragmented MP4 for video. Fragmented MP4
      needs no seekable output.
    """

    if kind is StreamKind.AUDIO:
        selector, output_args = AUDIO_SELECTOR, AUDIO_OUTPUT_ARGS
    else:
        selector, output_args = VIDEO_SELECTOR, VIDEO_OUTPUT_ARGS
    return [
        "-f",
        selector,
        "--downloader",
        "ffmpeg",
        "--downloader-args",
        f"ffmpeg_o:{output_args}",
        "--no-playlist",
        "--playlist-items",
        "1",
        "--newline",
        "-o",
        "-",
        "--",
        url,
    ]


class MediaStreamResponse(StreamingResponse):
    """Streaming response bound to the extractor process that feeds it.

    Notes
    -----
    - Headers are fixed at construction, before the first body byte.
    - No ``Content-Length`` is sent: merged or transcoded output has no size until
      the extractor finishes.
    - The extractor is terminated once the ASGI cycle ends for any reason, including
      a client disconnect in the middle of the transfer.
    """

    def __init__(
        self,
        content: AsyncIterator[bytes],
        *,
        stream: ExtractorStream,
        filename: str,
        media_type: str,
    ) -> None:
        super().__init__(
            content,
            media_type=media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
        self.extractor_stream: ExtractorStream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.extractor_stream.terminate()


async def relay_body(
    stream: ExtractorStream,
    first_chunk: bytes,
    *,
    chunk_size: int,
    idle_timeout: float,
) -> AsyncIterator[bytes]:
    """Yield extractor stdout chunk by chunk, starting with ``first_chunk``.

    Raises
    ------
    StreamFailure
        When the extractor stalls or exits nonzero after bytes were already sent.
        Headers are committed at that point, so the server can only abort the
        connection and the client sees a truncated body.
    """

    bytes_sent: int = 0
    chunk: bytes = first_chunk
    try:
        while chunk:
            yield chunk
            bytes_sent += len(chunk)
            try:
                chunk = await stream.read_chunk(chunk_size, idle_timeout)
            except asyncio.TimeoutError as ex:
                logger.error(
                    "extractor stalled mid-stream",
                    extra={"pid": stream.pid, "bytes_sent": bytes_sent},
                )
                await stream.terminate()
                raise StreamFailure(
                    "Stream stalled", diagnostics="idle timeout", status_code=504
                ) from ex

        returncode: int = await stream.wait()
        if returncode != 0:
            logger.error(
                "extractor failed mid-stream; response truncated",
                extra={
                    "pid": stream.pid,
                    "returncode": returncode,
                    "bytes_sent": bytes_sent,
                    "stderr": stream.stderr_text,
                },
            )
            raise StreamFailure(diagnostics=stream.stderr_text)
        logger.info("stream complete", extra={"pid": stream.pid, "bytes_sent": bytes_sent})
    finally:
        await stream.terminate()


async def open_media_stream(
    request: StreamRequest,
    *,
    extractor: Optional[Extractor] = None,
    settings: Optional[Settings] = None,
    classifier: Optional[DiagnosticClassifier] = None,
) -> MediaStreamResponse:
    """Start the extractor for ``request.originalUrl`` and wrap its output in a response.

    Notes
    -----
    - Waits for the first chunk before returning so that a failure that produces
      no bytes can still be answered with a proper error status.
    - A zero exit with no output yields an empty but successful body.

    Raises
    ------
    ValidationError
        Missing or non-http(s) ``originalUrl``. No process is spawned.
    ProtectedContentError
        The extractor reported restricted content before any byte was produced.
    StreamFailure
        The extractor failed or timed out before any byte was produced.
    ExtractionFailure
        The extractor could not be started.
    """

    url: str = validate_media_url(request.originalUrl, label="originalUrl")
    kind: StreamKind = request.kind
    cfg: Settings = settings or get_settings()
    ext: Extractor = extractor or get_extractor()
    filename: str = sanitize_filename(request.title, kind)

    logger.info("starting stream", extra={"url": url, "kind": kind.value})
    stream: ExtractorStream = await ext.open_stream(stream_arguments(url, kind))
    try:
        first_chunk: bytes = await stream.read_chunk(cfg.chunk_size, cfg.stream_idle_timeout_sec)
    except asyncio.TimeoutError as ex:
        logger.error("extractor produced no output in time", extra={"pid": stream.pid, "url": url})
        await stream.terminate()
        raise StreamFailure(
            "Timed out waiting for media", diagnostics=stream.stderr_text, status_code=504
        ) from ex
    except BaseException:
        await stream.terminate()
        raise

    if not first_chunk:
        returncode: int = await stream.wait()
        if returncode != 0:
            logger.warning(
                "extractor failed before first byte",
                extra={"pid": stream.pid, "url": url, "returncode": returncode, "stderr": stream.stderr_text},
            )
            await stream.terminate()
            raise (classifier or build_classifier(cfg)).classify(stream.stderr_text, StreamFailure())

    body: AsyncIterator[bytes] = relay_body(
        stream,
        first_chunk,
        chunk_size=cfg.chunk_size,
        idle_timeout=cfg.stream_idle_timeout_sec,
    )
    return MediaStreamResponse(body, stream=stream, filename=filename, media_type=kind.media_type)
