"""Error taxonomy for the relay.

Every failure that can reach a client is one of these classes. Each carries the
HTTP status and a message that is safe to show; diagnostics stay in the logs.
"""
from __future__ import annotations

from typing import Optional


class RelayError(Exception):
    """Base class for classified relay failures.

    Notes
    -----
    - ``public_message`` is what crosses the HTTP boundary.
    - ``diagnostics`` holds raw extractor output for logging only.
    """

    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(
        self,
        public_message: Optional[str] = None,
        *,
        diagnostics: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.public_message: str = public_message or self.default_message
        self.diagnostics: Optional[str] = diagnostics
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.public_message)


class ValidationError(RelayError):
    """Missing or malformed client input, rejected before any process is spawned."""

    status_code = 400
    default_message = "Invalid request"


class ProtectedContentError(RelayError):
    """The extractor reported login-gated, private, age- or region-restricted content."""

    status_code = 403
    default_message = "This content is protected or private. Only public links are supported."


class ExtractionFailure(RelayError):
    """Probe failed: nonzero exit, unparsable metadata, spawn error or timeout."""

    status_code = 500
    default_message = "Failed to fetch media info"


class StreamFailure(RelayError):
    """The stream invocation failed or stalled."""

    status_code = 500
    default_message = "Failed to stream media"
