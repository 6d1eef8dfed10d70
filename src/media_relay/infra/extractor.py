"""Process adapter for the external media extractor (yt-dlp).

The extractor is always spawned from an argv list, never through a shell. On POSIX
each child starts in its own session so that signals reach the whole process group,
including the ffmpeg helpers yt-dlp launches for merging and audio extraction.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence

from media_relay.core.config import Settings, get_settings, resolve_extractor_command
from media_relay.domain.errors import ExtractionFailure

logger = logging.getLogger(__name__)

_PROGRESS_RE: re.Pattern[str] = re.compile(
    r"^(?:\[download\]\s+\d+(?:\.\d+)?%"
    r"|\[download\]\s+Destination:"
    r"|frame=\s*\d+"
    r"|size=\s*\S+\s+time="
    r")"
)
_STDERR_TAIL_LINES: int = 50
_MAX_PARTIAL_LINE: int = 8192


def is_progress_line(line: str) -> bool:
    """Return ``True`` for progress-bar chatter that should not reach the logs."""

    return bool(_PROGRESS_RE.match(line.strip()))


@dataclass(frozen=True)
class ExtractorResult:
    """Captured outcome of a one-shot extractor run."""

    returncode: int
    stdout: str
    stderr: str


def _signal_process(process: asyncio.subprocess.Process, *, hard: bool) -> None:
    """Send SIGTERM (or SIGKILL when ``hard``) to the child's process group.

    On POSIX the group is signalled even when the direct child already exited, so
    helpers it spawned (ffmpeg) cannot outlive it.
    """

    sig: int = signal.SIGKILL if hard else signal.SIGTERM
    if os.name == "posix":
        try:
            os.killpg(process.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass
        return
    if process.returncode is not None:
        return
    try:
        if hard:
            process.kill()
        else:
            process.terminate()
    except ProcessLookupError:
        pass


async def terminate_process(process: asyncio.subprocess.Process, grace: float) -> None:
    """Terminate a child, escalating to a hard kill after ``grace`` seconds.

    Notes
    -----
    - Idempotent: for a child that already exited only leftover group members are
      killed.
    - Always reaps the child so no zombie is left behind.
    """

    if process.returncode is not None:
        _signal_process(process, hard=True)
        return
    _signal_process(process, hard=False)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning("extractor ignored SIGTERM; killing", extra={"pid": process.pid})
        _signal_process(process, hard=True)
        await process.wait()
    # Helpers that trapped SIGTERM go down with the leader.
    _signal_process(process, hard=True)


class ExtractorStream:
    """A long-running extractor child whose stdout is consumed incrementally.

    Notes
    -----
    - ``read_chunk`` is the only consumer of stdout; it never reads more than the
      requested size, so memory use is bounded by the caller's chunk size.
    - stderr is drained concurrently by a background task. Progress chatter is
      dropped; other lines are logged and the most recent ones kept for classification.
    """

    def __init__(self, process: asyncio.subprocess.Process, *, kill_grace_sec: float) -> None:
        self._process: asyncio.subprocess.Process = process
        self._kill_grace_sec: float = kill_grace_sec
        self._tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        self._stderr_task: asyncio.Task[None] = asyncio.create_task(self._drain_stderr())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def stderr_text(self) -> str:
        """Recent non-progress stderr lines, oldest first."""

        return "\n".join(self._tail)

    def _record_line(self, raw: bytes) -> None:
        line: str = raw.decode("utf-8", errors="replace").strip()
        if not line or is_progress_line(line):
            return
        self._tail.append(line)
        logger.info("extractor: %s", line, extra={"pid": self.pid})

    async def _drain_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        pending: bytes = b""
        while True:
            data: bytes = await stream.read(4096)
            if not data:
                break
            pending += data
            # yt-dlp redraws progress with carriage returns unless --newline is honored.
            parts: list[bytes] = re.split(rb"[\r\n]", pending)
            pending = parts.pop()
            for raw in parts:
                self._record_line(raw)
            if len(pending) > _MAX_PARTIAL_LINE:
                self._record_line(pending[:_MAX_PARTIAL_LINE])
                pending = b""
        if pending:
            self._record_line(pending)

    async def read_chunk(self, size: int, timeout: Optional[float] = None) -> bytes:
        """Read up to ``size`` bytes from stdout; ``b""`` signals end of stream.

        Raises
        ------
        asyncio.TimeoutError
            If no bytes arrive within ``timeout`` seconds.
        """

        stream = self._process.stdout
        if stream is None:
            return b""
        return await asyncio.wait_for(stream.read(size), timeout=timeout)

    async def _finish_stderr(self) -> None:
        if self._stderr_task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=self._kill_grace_sec)
        except asyncio.TimeoutError:
            self._stderr_task.cancel()

    async def wait(self) -> int:
        """Wait for the child to exit and for its stderr to be fully drained."""

        returncode: int = await self._process.wait()
        await self._finish_stderr()
        return returncode

    async def terminate(self) -> None:
        """Stop the child and any helpers left in its process group. Safe to call more than once."""

        if self._process.returncode is None:
            logger.info("terminating extractor", extra={"pid": self.pid})
        await terminate_process(self._process, self._kill_grace_sec)
        await self._finish_stderr()


class Extractor:
    """Configured extractor executable.

    Parameters
    ----------
    command: Sequence[str]
        Argv prefix resolved at startup (e.g. ``["/usr/bin/yt-dlp"]``).
    kill_grace_sec: float
        Grace period between SIGTERM and SIGKILL.
    """

    def __init__(self, command: Sequence[str], *, kill_grace_sec: float = 3.0) -> None:
        if not command:
            raise ValueError("Extractor command must not be empty")
        self._command: tuple[str, ...] = tuple(command)
        self._kill_grace_sec: float = kill_grace_sec

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def argv(self, args: Sequence[str]) -> list[str]:
        """Full argv for a call with the given flags and operands."""

        return [*self._command, *args]

    async def _spawn(self, args: Sequence[str]) -> asyncio.subprocess.Process:
        argv: list[str] = self.argv(args)
        logger.debug("spawning extractor", extra={"argv": argv})
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except OSError as ex:
            logger.error("failed to start extractor: %s", ex, extra={"argv": argv})
            raise ExtractionFailure(diagnostics=str(ex)) from ex

    async def run(self, args: Sequence[str], *, timeout: float) -> ExtractorResult:
        """Run the extractor to completion and capture its output.

        Notes
        -----
        - Intended for metadata calls whose output is small and bounded.
        - On timeout or cancellation the child is terminated before the error propagates.

        Raises
        ------
        ExtractionFailure
            If the process cannot be spawned or does not finish within ``timeout``.
        """

        process: asyncio.subprocess.Process = await self._spawn(args)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as ex:
            logger.error("extractor timed out after %.1fs", timeout, extra={"pid": process.pid})
            await terminate_process(process, self._kill_grace_sec)
            raise ExtractionFailure("Timed out fetching media info", diagnostics="timeout") from ex
        finally:
            await terminate_process(process, self._kill_grace_sec)

        returncode: int = process.returncode if process.returncode is not None else -1
        return ExtractorResult(
            returncode=returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    async def open_stream(self, args: Sequence[str]) -> ExtractorStream:
        """Start a long-running extractor whose stdout carries media bytes."""

        process: asyncio.subprocess.Process = await self._spawn(args)
        logger.info("extractor stream started", extra={"pid": process.pid})
        return ExtractorStream(process, kill_grace_sec=self._kill_grace_sec)


@lru_cache(maxsize=1)
def get_extractor() -> Extractor:
    """Build and cache the process-wide extractor from settings.

    Notes
    -----
    - Resolution of the executable happens once; tests call ``get_extractor.cache_clear()``
      together with ``get_settings.cache_clear()`` after changing the environment.
    """

    settings: Settings = get_settings()
    return Extractor(resolve_extractor_command(settings), kill_grace_sec=settings.kill_grace_sec)
