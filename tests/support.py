"""Shared helpers for tests: src/ on sys.path, fake extractor wiring."""
from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Sequence

_PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
_SRC_PATH: Path = _PROJECT_ROOT / "src"
if str(_SRC_PATH) not in sys.path:
    sys.path.insert(0, str(_SRC_PATH))

from media_relay.core.config import Settings  # noqa: E402  # imported after sys.path tweak
from media_relay.infra.extractor import Extractor, ExtractorResult, ExtractorStream  # noqa: E402

FAKE_EXTRACTOR: Path = Path(__file__).resolve().parent / "fake_extractor.py"
FAKE_COMMAND: list[str] = [sys.executable, str(FAKE_EXTRACTOR)]


def make_settings(**overrides: Any) -> Settings:
    """Settings pointing at the fake extractor with short timeouts."""

    values: dict[str, Any] = {
        "extractor_cmd": FAKE_COMMAND,
        "probe_timeout_sec": 10.0,
        "stream_idle_timeout_sec": 10.0,
        "kill_grace_sec": 1.0,
    }
    values.update(overrides)
    return Settings(**values)


class RecordingExtractor(Extractor):
    """Extractor that remembers every spawn it performs."""

    def __init__(self, command: Sequence[str] = tuple(FAKE_COMMAND), *, kill_grace_sec: float = 1.0) -> None:
        super().__init__(command, kill_grace_sec=kill_grace_sec)
        self.calls: list[list[str]] = []
        self.streams: list[ExtractorStream] = []

    async def run(self, args: Sequence[str], *, timeout: float) -> ExtractorResult:
        self.calls.append(list(args))
        return await super().run(args, timeout=timeout)

    async def open_stream(self, args: Sequence[str]) -> ExtractorStream:
        self.calls.append(list(args))
        stream: ExtractorStream = await super().open_stream(args)
        self.streams.append(stream)
        return stream


def process_gone(pid: int) -> bool:
    """``True`` once ``pid`` stopped running; a zombie waiting for its reaper counts as gone."""

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    if not Path("/proc").is_dir():
        return False
    try:
        state: str = Path(f"/proc/{pid}/stat").read_text().rsplit(")", 1)[1].split()[0]
    except FileNotFoundError:
        return True
    return state == "Z"


async def wait_until_gone(pid: int, timeout: float = 5.0) -> bool:
    """Poll :func:`process_gone` until it holds or ``timeout`` elapses."""

    loop = asyncio.get_running_loop()
    deadline: float = loop.time() + timeout
    while not process_gone(pid):
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True
