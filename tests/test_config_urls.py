"""Unit tests for configuration, logging and URL helpers."""
from __future__ import annotations

import json
import logging
import os
import stat
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import support  # noqa: F401  # puts src/ on sys.path

from media_relay.core.config import Settings, get_settings, resolve_extractor_command
from media_relay.core.logging_cfg import JsonFormatter
from media_relay.domain.errors import ValidationError
from media_relay.infra.urls import (
    detect_platform,
    fallback_thumbnail,
    is_special_source,
    validate_media_url,
)


class TestResolveExtractor(unittest.TestCase):
    """Tests for extractor executable resolution."""

    def test_explicit_command_wins(self) -> None:
        settings: Settings = Settings(extractor_cmd=["/opt/yt-dlp", "--ignore-config"])
        self.assertEqual(resolve_extractor_command(settings), ["/opt/yt-dlp", "--ignore-config"])

    def test_deployment_dir_binary(self) -> None:
        """A bundled binary in the deployment directory is preferred over PATH."""
        with tempfile.TemporaryDirectory() as td:
            binary: Path = Path(td) / "yt-dlp"
            binary.write_text("#!/bin/sh\n")
            binary.chmod(binary.stat().st_mode | stat.S_IEXEC)
            settings: Settings = Settings(extractor_cmd=None, extractor_dir=Path(td))
            self.assertEqual(resolve_extractor_command(settings), [str(binary)])

    @patch("media_relay.core.config.shutil.which", return_value="/usr/local/bin/yt-dlp")
    def test_path_lookup(self, _: object) -> None:
        self.assertEqual(resolve_extractor_command(Settings(extractor_cmd=None)), ["/usr/local/bin/yt-dlp"])

    @patch("media_relay.core.config.shutil.which", return_value=None)
    def test_module_fallback(self, _: object) -> None:
        """Without a binary, the installed yt_dlp package is run as a module."""
        self.assertEqual(resolve_extractor_command(Settings(extractor_cmd=None)), [sys.executable, "-m", "yt_dlp"])

    def test_env_json_list(self) -> None:
        """``MRELAY_EXTRACTOR_CMD`` is parsed as a JSON list."""
        with patch.dict(os.environ, {"MRELAY_EXTRACTOR_CMD": json.dumps(["python3", "fake.py"])}):
            get_settings.cache_clear()
            try:
                self.assertEqual(get_settings().extractor_cmd, ["python3", "fake.py"])
            finally:
                get_settings.cache_clear()


class TestJsonFormatter(unittest.TestCase):
    """Tests for JSON log output."""

    def test_formats_extra_fields(self) -> None:
        record = logging.LogRecord("media_relay.x", logging.INFO, __file__, 10, "hello %s", ("w",), None)
        record.pid = 42
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "hello w")
        self.assertEqual(payload["level"], "INFO")
        self.assertEqual(payload["pid"], 42)
        self.assertNotIn("url", payload)

    def test_any_extra_field_is_kept_and_long_text_keeps_its_tail(self) -> None:
        logger = logging.getLogger("media_relay.test")
        record = logger.makeRecord(
            "media_relay.test",
            logging.WARNING,
            __file__,
            1,
            "extractor failed",
            (),
            None,
            extra={"bytes_sent": 3000, "stderr": "x" * 50 + "ERROR: boom"},
        )
        payload = json.loads(JsonFormatter(max_field_chars=20).format(record))
        self.assertEqual(payload["bytes_sent"], 3000)
        self.assertTrue(payload["stderr"].endswith("ERROR: boom"))
        self.assertLessEqual(len(payload["stderr"]), 23)
        self.assertNotIn("args", payload)
        self.assertNotIn("msg", payload)


class TestUrls(unittest.TestCase):
    """Tests for platform detection and URL validation."""

    def test_detect_platform(self) -> None:
        cases: dict[str, tuple[str, str]] = {
            "https://www.youtube.com/watch?v=abc123&t=4": ("youtube", "abc123"),
            "https://youtu.be/xyz789?si=q": ("youtube", "xyz789"),
            "https://www.youtube.com/shorts/KxLS_0x_1kQ": ("youtube", "KxLS_0x_1kQ"),
            "https://www.instagram.com/reel/C1abc/": ("instagram", "C1abc"),
            "https://instagram.com/p/B2def/?igsh=1": ("instagram", "B2def"),
            "https://vimeo.com/1234": ("unknown", ""),
        }
        for url, expected in cases.items():
            with self.subTest(url=url):
                self.assertEqual(detect_platform(url), expected)

    def test_fallback_thumbnail(self) -> None:
        self.assertEqual(
            fallback_thumbnail("youtube", "abc"), "https://img.youtube.com/vi/abc/mqdefault.jpg"
        )
        self.assertIsNone(fallback_thumbnail("youtube", ""))
        self.assertIsNone(fallback_thumbnail("instagram", "abc"))

    def test_special_source_default_patterns(self) -> None:
        patterns: list[str] = Settings().special_source_patterns
        self.assertTrue(is_special_source("https://www.instagram.com/reel/C1abc/", patterns))
        self.assertTrue(is_special_source("https://instagram.com/p/B2def", patterns))
        self.assertFalse(is_special_source("https://www.instagram.com/someuser/", patterns))
        self.assertFalse(is_special_source("https://www.youtube.com/watch?v=abc", patterns))

    def test_validate_media_url(self) -> None:
        self.assertEqual(validate_media_url("https://example.com/a"), "https://example.com/a")
        for bad in (None, "", "   ", "notaurl", "file:///etc/passwd", "ftp://example.com/x"):
            with self.subTest(bad=bad):
                with self.assertRaises(ValidationError):
                    validate_media_url(bad)
        with self.assertRaises(ValidationError) as ctx:
            validate_media_url("", label="originalUrl")
        self.assertEqual(ctx.exception.public_message, "originalUrl required")


if __name__ == "__main__":
    unittest.main()
