"""Unit tests for extractor diagnostic classification."""
from __future__ import annotations

import unittest

import support  # noqa: F401  # puts src/ on sys.path

from media_relay.domain.errors import (
    ExtractionFailure,
    ProtectedContentError,
    RelayError,
    StreamFailure,
)
from media_relay.services.classify import DiagnosticClassifier, build_classifier, phrase_predicate


class _RateLimited(RelayError):
    status_code = 429
    default_message = "Try again later"


class TestClassifier(unittest.TestCase):
    """Tests for the rule-based classifier."""

    def setUp(self) -> None:
        self.classifier: DiagnosticClassifier = build_classifier(support.make_settings())

    def test_known_protected_phrases(self) -> None:
        """Login, private and age gates are protected content regardless of case."""
        samples: list[str] = [
            "ERROR: [youtube] abc: Private video. Sign in if you've been granted access",
            "ERROR: [youtube] abc: Sign in to confirm your age. This video may be inappropriate",
            "ERROR: [instagram] xyz: Requested content is not available, rate-limit reached or login required",
            "ERROR: [youtube] abc: The uploader has not made this video available in your country",
            "ERROR: [generic] xyz: This video is not available in your country",
        ]
        for text in samples:
            with self.subTest(text=text):
                err = self.classifier.classify(text, ExtractionFailure())
                self.assertIsInstance(err, ProtectedContentError)
                self.assertEqual(err.status_code, 403)
                self.assertIn("protected", err.public_message)
                self.assertEqual(err.diagnostics, text)

    def test_unmatched_returns_fallback(self) -> None:
        """Unrecognized failures keep the caller's fallback class and record diagnostics."""
        err = self.classifier.classify("ERROR: Unsupported URL: https://x", StreamFailure())
        self.assertIsInstance(err, StreamFailure)
        self.assertEqual(err.status_code, 500)
        self.assertEqual(err.diagnostics, "ERROR: Unsupported URL: https://x")
        self.assertNotIn("Unsupported", err.public_message)

    def test_custom_rules_extend_without_control_flow_changes(self) -> None:
        """Additional predicates can be appended; first match wins."""
        self.classifier.add_rule(phrase_predicate(["HTTP Error 429"]), lambda t: _RateLimited(diagnostics=t))
        err = self.classifier.classify("ERROR: HTTP Error 429: Too Many Requests", ExtractionFailure())
        self.assertIsInstance(err, _RateLimited)
        self.assertEqual(err.status_code, 429)

    def test_phrase_predicate_ignores_empty_phrases(self) -> None:
        """An empty phrase must not match everything."""
        predicate = phrase_predicate(["", "members-only"])
        self.assertFalse(predicate("some unrelated error"))
        self.assertTrue(predicate("This video is MEMBERS-ONLY content"))


if __name__ == "__main__":
    unittest.main()
