"""Classification of extractor diagnostics into relay errors.

Matching the extractor's wording is inherently best-effort, so the rules are data:
an ordered list of predicates, each paired with the error it produces. New rules
can be appended without touching the probe or stream control flow.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional

from media_relay.core.config import Settings, get_settings
from media_relay.domain.errors import ProtectedContentError, RelayError

Predicate = Callable[[str], bool]
ErrorFactory = Callable[[str], RelayError]


def phrase_predicate(phrases: Iterable[str]) -> Predicate:
    """Build a case-insensitive "contains any of" predicate."""

    lowered: tuple[str, ...] = tuple(p.lower() for p in phrases if p)

    def _matches(text: str) -> bool:
        haystack: str = text.lower()
        return any(p in haystack for p in lowered)

    return _matches


class DiagnosticClassifier:
    """Ordered rule set mapping extractor stderr to a ``RelayError``.

    Notes
    -----
    - The first matching rule wins.
    - The produced error keeps the raw text in ``diagnostics`` for logging; only its
      ``public_message`` is ever returned to clients.
    """

    def __init__(self, rules: Optional[list[tuple[Predicate, ErrorFactory]]] = None) -> None:
        self._rules: list[tuple[Predicate, ErrorFactory]] = list(rules or [])

    def add_rule(self, predicate: Predicate, factory: ErrorFactory) -> None:
        self._rules.append((predicate, factory))

    def classify(self, diagnostics: str, fallback: RelayError) -> RelayError:
        """Return the error for ``diagnostics``, or ``fallback`` if no rule matches."""

        for predicate, factory in self._rules:
            if predicate(diagnostics):
                return factory(diagnostics)
        if fallback.diagnostics is None:
            fallback.diagnostics = diagnostics
        return fallback


def build_classifier(settings: Optional[Settings] = None) -> DiagnosticClassifier:
    """Default classifier: protected-content phrases from settings."""

    cfg: Settings = settings or get_settings()
    classifier: DiagnosticClassifier = DiagnosticClassifier()
    classifier.add_rule(
        phrase_predicate(cfg.protected_phrases),
        lambda text: ProtectedContentError(diagnostics=text),
    )
    return classifier
