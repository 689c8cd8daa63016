"""Honeypot and content heuristics for automated submissions."""

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

HONEYPOT_FIELD = "website"
MESSAGE_FIELD = "message"


@dataclass(frozen=True)
class SpamPattern:
    """A named, compiled content rule."""

    name: str
    regex: re.Pattern[str]


def _pattern(name: str, expression: str) -> SpamPattern:
    return SpamPattern(name=name, regex=re.compile(expression, re.IGNORECASE))


# Checked in order; the first match wins.
DEFAULT_SPAM_PATTERNS: tuple[SpamPattern, ...] = (
    _pattern("bbcode_url", r"\[url="),
    _pattern("bbcode_link", r"\[link="),
    _pattern("anchor_tag", r"<a\s+href="),
    _pattern("script_tag", r"<\s*/?\s*script\b"),
    _pattern("event_handler", r"<[^>]*\bon[a-z]+\s*="),
    _pattern("javascript_scheme", r"javascript\s*:"),
    _pattern("keyword_blocklist", r"\b(viagra|cialis|casino|poker)\b"),
    _pattern("multiple_urls", r"http.*http.*http"),
)


@dataclass(frozen=True)
class SpamVerdict:
    """Why a submission was classified as spam."""

    reason: str
    pattern: str | None = None

    @property
    def log_message(self) -> str:
        if self.pattern is None:
            return self.reason
        return f"{self.reason}: {self.pattern}"


class SpamFilter:
    """Classify raw submissions before any sanitisation happens."""

    def __init__(self, patterns: Sequence[SpamPattern] = DEFAULT_SPAM_PATTERNS) -> None:
        self.patterns = tuple(patterns)

    def check(self, data: Mapping[str, Any]) -> SpamVerdict | None:
        """
        Inspect a raw submission.

        Args:
            data: Submitted fields, unmodified

        Returns:
            SpamVerdict for the first rule that fires, or None if the submission looks clean
        """
        if data.get(HONEYPOT_FIELD):
            return SpamVerdict(reason="Honeypot triggered")

        message = data.get(MESSAGE_FIELD) or ""
        if not isinstance(message, str):
            return None
        for pattern in self.patterns:
            if pattern.regex.search(message):
                return SpamVerdict(reason="Spam pattern detected", pattern=pattern.name)
        return None
