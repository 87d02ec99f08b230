"""Crawler and link-preview bot detection.

Requests from these clients are always served the rendered frontend so that
link previews and search indexing see HTML, never raw module files.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Pattern, Sequence, Tuple


@dataclass(frozen=True)
class BotPattern:
    """A header whose value identifies a known bot."""

    header: str
    pattern: Pattern[str]


DEFAULT_BOT_PATTERNS: Tuple[BotPattern, ...] = (
    # Googlebot sends a "From" header
    BotPattern("From", re.compile(r"^googlebot\(at\)googlebot\.com", re.IGNORECASE)),
    BotPattern("User-Agent", re.compile(r"^Slack", re.IGNORECASE)),
    # Iframely renders link previews for Notion
    BotPattern("User-Agent", re.compile(r"^Iframely", re.IGNORECASE)),
    BotPattern("User-Agent", re.compile(r"^Twitter", re.IGNORECASE)),
    BotPattern("User-Agent", re.compile(r"^WhatsApp", re.IGNORECASE)),
    BotPattern("User-Agent", re.compile(r"^Mozilla/5\.0 \(compatible; Discordbot", re.IGNORECASE)),
)


class BotDetector:
    """Matches request headers against known bot signatures."""

    def __init__(
        self,
        patterns: Sequence[BotPattern] = DEFAULT_BOT_PATTERNS,
        enabled: bool = True,
    ):
        self._patterns = tuple(patterns)
        self._enabled = enabled

    def is_bot(self, headers: Mapping[str, str]) -> bool:
        """Return True if any configured header matches its bot signature.

        Args:
            headers: Case-insensitive request headers.
        """
        if not self._enabled:
            return False
        for bot in self._patterns:
            value = headers.get(bot.header)
            if value and bot.pattern.search(value):
                return True
        return False
