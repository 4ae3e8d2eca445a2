"""
Routing tag extraction from the assistant's streamed text.

The model is asked to embed a directive such as ``[[ROUTE:JAY]]`` in its text
output when the call should be handed off. Fragments are accumulated per turn
and scanned once the turn completes. The first valid tag in a turn wins;
unknown codes and malformed brackets are ignored.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional, Pattern

MESSAGE_CODE = "MESSAGE"
END_CALL_CODE = "END"


def route_codes(destinations: Iterable[str]) -> tuple[str, ...]:
    """Human destinations plus the take-a-message and end-call directives."""
    codes: list[str] = []
    for code in list(destinations) + [MESSAGE_CODE, END_CALL_CODE]:
        code = code.strip().upper()
        if code and code not in codes:
            codes.append(code)
    return tuple(codes)


def build_tag_pattern(codes: Iterable[str]) -> Pattern[str]:
    # Longest first so that e.g. "ENDICOTT" is not shadowed by "END".
    ordered = sorted(set(codes), key=len, reverse=True)
    alternatives = "|".join(re.escape(code) for code in ordered)
    return re.compile(
        rf"\[\[\s*ROUTE\s*:\s*({alternatives})\s*\]\]",
        re.IGNORECASE,
    )


def format_tag(code: str) -> str:
    return f"[[ROUTE:{code.upper()}]]"


class TagExtractor:
    """Per-turn text buffer with routing tag detection."""

    def __init__(self, destinations: Iterable[str]):
        self.codes = route_codes(destinations)
        self._pattern = build_tag_pattern(self.codes)
        self._parts: list[str] = []

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, fragment: str) -> None:
        if fragment:
            self._parts.append(fragment)

    def find(self, text: str) -> Optional[str]:
        match = self._pattern.search(text or "")
        if not match:
            return None
        return match.group(1).upper()

    def complete_turn(self) -> Optional[str]:
        """Scan the finished turn, reset the buffer and return the tag if any."""
        text = self.text
        self._parts = []
        return self.find(text)
