"""
Process-wide diagnostic sink.

Sessions report observations (call identified, audio milestones, routing
tags, session closed) here. Emitting is synchronous, lock-free under asyncio
and never raises into the relay.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class DiagnosticSink:
    """Logs each observation and keeps per-event counts for `/metrics`."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._last_routing_tag: Optional[str] = None

    def emit(self, event: str, **fields: Any) -> None:
        try:
            self._counts[event] += 1
            if event == "routing_tag":
                self._last_routing_tag = fields.get("tag")
            logger.info(event, **fields)
        except Exception as e:
            logger.debug("Diagnostic emit failed", diagnostic=event, error=str(e))

    def count(self, event: str) -> int:
        return self._counts.get(event, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": dict(self._counts),
            "last_routing_tag": self._last_routing_tag,
        }


_sink: Optional[DiagnosticSink] = None


def get_diagnostic_sink() -> DiagnosticSink:
    """Get or create the diagnostic sink singleton."""
    global _sink

    if _sink is None:
        _sink = DiagnosticSink()

    return _sink
