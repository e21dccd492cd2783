"""Optional detection trace — structured events instead of console chatter."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceEvent:
    name: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "data": dict(self.data)}


Tracer = Callable[[TraceEvent], None]


def emit(trace: Tracer | None, name: str, **data: Any) -> None:
    """Log *name* at DEBUG and hand it to *trace* when one is installed."""
    event = TraceEvent(name, data)
    logger.debug("%s %s", name, data)
    if trace is not None:
        trace(event)


class TraceRecorder:
    """Collects events in memory; handy for tests and diagnostics dumps."""

    def __init__(self) -> None:
        self.events: list[TraceEvent] = []

    def __call__(self, event: TraceEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]

    def last(self, name: str) -> TraceEvent | None:
        for event in reversed(self.events):
            if event.name == name:
                return event
        return None
