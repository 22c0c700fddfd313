"""Ordered automation rules fired on session events."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("ctxpack.session")

SUSPENDED = "suspended"
SWITCHED = "switched"
RESUMED = "resumed"
COMPLETED = "completed"

EVENT_TYPES = (SUSPENDED, SWITCHED, RESUMED, COMPLETED)

Predicate = Callable[[dict[str, Any]], bool]
Action = Callable[[dict[str, Any]], None]


def _always(payload: dict[str, Any]) -> bool:
    return True


@dataclass(frozen=True)
class Trigger:
    """Run ``action`` for events of ``event_type`` whose payload passes ``predicate``.

    Lower ``priority`` runs first; ties keep registration order.
    """

    event_type: str
    action: Action
    predicate: Predicate = _always
    priority: int = 100
    name: str = ""
    _seq: int = field(default=0, compare=False, repr=False)


class TriggerTable:
    """Registry of triggers evaluated in priority order.

    A failing predicate or action is logged and skipped; the remaining
    triggers still run.
    """

    def __init__(self) -> None:
        self._triggers: list[Trigger] = []
        self._lock = threading.Lock()
        self._counter = 0

    def register(
        self,
        event_type: str,
        action: Action,
        predicate: Predicate | None = None,
        priority: int = 100,
        name: str = "",
    ) -> Trigger:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{event_type}'. Valid: {', '.join(EVENT_TYPES)}")
        with self._lock:
            self._counter += 1
            trigger = Trigger(
                event_type=event_type,
                action=action,
                predicate=predicate or _always,
                priority=priority,
                name=name or getattr(action, "__name__", "trigger"),
                _seq=self._counter,
            )
            self._triggers.append(trigger)
            self._triggers.sort(key=lambda t: (t.priority, t._seq))
        return trigger

    def unregister(self, trigger: Trigger) -> None:
        with self._lock:
            self._triggers = [t for t in self._triggers if t is not trigger]

    def triggers(self, event_type: str | None = None) -> list[Trigger]:
        with self._lock:
            return [t for t in self._triggers if event_type is None or t.event_type == event_type]

    def fire(self, event_type: str, payload: dict[str, Any]) -> list[str]:
        """Run matching triggers. Returns the names of those that ran."""
        ran = []
        for trigger in self.triggers(event_type):
            try:
                if not trigger.predicate(payload):
                    continue
                trigger.action(payload)
            except Exception:
                logger.exception(f"Trigger '{trigger.name}' failed on '{event_type}'")
                continue
            ran.append(trigger.name)
        return ran
