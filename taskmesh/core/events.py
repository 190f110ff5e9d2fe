"""Typed observer hooks for orchestrator lifecycle events."""
from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AGENT_CREATED = "agent_created"
    AGENT_REMOVED = "agent_removed"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_CANCELLED = "task_cancelled"
    TASK_REBALANCED = "task_rebalanced"
    COLLABORATION_STARTED = "collaboration_started"
    ASSIGNMENT_PAUSED = "assignment_paused"
    ASSIGNMENT_RESUMED = "assignment_resumed"


Observer = Callable[..., None]


class EventHub:
    """Registry of observers keyed by event type."""

    def __init__(self) -> None:
        self._observers: Dict[EventType, List[Observer]] = defaultdict(list)

    def subscribe(self, event: EventType, observer: Observer) -> None:
        self._observers[event].append(observer)

    def unsubscribe(self, event: EventType, observer: Observer) -> None:
        observers = self._observers.get(event)
        if observers and observer in observers:
            observers.remove(observer)

    def emit(self, event: EventType, **payload: Any) -> None:
        """Notify observers; a failing observer is logged and skipped."""
        logger.debug("event %s %s", event.value, payload)
        for observer in list(self._observers.get(event, ())):
            try:
                observer(**payload)
            except Exception:  # noqa: BLE001
                logger.exception("Observer for %s failed", event.value)
