"""
Event Bus

Fire-and-forget notifications for UI and batch-runner collaborators.
Handlers are called in subscription order; a failing handler is logged and
never interrupts the publisher.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    PROCESSING_STARTED = "processing_started"
    PROCESSING_COMPLETED = "processing_completed"
    PROGRESS = "progress"
    PATTERN_LEARNED = "pattern_learned"
    PATTERN_IMPROVED = "pattern_improved"
    PATTERN_ACCURACY_CHANGED = "pattern_accuracy_changed"
    RULE_APPLIED = "rule_applied"


@dataclass
class Event:
    """A notification published on the bus"""
    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    document_id: Optional[str] = None
    progress: Optional[float] = None
    phase: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'document_id': self.document_id,
            'progress': self.progress,
            'phase': self.phase,
            'data': self.data,
            'created_at': self.created_at.isoformat(),
        }


EventHandler = Callable[[Event], Any]


class EventBus:
    """In-process publish/subscribe channel"""

    def __init__(self):
        self._handlers: Dict[Optional[EventType], List[EventHandler]] = defaultdict(list)
        self._pending: set = set()

    def subscribe(self, event_type: Optional[EventType], handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler. ``event_type=None`` receives every event.

        Returns:
            A callable that removes the subscription
        """
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        handlers = list(self._handlers.get(event.event_type, [])) + list(self._handlers.get(None, []))
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception as e:
                logger.warning(f"Event handler failed for {event.event_type.value}: {e}")

    def emit(self, event_type: EventType, **kwargs) -> Event:
        event = Event(event_type=event_type, **kwargs)
        self.publish(event)
        return event

    def _schedule(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Async event handler skipped: no running event loop")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Async event handler failed: {task.exception()}")
