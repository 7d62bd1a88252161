"""
In-process Event Bus for the fusion node.

Carries the per-cycle output (object count, bounding boxes, detection
image) and lifecycle events from the pipeline thread to subscribers.

Handlers run synchronously on the publisher's thread, so a slow handler
slows the pipeline down; subscribers doing heavy work should hand off to
their own thread (see SnapshotSubscriber).
"""
import threading
from collections import Counter, defaultdict
from typing import Callable, Any, Dict, List, Optional, Type

from utils.failures import FailureManager
from utils.logger import Logger

Handler = Callable[[Any], None]


class SubscriberError(Exception):
    """Wraps an exception raised inside a bus handler, for failure accounting."""

    def __init__(self, handler: Handler, event_type: Type, cause: Exception):
        super().__init__(f"{handler.__qualname__} failed on {event_type.__name__}: "
                         f"{type(cause).__name__}: {cause}")
        self.cause = cause


class EventBus:
    """
    Publish/subscribe keyed on the event's class.

    Usage:
        bus = EventBus()
        bus.subscribe(BoundingBoxes, on_boxes)
        bus.publish(BoundingBoxes(boxes=[...], header=..., image_header=...))
    """

    def __init__(self, failures: Optional[FailureManager] = None):
        """
        Args:
            failures: Where handler exceptions are recorded (logged only if omitted).
        """
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._published: Counter = Counter()
        self._lock = threading.Lock()
        self.failures = failures
        self.logger = Logger("EventBus")

    def subscribe(self, event_type: Type, handler: Handler) -> Handler:
        """Register `handler` for `event_type` and return it (handy for later unsubscribe)."""
        with self._lock:
            self._handlers[event_type].append(handler)
        self.logger.debug(f"{handler.__qualname__} listening for {event_type.__name__}")
        return handler

    def unsubscribe(self, event_type: Type, handler: Handler) -> bool:
        """Drop one registration; False if the handler was not subscribed."""
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def publish(self, event: Any) -> int:
        """
        Deliver `event` to the handlers registered for its exact type.

        A failing handler is logged (and recorded when a FailureManager was
        given) and the remaining handlers still run.

        Returns:
            Number of handlers that completed without raising.
        """
        event_type = type(event)
        with self._lock:
            handlers = tuple(self._handlers.get(event_type, ()))
            self._published[event_type] += 1

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                error = SubscriberError(handler, event_type, e)
                if self.failures is not None:
                    self.failures.record_failure(error)
                else:
                    self.logger.error(str(error))
            else:
                delivered += 1
        return delivered

    def published_count(self, event_type: Type) -> int:
        """How many events of `event_type` went through publish() so far."""
        with self._lock:
            return self._published[event_type]

    def clear(self) -> None:
        """Remove all subscriptions."""
        with self._lock:
            self._handlers.clear()

    def subscriber_count(self, event_type: Type) -> int:
        with self._lock:
            return len(self._handlers.get(event_type, ()))
