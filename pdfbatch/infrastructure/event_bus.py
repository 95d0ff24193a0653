import logging
import threading
from typing import Type, Callable, List, Dict, Any, Optional
from pdfbatch.domain.events import Event

class EventBus:
    """A simple synchronous event bus for decoupled communication.

    Events are delivered on the publishing thread, which for progress events is a
    dispatcher worker. A subscriber that raises is logged and skipped so a broken
    progress view cannot fail a compression job.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)

    def publish(self, event: Event):
        """Publishes an event to all interested subscribers."""
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), ()))
        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                self.logger.warning(f"Subscriber {getattr(callback, '__name__', callback)!s} failed on {type(event).__name__}: {e}")
