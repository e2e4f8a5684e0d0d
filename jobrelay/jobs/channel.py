"""
Per-job event channel.

Observers subscribe by event name and are called synchronously, in
subscription order, with the arguments passed to `emit`.
"""

import functools
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

# Type alias for channel observers
Observer = Callable[..., Any]


class EventChannel:
    """
    Observer list keyed by event name.

    A failing observer is logged and skipped so it cannot break the
    dispatcher or starve the remaining observers. Once closed the channel
    drops all observers and ignores further emits and subscriptions.
    """

    def __init__(self) -> None:
        self._observers: dict[str, list[Observer]] = defaultdict(list)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, observer: Observer) -> Observer:
        """
        Subscribe an observer to an event.

        Args:
            event: Event name.
            observer: Callable invoked with the emitted arguments.

        Returns:
            The observer, so `on` can be used as a decorator.
        """
        if not self._closed:
            self._observers[str(event)].append(observer)
        return observer

    def once(self, event: str, observer: Observer) -> Observer:
        """Subscribe an observer that is removed after its first call."""

        @functools.wraps(observer)
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return observer(*args)

        self.on(event, wrapper)
        return observer

    def off(self, event: str, observer: Observer | None = None) -> None:
        """Remove one observer, or every observer of the event."""
        event = str(event)
        if observer is None:
            self._observers.pop(event, None)
            return
        # once() registers a wrapper; match it by the observer it wraps
        observers = self._observers.get(event, [])
        for index, registered in enumerate(observers):
            if observer in (registered, getattr(registered, "__wrapped__", None)):
                del observers[index]
                return

    def emit(self, event: str, *args: Any) -> int:
        """
        Call every observer of the event.

        Returns:
            Number of observers called.
        """
        if self._closed:
            return 0

        observers = list(self._observers.get(str(event), ()))
        for observer in observers:
            try:
                observer(*args)
            except Exception:
                logger.exception(
                    "Job event observer failed",
                    extra={"event": str(event)}
                )
        return len(observers)

    def listener_count(self, event: str) -> int:
        """Number of observers subscribed to the event."""
        return len(self._observers.get(str(event), ()))

    def close(self) -> None:
        """Drop all observers; the channel becomes inert."""
        self._observers.clear()
        self._closed = True
