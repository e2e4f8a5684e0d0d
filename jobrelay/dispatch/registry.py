"""
Listener registry.

Maps each job name to the single listener currently allowed to receive
deliveries for it. Jobs never hold a reference to a listener; they are
matched by name at delivery time and by identity at claim time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from jobrelay.errors import InvalidListenerError
from jobrelay.jobs.context import JobContext
from jobrelay.jobs.job import utcnow
from jobrelay.types.job import ListenerOptions

logger = logging.getLogger(__name__)

# Type alias for listener handlers; sync handlers finish through ctx.done()
Handler = Callable[[JobContext], Awaitable[Any] | Any]


@dataclass(eq=False)
class Listener:
    """A registered handler and its delivery options."""

    name: str
    handler: Handler
    options: ListenerOptions = field(default_factory=ListenerOptions)
    registered_at: datetime = field(default_factory=utcnow)

    def __repr__(self) -> str:
        handler_name = getattr(self.handler, "__qualname__", repr(self.handler))
        return (
            f"Listener(name={self.name}, handler={handler_name}, "
            f"delay={self.options.delay}, ttl={self.options.ttl})"
        )


class ListenerRegistry:
    """
    Registry of active listeners, at most one per job name.

    Owned by an engine instance; constructing a new registry (or calling
    `unregister()` with no name) gives a clean slate.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, Listener] = {}

    def register(
        self,
        name: str,
        handler: Handler,
        options: ListenerOptions | None = None,
    ) -> tuple[Listener, Listener | None]:
        """
        Register a handler, replacing any listener for the same name.

        Args:
            name: Job name to listen for.
            handler: Callable receiving a JobContext.
            options: Delivery options.

        Returns:
            Tuple of (new listener, replaced listener or None).

        Raises:
            InvalidListenerError: If the name is empty or handler is not callable.
        """
        if not name:
            raise InvalidListenerError("Listener name must be a non-empty string")
        if not callable(handler):
            raise InvalidListenerError(
                f"Handler for {name!r} is not callable", name=name
            )

        listener = Listener(name=name, handler=handler, options=options or ListenerOptions())
        previous = self._listeners.get(name)
        self._listeners[name] = listener

        logger.info(
            "Registered listener",
            extra={
                "job_name": name,
                "replaced": previous is not None,
                "delay": listener.options.delay,
                "ttl": listener.options.ttl,
            }
        )
        return listener, previous

    def unregister(self, name: str | None = None) -> list[Listener]:
        """
        Remove the listener for a name, or every listener.

        Returns:
            The removed listeners.
        """
        if name is None:
            removed = list(self._listeners.values())
            self._listeners.clear()
        else:
            listener = self._listeners.pop(name, None)
            removed = [listener] if listener is not None else []

        for listener in removed:
            logger.info("Unregistered listener", extra={"job_name": listener.name})
        return removed

    def get(self, name: str) -> Listener | None:
        """Get the current listener for a name."""
        return self._listeners.get(name)

    def is_current(self, listener: Listener) -> bool:
        """Check that the listener has not been replaced or removed."""
        return self._listeners.get(listener.name) is listener

    def names(self) -> list[str]:
        """List all names with a registered listener."""
        return list(self._listeners.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)
