import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """Synchronous named-event dispatch for engine handles ("open", "error", "close")."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        self._listeners.setdefault(event, []).append(listener)
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        def wrapper(*args):
            self.off(event, wrapper)
            return listener(*args)

        wrapper.listener = listener
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        listeners = self._listeners.get(event, [])
        for registered in list(listeners):
            if registered is listener or getattr(registered, "listener", None) is listener:
                listeners.remove(registered)
                break
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args) -> bool:
        listeners = list(self._listeners.get(event, []))
        if not listeners:
            if event == "error" and args:
                # Nobody is listening; keep a trace of it.
                logger.error(f"Unhandled error event: {args[0]}")
            return False
        for listener in listeners:
            listener(*args)
        return True
