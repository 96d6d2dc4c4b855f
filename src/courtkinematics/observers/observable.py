from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]


class Observable(Generic[T]):
    """
    Explicit change notification for UI layers.

    Components call ``_notify(snapshot)`` after every state change; a UI
    either polls the component or subscribes here.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener[T]] = []

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _notify(self, snapshot: T) -> None:
        # Copy so listeners may unsubscribe while being notified.
        for listener in list(self._listeners):
            listener(snapshot)
