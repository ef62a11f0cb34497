"""Observable scalar values read by the map/UI layer."""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

import structlog

T = TypeVar("T")

log = structlog.get_logger()


class Signal(Generic[T]):
    """Holds a value; listeners are called with the new value on change."""

    def __init__(self, name: str, value: T) -> None:
        self.name = name
        self._value = value
        self._listeners: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        if value == self._value:
            return
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                log.error("signal_listener_failed", signal=self.name, exc_info=True)

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe
