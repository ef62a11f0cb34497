"""Storage interface (port) for key-value persistence."""

from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """Port: stores small text documents under string keys.

    Calls are synchronous and expected to be fast (local disk, preferences
    store); the engine calls them from its own thread of control.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...
