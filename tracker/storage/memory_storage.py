"""In-process dict implementation of KeyValueStore."""

from __future__ import annotations


class MemoryKeyValueStore:
    """KeyValueStore backed by a dict. Zero dependencies, nothing survives the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)
