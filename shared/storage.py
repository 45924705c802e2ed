"""Key-value persistence abstraction for the local store."""

from abc import ABC, abstractmethod
from typing import Dict, Optional


class KeyValueStorage(ABC):
    """Durable storage of keyed text blobs.

    Every ``set`` replaces the whole value for a key in one step; readers never
    observe a partially written value.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under ``key`` or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is a no-op."""


class InMemoryStorage(KeyValueStorage):
    """Dictionary-backed storage used by tests and ephemeral profiles."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        """Copy of everything currently stored."""
        return dict(self._data)
