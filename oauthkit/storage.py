"""Injectable key/value storage capability.

Replaces ambient browser storage with an explicit object handed to the
orchestrator and providers. Backends: in-memory, and an "unavailable"
backend that models a context with no persistence medium.
"""

from __future__ import annotations

import asyncio
import logging

from abc import ABC, abstractmethod

from .exceptions import ConfigurationError, StorageUnavailableError


logger = logging.getLogger("oauthkit.auth")


class Storage(ABC):
    """Abstract string key/value storage.

    All methods are async so network-backed stores can implement them.
    Implementations raise ``StorageUnavailableError`` when no medium exists.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored under ``key``, or None if absent.

        Parameters
        ----------
        key : str
            Storage key.

        Returns
        -------
        str or None
            The stored value.
        """

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Parameters
        ----------
        key : str
            Storage key.
        value : str
            Value to store.
        """

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error.

        Parameters
        ----------
        key : str
            Storage key.
        """


class MemoryStorage(Storage):
    """In-memory storage for tests and single-process use.

    Access is serialized via asyncio.Lock; the last writer wins.
    """

    def __init__(self) -> None:
        """Initialize the memory storage."""
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        """Get a value from memory."""
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        """Set a value in memory."""
        async with self._lock:
            self._data[key] = value

    async def remove(self, key: str) -> None:
        """Remove a value from memory."""
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self) -> list[str]:
        """List all stored keys."""
        async with self._lock:
            return list(self._data.keys())


class UnavailableStorage(Storage):
    """Storage for contexts without any persistence medium.

    Every operation raises ``StorageUnavailableError``; providers and the
    orchestrator treat that as the documented no-op branch.
    """

    def __init__(self, reason: str = "No storage medium available") -> None:
        """Initialize with the reason reported by every operation."""
        self.reason = reason

    async def get(self, key: str) -> str | None:
        """Raise StorageUnavailableError."""
        raise StorageUnavailableError(self.reason, key=key)

    async def set(self, key: str, value: str) -> None:
        """Raise StorageUnavailableError."""
        raise StorageUnavailableError(self.reason, key=key)

    async def remove(self, key: str) -> None:
        """Raise StorageUnavailableError."""
        raise StorageUnavailableError(self.reason, key=key)


def create_storage(backend: str = "memory") -> Storage:
    """Factory function for storage backends.

    Parameters
    ----------
    backend : str
        Storage backend: "memory" or "none".

    Returns
    -------
    Storage
        A new storage instance.

    Raises
    ------
    ConfigurationError
        If the backend is unknown.
    """
    if backend == "memory":
        return MemoryStorage()
    if backend == "none":
        return UnavailableStorage()
    msg = f"Unknown storage backend: {backend}"
    raise ConfigurationError(msg, backend=backend)
