"""Base key-value storage interface."""

from abc import ABC, abstractmethod
from typing import Optional


class KeyValueStore(ABC):
    """Abstract base class for device-local string key-value storage.

    Implementations raise ``StoreError`` when the underlying storage fails.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        """Return the value stored under ``key``, or None."""
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        """Replace the value stored under ``key``. Atomic."""
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error."""
        pass
