"""In-memory key-value store implementation."""

import asyncio
from typing import Dict, Optional

import structlog

from .base import KeyValueStore

logger = structlog.get_logger()


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local key-value store. Contents are lost on exit."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}
        self._async_lock = asyncio.Lock()
        logger.info("kv_store_initialized", backend="memory")

    async def get_item(self, key: str) -> Optional[str]:
        async with self._async_lock:
            return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._async_lock:
            self._items[key] = value
            logger.debug("kv_item_set", key=key, size=len(value))

    async def remove_item(self, key: str) -> None:
        async with self._async_lock:
            if self._items.pop(key, None) is not None:
                logger.debug("kv_item_removed", key=key)

    def __contains__(self, key: str) -> bool:
        return key in self._items
