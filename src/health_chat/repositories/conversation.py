"""Per-user conversation log persistence."""

from typing import List

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..domain.errors import StoreError
from ..domain.models import ConversationLog, Message
from .base import KeyValueStore

logger = structlog.get_logger()

_MESSAGES = TypeAdapter(List[Message])


def storage_key(user_id: str) -> str:
    return f"chat_{user_id}"


class ConversationStore:
    """Loads, replaces and clears the whole message log of a user.

    The log is stored as a JSON array of messages under ``chat_<user_id>``.
    """

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    async def load(self, user_id: str) -> ConversationLog:
        """Return the persisted log, or an empty one. Never raises."""
        key = storage_key(user_id)
        try:
            raw = await self.backend.get_item(key)
        except StoreError as e:
            logger.error("conversation_load_failed", user_id=user_id, error=str(e))
            return ConversationLog(user_id=user_id)

        if raw is None:
            return ConversationLog(user_id=user_id)

        try:
            messages = _MESSAGES.validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(
                "conversation_log_unreadable",
                user_id=user_id,
                error_count=e.error_count(),
            )
            return ConversationLog(user_id=user_id)

        logger.info("conversation_loaded", user_id=user_id, message_count=len(messages))
        return ConversationLog(user_id=user_id, messages=messages)

    async def save(self, user_id: str, log: ConversationLog) -> None:
        """Replace the persisted log with ``log``. Raises StoreError on failure."""
        payload = _MESSAGES.dump_json(log.messages).decode("utf-8")
        await self.backend.set_item(storage_key(user_id), payload)
        logger.info("conversation_saved", user_id=user_id, message_count=len(log.messages))

    async def clear(self, user_id: str) -> None:
        """Remove the persisted log. Raises StoreError on failure."""
        await self.backend.remove_item(storage_key(user_id))
        logger.info("conversation_cleared", user_id=user_id)
