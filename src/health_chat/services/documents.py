"""User context documents read from the external document store."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import structlog

from ..domain.models import UserContext

logger = structlog.get_logger()

PROFILE_COLLECTION = "users"
LIFESTYLE_COLLECTION = "lifestyle"
MEDICAL_HISTORY_COLLECTION = "medicalHistory"


class DocumentStore(ABC):
    """Read-only view of the document store."""

    @abstractmethod
    async def fetch_document_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Return the document ``doc_id`` in ``collection``, or None."""
        pass


class InMemoryDocumentStore(DocumentStore):
    """Document store backed by nested dicts: ``{collection: {id: document}}``."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None) -> None:
        self._documents = documents or {}

    def put(self, collection: str, doc_id: str, document: Dict[str, Any]) -> None:
        self._documents.setdefault(collection, {})[doc_id] = document

    async def fetch_document_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get(collection, {}).get(doc_id)
        return dict(document) if document is not None else None


async def load_user_context(documents: DocumentStore, user_id: str) -> UserContext:
    """Fetch the profile, lifestyle and medical history documents of a user.

    The three reads run concurrently. A failed read leaves that document
    empty rather than failing the turn.
    """
    results = await asyncio.gather(
        documents.fetch_document_by_id(PROFILE_COLLECTION, user_id),
        documents.fetch_document_by_id(LIFESTYLE_COLLECTION, user_id),
        documents.fetch_document_by_id(MEDICAL_HISTORY_COLLECTION, user_id),
        return_exceptions=True,
    )
    profile, lifestyle, medical_history = [
        None if isinstance(result, Exception) else result for result in results
    ]
    for collection, result in zip(
        (PROFILE_COLLECTION, LIFESTYLE_COLLECTION, MEDICAL_HISTORY_COLLECTION), results
    ):
        if isinstance(result, Exception):
            logger.warning(
                "user_document_fetch_failed",
                collection=collection,
                user_id=user_id,
                error=str(result),
            )
    return UserContext(profile=profile, lifestyle=lifestyle, medical_history=medical_history)
