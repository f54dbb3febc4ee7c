"""Document store contract and an in-process implementation."""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from .models import Document

logger = structlog.get_logger(__name__)


class DocumentStore(ABC):
    """Idempotent document writes keyed by (data source, document id)."""

    @abstractmethod
    async def upsert(self, data_source_id: str, document: Document) -> None:
        """Create or replace a document.

        Raises:
            DocumentUpsertError: If the write was rejected
        """

    @abstractmethod
    async def delete(self, data_source_id: str, document_id: str) -> None:
        """Delete a document; deleting a missing document succeeds."""

    async def close(self) -> None:
        """Release underlying resources."""


class InMemoryDocumentStore(DocumentStore):
    """Document store held in process memory, for development and tests."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], Document] = {}
        self.upsert_count = 0
        self.delete_count = 0

    async def upsert(self, data_source_id: str, document: Document) -> None:
        self.upsert_count += 1
        self._documents[(data_source_id, document.document_id)] = document
        logger.debug(
            "document_upserted",
            data_source_id=data_source_id,
            document_id=document.document_id,
        )

    async def delete(self, data_source_id: str, document_id: str) -> None:
        self.delete_count += 1
        self._documents.pop((data_source_id, document_id), None)

    def get(self, data_source_id: str, document_id: str) -> Optional[Document]:
        return self._documents.get((data_source_id, document_id))

    def document_ids(self, data_source_id: str) -> list[str]:
        return sorted(
            document_id
            for (source, document_id) in self._documents
            if source == data_source_id
        )
