"""Document store access."""

from .client import DocumentStoreClient
from .models import Document, DocumentSection
from .store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "Document",
    "DocumentSection",
    "DocumentStore",
    "DocumentStoreClient",
    "InMemoryDocumentStore",
]
