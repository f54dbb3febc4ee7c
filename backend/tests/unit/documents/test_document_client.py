"""Tests for the document store HTTP client."""

import json

import httpx
import pytest

from connector_sync.core.errors import DocumentUpsertError, UpstreamTransientError
from connector_sync.documents.client import DocumentStoreClient
from connector_sync.documents.models import Document, DocumentSection
from connector_sync.documents.store import InMemoryDocumentStore


def _document(document_id: str = "github-issue-100-5") -> Document:
    return Document(
        document_id=document_id,
        text=DocumentSection(prefix="Title\n", content="Body"),
        source_url="https://github.com/acme/widgets/issues/5",
        tags=["type:issue"],
        parents=[document_id, "100"],
    )


def _client(handler) -> DocumentStoreClient:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://documents.test",
    )
    return DocumentStoreClient("https://documents.test", http_client=http_client, max_attempts=1)


class TestDocumentStoreClient:
    """Tests for upserts and deletes over HTTP."""

    @pytest.mark.asyncio
    async def test_upsert_posts_document(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"ok": True})

        async with _client(handler) as client:
            await client.upsert("ds 1", _document())

        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert requests[0].url.raw_path == b"/data_sources/ds%201/documents/github-issue-100-5"
        body = json.loads(requests[0].content)
        assert "document_id" not in body
        assert body["tags"] == ["type:issue"]

    @pytest.mark.asyncio
    async def test_rejected_document(self):
        client = _client(lambda request: httpx.Response(400))

        with pytest.raises(DocumentUpsertError) as exc_info:
            await client.upsert("ds-1", _document())

        assert exc_info.value.details["status_code"] == 400

    @pytest.mark.asyncio
    async def test_rate_limited_upsert_is_transient(self):
        client = _client(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))

        with pytest.raises(UpstreamTransientError) as exc_info:
            await client.upsert("ds-1", _document())

        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_delete_missing_document_succeeds(self):
        client = _client(lambda request: httpx.Response(404))

        await client.delete("ds-1", "gone")

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)

        with pytest.raises(UpstreamTransientError):
            await client.delete("ds-1", "doc")

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = DocumentStoreClient("https://documents.test", http_client=http_client)

        await client.close()

        assert not http_client.is_closed
        await http_client.aclose()


class TestInMemoryDocumentStore:
    """Tests for the in-process document store."""

    @pytest.mark.asyncio
    async def test_upsert_replaces_and_delete_is_idempotent(self):
        store = InMemoryDocumentStore()

        await store.upsert("ds-1", _document("a"))
        await store.upsert("ds-1", _document("a"))
        await store.upsert("ds-2", _document("b"))
        await store.delete("ds-1", "a")
        await store.delete("ds-1", "a")

        assert store.document_ids("ds-1") == []
        assert store.document_ids("ds-2") == ["b"]
        assert store.upsert_count == 3
        assert store.delete_count == 2
