"""HTTP client for the document store API."""

from types import TracebackType
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from connector_sync.core.errors import DocumentUpsertError, UpstreamTransientError
from connector_sync.workflows.retry import (
    parse_retry_after,
    should_retry_http,
    wait_rate_limit_with_backoff,
)

from .models import Document
from .store import DocumentStore

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 3


class DocumentStoreClient(DocumentStore):
    """Writes documents to the document store over HTTP.

    Rate limits, 5xx responses and transport errors are retried with
    backoff; other error responses fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        if http_client is None:
            self._client = httpx.AsyncClient(
                base_url=base_url,
                timeout=timeout,
                headers=headers,
            )
            self._owns_client = True
        else:
            self._client = http_client
            self._owns_client = False
        self._max_attempts = max(1, max_attempts)

    async def __aenter__(self) -> "DocumentStoreClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _document_path(data_source_id: str, document_id: str) -> str:
        return (
            f"/data_sources/{quote(data_source_id, safe='')}"
            f"/documents/{quote(document_id, safe='')}"
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_rate_limit_with_backoff,
            retry=retry_if_exception(should_retry_http),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
        raise AssertionError("unreachable")

    async def upsert(self, data_source_id: str, document: Document) -> None:
        payload = document.model_dump(exclude={"document_id"})
        try:
            await self._request(
                "POST",
                self._document_path(data_source_id, document.document_id),
                json=payload,
            )
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 429 or status_code >= 500:
                raise UpstreamTransientError(
                    "document_store",
                    f"status {status_code}",
                    retry_after=parse_retry_after(e.response.headers.get("Retry-After")),
                ) from e
            raise DocumentUpsertError(
                f"document store rejected document with status {status_code}",
                details={"document_id": document.document_id, "status_code": status_code},
            ) from e
        except httpx.RequestError as e:
            raise UpstreamTransientError("document_store", str(e)) from e

        logger.debug(
            "document_upserted",
            data_source_id=data_source_id,
            document_id=document.document_id,
        )

    async def delete(self, data_source_id: str, document_id: str) -> None:
        try:
            await self._request("DELETE", self._document_path(data_source_id, document_id))
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return
            raise UpstreamTransientError(
                "document_store", f"delete failed with status {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise UpstreamTransientError("document_store", str(e)) from e
