"""State store contract.

Backends implement a handful of key/value primitives over named
collections; the typed record operations are built on top of them.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, TypeVar

from pydantic import BaseModel

from connector_sync.core.errors import ConnectorNotFoundError

from .models import (
    Connector,
    CrawlFolder,
    CrawlPage,
    GithubCodeFile,
    GithubCodeRepository,
    GithubDiscussion,
    GithubIssue,
    WebCrawlerConfiguration,
    utc_now,
)

CONNECTORS = "connectors"
WEBCRAWLER_CONFIGURATIONS = "webcrawler_configurations"
CRAWL_FOLDERS = "crawl_folders"
CRAWL_PAGES = "crawl_pages"
GITHUB_ISSUES = "github_issues"
GITHUB_DISCUSSIONS = "github_discussions"
GITHUB_CODE_REPOSITORIES = "github_code_repositories"
GITHUB_CODE_FILES = "github_code_files"

CONNECTOR_SCOPED_COLLECTIONS = (
    CRAWL_PAGES,
    CRAWL_FOLDERS,
    WEBCRAWLER_CONFIGURATIONS,
    GITHUB_ISSUES,
    GITHUB_DISCUSSIONS,
    GITHUB_CODE_FILES,
    GITHUB_CODE_REPOSITORIES,
)

RecordT = TypeVar("RecordT", bound=BaseModel)


class StateStore(ABC):
    """Persistent mirrored-metadata store."""

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def scan(self, collection: str, prefix: str = "") -> list[dict[str, Any]]:
        """Return every value whose key starts with ``prefix``."""

    @abstractmethod
    async def keys(self, collection: str, prefix: str = "") -> list[str]:
        ...

    @abstractmethod
    async def remove(self, collection: str, key: str) -> bool:
        """Remove one key; returns False if it did not exist."""

    @abstractmethod
    async def drop(self, entries: list[tuple[str, str]]) -> None:
        """Remove many (collection, key) entries atomically."""

    @abstractmethod
    async def next_id(self, collection: str) -> int:
        ...

    async def close(self) -> None:
        """Release underlying resources."""

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def _save(self, collection: str, record: Any) -> None:
        await self.put(collection, record.store_key(), record.model_dump(mode="json"))

    async def _load(self, collection: str, key: str, model: type[RecordT]) -> Optional[RecordT]:
        value = await self.get(collection, key)
        return model.model_validate(value) if value is not None else None

    async def _load_all(self, collection: str, prefix: str, model: type[RecordT]) -> list[RecordT]:
        return [model.model_validate(value) for value in await self.scan(collection, prefix)]

    # ------------------------------------------------------------------
    # Connectors
    # ------------------------------------------------------------------

    async def create_connector(self, connector: Connector) -> Connector:
        await self._save(CONNECTORS, connector)
        return connector

    async def create_connector_with_configuration(
        self,
        connector: Connector,
        configuration: WebCrawlerConfiguration,
    ) -> Connector:
        """Persist a connector and its crawl configuration together."""
        await self._save(CONNECTORS, connector)
        await self._save(WEBCRAWLER_CONFIGURATIONS, configuration)
        return connector

    async def allocate_connector_id(self) -> str:
        return str(await self.next_id(CONNECTORS))

    async def get_connector(self, connector_id: str) -> Optional[Connector]:
        return await self._load(CONNECTORS, connector_id, Connector)

    async def require_connector(self, connector_id: str) -> Connector:
        connector = await self.get_connector(connector_id)
        if connector is None:
            raise ConnectorNotFoundError(connector_id)
        return connector

    async def list_connectors(self) -> list[Connector]:
        return await self._load_all(CONNECTORS, "", Connector)

    async def update_connector(self, connector_id: str, **changes: Any) -> Connector:
        connector = await self.require_connector(connector_id)
        updated = connector.model_copy(update={**changes, "updated_at": utc_now()})
        await self._save(CONNECTORS, updated)
        return updated

    async def mark_sync_started(self, connector_id: str) -> Connector:
        return await self.update_connector(
            connector_id,
            last_sync_started_at=utc_now(),
            sync_progress=None,
        )

    async def mark_sync_succeeded(self, connector_id: str) -> Connector:
        connector = await self.require_connector(connector_id)
        now = utc_now()
        return await self.update_connector(
            connector_id,
            last_sync_status="succeeded",
            last_sync_finished_at=now,
            last_sync_success_at=now,
            first_successful_sync_at=connector.first_successful_sync_at or now,
            error_type=None,
        )

    async def mark_sync_failed(self, connector_id: str, error_type: str) -> Connector:
        return await self.update_connector(
            connector_id,
            last_sync_status="failed",
            last_sync_finished_at=utc_now(),
            error_type=error_type,
        )

    async def report_progress(self, connector_id: str, progress: str) -> Connector:
        return await self.update_connector(connector_id, sync_progress=progress)

    async def delete_connector(self, connector_id: str) -> None:
        """Remove a connector and every record it owns in one transaction."""
        entries: list[tuple[str, str]] = []
        for collection in CONNECTOR_SCOPED_COLLECTIONS:
            if collection == WEBCRAWLER_CONFIGURATIONS:
                if await self.get(collection, connector_id) is not None:
                    entries.append((collection, connector_id))
                continue
            for key in await self.keys(collection, f"{connector_id}:"):
                entries.append((collection, key))
        entries.append((CONNECTORS, connector_id))
        await self.drop(entries)

    # ------------------------------------------------------------------
    # Webcrawler
    # ------------------------------------------------------------------

    async def get_webcrawler_configuration(self, connector_id: str) -> Optional[WebCrawlerConfiguration]:
        return await self._load(WEBCRAWLER_CONFIGURATIONS, connector_id, WebCrawlerConfiguration)

    async def upsert_folder(self, folder: CrawlFolder) -> None:
        await self._save(CRAWL_FOLDERS, folder)

    async def upsert_page(self, page: CrawlPage) -> None:
        await self._save(CRAWL_PAGES, page)

    async def list_folders(self, connector_id: str) -> list[CrawlFolder]:
        return await self._load_all(CRAWL_FOLDERS, f"{connector_id}:", CrawlFolder)

    async def list_pages(self, connector_id: str) -> list[CrawlPage]:
        return await self._load_all(CRAWL_PAGES, f"{connector_id}:", CrawlPage)

    async def list_folders_by_parent(
        self, connector_id: str, parent_url: Optional[str]
    ) -> list[CrawlFolder]:
        return [f for f in await self.list_folders(connector_id) if f.parent_url == parent_url]

    async def list_pages_by_parent(
        self, connector_id: str, parent_url: Optional[str]
    ) -> list[CrawlPage]:
        return [p for p in await self.list_pages(connector_id) if p.parent_url == parent_url]

    async def find_folder(self, connector_id: str, internal_id: str) -> Optional[CrawlFolder]:
        for folder in await self.list_folders(connector_id):
            if folder.internal_id == internal_id:
                return folder
        return None

    # ------------------------------------------------------------------
    # GitHub
    # ------------------------------------------------------------------

    async def upsert_issue(self, issue: GithubIssue) -> None:
        await self._save(GITHUB_ISSUES, issue)

    async def get_issue(self, connector_id: str, repo_id: str, number: int) -> Optional[GithubIssue]:
        return await self._load(GITHUB_ISSUES, f"{connector_id}:{repo_id}:{number}", GithubIssue)

    async def list_issues(self, connector_id: str, repo_id: Optional[str] = None) -> list[GithubIssue]:
        prefix = f"{connector_id}:" if repo_id is None else f"{connector_id}:{repo_id}:"
        return await self._load_all(GITHUB_ISSUES, prefix, GithubIssue)

    async def delete_issue(self, connector_id: str, repo_id: str, number: int) -> bool:
        return await self.remove(GITHUB_ISSUES, f"{connector_id}:{repo_id}:{number}")

    async def upsert_discussion(self, discussion: GithubDiscussion) -> None:
        await self._save(GITHUB_DISCUSSIONS, discussion)

    async def get_discussion(
        self, connector_id: str, repo_id: str, number: int
    ) -> Optional[GithubDiscussion]:
        return await self._load(
            GITHUB_DISCUSSIONS, f"{connector_id}:{repo_id}:{number}", GithubDiscussion
        )

    async def list_discussions(
        self, connector_id: str, repo_id: Optional[str] = None
    ) -> list[GithubDiscussion]:
        prefix = f"{connector_id}:" if repo_id is None else f"{connector_id}:{repo_id}:"
        return await self._load_all(GITHUB_DISCUSSIONS, prefix, GithubDiscussion)

    async def delete_discussion(self, connector_id: str, repo_id: str, number: int) -> bool:
        return await self.remove(GITHUB_DISCUSSIONS, f"{connector_id}:{repo_id}:{number}")

    async def upsert_code_repository(self, repository: GithubCodeRepository) -> None:
        await self._save(GITHUB_CODE_REPOSITORIES, repository)

    async def get_code_repository(
        self, connector_id: str, repo_id: str
    ) -> Optional[GithubCodeRepository]:
        return await self._load(
            GITHUB_CODE_REPOSITORIES, f"{connector_id}:{repo_id}", GithubCodeRepository
        )

    async def list_code_repositories(self, connector_id: str) -> list[GithubCodeRepository]:
        return await self._load_all(
            GITHUB_CODE_REPOSITORIES, f"{connector_id}:", GithubCodeRepository
        )

    async def upsert_code_file(self, code_file: GithubCodeFile) -> None:
        await self._save(GITHUB_CODE_FILES, code_file)

    async def list_code_files(self, connector_id: str, repo_id: str) -> list[GithubCodeFile]:
        return await self._load_all(GITHUB_CODE_FILES, f"{connector_id}:{repo_id}:", GithubCodeFile)

    async def delete_code_file(self, connector_id: str, repo_id: str, document_id: str) -> bool:
        return await self.remove(GITHUB_CODE_FILES, f"{connector_id}:{repo_id}:{document_id}")

    async def delete_repository_records(self, connector_id: str, repo_id: str) -> None:
        """Remove every record of one repository in one transaction."""
        prefix = f"{connector_id}:{repo_id}:"
        entries: list[tuple[str, str]] = []
        for collection in (GITHUB_ISSUES, GITHUB_DISCUSSIONS, GITHUB_CODE_FILES):
            entries.extend((collection, key) for key in await self.keys(collection, prefix))
        entries.append((GITHUB_CODE_REPOSITORIES, f"{connector_id}:{repo_id}"))
        await self.drop(entries)
