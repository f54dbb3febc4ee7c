"""Records persisted in the state store."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from connector_sync.orchestration.models import ConnectorProvider


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Connector(BaseModel):
    """A connector linking one upstream account to one data source."""

    id: str
    provider: ConnectorProvider
    workspace_id: str
    data_source_id: str
    connection_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_sync_status: Optional[str] = None
    last_sync_started_at: Optional[datetime] = None
    last_sync_finished_at: Optional[datetime] = None
    last_sync_success_at: Optional[datetime] = None
    first_successful_sync_at: Optional[datetime] = None
    sync_progress: Optional[str] = None
    error_type: Optional[str] = None

    def store_key(self) -> str:
        return self.id


class WebCrawlerConfiguration(BaseModel):
    """Crawl settings of a webcrawler connector."""

    connector_id: str
    url: str
    max_depth: int
    max_pages: int
    created_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return self.connector_id


class CrawlFolder(BaseModel):
    """Synthetic folder for a URL path prefix."""

    connector_id: str
    url: str
    parent_url: Optional[str] = None
    internal_id: str
    updated_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.url}"


class CrawlPage(BaseModel):
    """A crawled page."""

    connector_id: str
    url: str
    parent_url: Optional[str] = None
    document_id: str
    title: str = ""
    updated_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.url}"


class GithubIssue(BaseModel):
    """A mirrored GitHub issue."""

    connector_id: str
    repo_id: str
    repo_login: str
    repo_name: str
    issue_number: int
    document_id: str
    updated_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.repo_id}:{self.issue_number}"


class GithubDiscussion(BaseModel):
    """A mirrored GitHub discussion."""

    connector_id: str
    repo_id: str
    repo_login: str
    repo_name: str
    discussion_number: int
    document_id: str
    updated_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.repo_id}:{self.discussion_number}"


class GithubCodeRepository(BaseModel):
    """A repository whose code is mirrored."""

    connector_id: str
    repo_id: str
    repo_login: str
    repo_name: str
    code_updated_at: Optional[datetime] = None
    last_seen_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.repo_id}"


class GithubCodeFile(BaseModel):
    """A mirrored source file."""

    connector_id: str
    repo_id: str
    path: str
    document_id: str
    blob_sha: str
    updated_at: datetime = Field(default_factory=utc_now)

    def store_key(self) -> str:
        return f"{self.connector_id}:{self.repo_id}:{self.document_id}"
