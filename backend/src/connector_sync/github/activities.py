"""GitHub activities: listing pages, leaf upserts, code sync and GC steps.

The methods registered with ``activity.defn`` implement the provider steps
the generic sync workflows call by name (``github.sync_leaf``, ...). Every
one is idempotent. Steps that write a mirrored resource hold its
exclusivity key on the worker for the duration of the write.
"""

import hashlib
from datetime import datetime
from typing import Callable, Optional

import structlog
from temporalio import activity

from connector_sync.config import Settings
from connector_sync.documents.models import Document, DocumentSection
from connector_sync.documents.store import DocumentStore
from connector_sync.core.errors import UnsupportedOperationError
from connector_sync.orchestration.garbage_collector import MirroredArtifact
from connector_sync.orchestration.locks import ResourceLocks
from connector_sync.orchestration.models import (
    ConnectorProvider,
    ContainerPage,
    ContainerRef,
    LeafPage,
    SyncActivity,
    SyncTarget,
    SyncUnit,
    UnitKind,
    activity_name,
    exclusivity_key,
)
from connector_sync.orchestration.pagination import Page, page_number_listing
from connector_sync.store.base import StateStore
from connector_sync.store.models import (
    GithubCodeFile,
    GithubCodeRepository,
    GithubDiscussion,
    GithubIssue,
    utc_now,
)
from connector_sync.workflows.heartbeat import heartbeat

from .client import GithubClient, GithubComment

logger = structlog.get_logger(__name__)

DEFAULT_MAX_FILE_BYTES = 1_000_000


def issue_document_id(repo_id: str, number: int) -> str:
    return f"github-issue-{repo_id}-{number}"


def discussion_document_id(repo_id: str, number: int) -> str:
    return f"github-discussion-{repo_id}-{number}"


def code_file_document_id(repo_id: str, path: str) -> str:
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()[:32]
    return f"github-code-{repo_id}-{digest}"


def repository_artifact(
    connector_id: str, repo_id: str, document_ids: Optional[list[str]] = None
) -> MirroredArtifact:
    return MirroredArtifact(
        kind=UnitKind.REPOSITORY,
        external_id=repo_id,
        resource_key=exclusivity_key(connector_id, repo_id),
        document_ids=list(document_ids or []),
    )


def issue_artifact(connector_id: str, repo_id: str, number: int) -> MirroredArtifact:
    return MirroredArtifact(
        kind=UnitKind.ISSUE,
        external_id=str(number),
        resource_key=exclusivity_key(connector_id, repo_id, UnitKind.ISSUE, str(number)),
        container_id=repo_id,
        container_key=exclusivity_key(connector_id, repo_id),
        document_ids=[issue_document_id(repo_id, number)],
    )


def discussion_artifact(connector_id: str, repo_id: str, number: int) -> MirroredArtifact:
    return MirroredArtifact(
        kind=UnitKind.DISCUSSION,
        external_id=str(number),
        resource_key=exclusivity_key(connector_id, repo_id, UnitKind.DISCUSSION, str(number)),
        container_id=repo_id,
        container_key=exclusivity_key(connector_id, repo_id),
        document_ids=[discussion_document_id(repo_id, number)],
    )


def _timestamp_ms(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int(parsed.timestamp() * 1000)


def _render_thread(
    kind: str,
    container: ContainerRef,
    number: int,
    title: str,
    author: str,
    body: str,
    comments: list[GithubComment],
) -> DocumentSection:
    return DocumentSection(
        prefix=f"{kind} #{number} [{container.owner}/{container.name}]: {title}\n",
        content=f"Opened by {author}\n\n{body}\n",
        sections=[
            DocumentSection(prefix=f">> {comment.author}:\n", content=f"{comment.body}\n")
            for comment in comments
        ],
    )


class GithubActivities:
    """GitHub activities bound to a client, the state store and the document store."""

    def __init__(
        self,
        client: GithubClient,
        state_store: StateStore,
        document_store: DocumentStore,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        locks: Optional[ResourceLocks] = None,
    ) -> None:
        self._client = client
        self._state_store = state_store
        self._document_store = document_store
        self._max_file_bytes = max_file_bytes
        self._locks = locks or ResourceLocks()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        state_store: StateStore,
        document_store: DocumentStore,
        locks: Optional[ResourceLocks] = None,
    ) -> "GithubActivities":
        client = GithubClient(
            token=settings.github_token,
            base_url=settings.github_api_url,
            timeout=settings.github_request_timeout_seconds,
        )
        return cls(
            client,
            state_store,
            document_store,
            max_file_bytes=settings.code_sync_max_file_bytes,
            locks=locks,
        )

    async def close(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Connector bookkeeping
    # ------------------------------------------------------------------

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.SAVE_START))
    async def save_start(self, target: SyncTarget) -> None:
        await self._state_store.mark_sync_started(target.connector_id)

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.SAVE_SUCCESS))
    async def save_success(self, target: SyncTarget) -> None:
        await self._state_store.mark_sync_succeeded(target.connector_id)

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.SAVE_FAILURE))
    async def save_failure(self, target: SyncTarget, error_type: str) -> None:
        await self._state_store.mark_sync_failed(target.connector_id, error_type)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_repos_page(
        self, target: SyncTarget, cursor: Optional[str]
    ) -> Page[ContainerRef]:
        """One page of the installation's repositories; the cursor is a page number."""
        list_page = page_number_listing(self._client.list_installation_repos)
        return await list_page(cursor)

    async def list_issues_page(
        self, target: SyncTarget, container: ContainerRef, cursor: Optional[str]
    ) -> Page[int]:
        """One page of issue numbers.

        Pull request numbers are listed too and dropped at upsert time, so a
        page holding only pull requests does not end the enumeration.
        """

        async def fetch(page: int) -> list[int]:
            return await self._client.list_issue_numbers(container.owner, container.name, page)

        return await page_number_listing(fetch)(cursor)

    async def list_discussions_page(
        self, target: SyncTarget, container: ContainerRef, cursor: Optional[str]
    ) -> Page[int]:
        return await self._client.list_discussion_numbers(container.owner, container.name, cursor)

    # ------------------------------------------------------------------
    # Leaf upserts
    # ------------------------------------------------------------------

    async def upsert_issue(
        self, target: SyncTarget, container: ContainerRef, number: int
    ) -> bool:
        """Mirror one issue and its comments.

        Returns:
            False when the issue is gone upstream or is a pull request
        """
        log = logger.bind(
            connector_id=target.connector_id,
            repo_id=container.id,
            issue_number=number,
        )
        issue = await self._client.get_issue(container.owner, container.name, number)
        if issue is None:
            log.warning("github_issue_not_found")
            return False
        if issue.is_pull_request:
            log.debug("github_issue_is_pull_request")
            return False

        document_id = issue_document_id(container.id, number)
        document = Document(
            document_id=document_id,
            text=_render_thread(
                "Issue", container, number, issue.title, issue.author, issue.body, issue.comments
            ),
            source_url=issue.url,
            timestamp_ms=_timestamp_ms(issue.updated_at),
            tags=[
                f"title:{issue.title}",
                f"author:{issue.author}",
                f"repository:{container.owner}/{container.name}",
                "type:issue",
            ],
            parents=[document_id, container.id],
            upsert_context={"sync_type": "batch"},
        )
        await self._document_store.upsert(target.data_source_id, document)
        await self._state_store.upsert_issue(
            GithubIssue(
                connector_id=target.connector_id,
                repo_id=container.id,
                repo_login=container.owner,
                repo_name=container.name,
                issue_number=number,
                document_id=document_id,
            )
        )
        log.info("github_issue_upserted", comments=len(issue.comments))
        return True

    async def upsert_discussion(
        self, target: SyncTarget, container: ContainerRef, number: int
    ) -> bool:
        """Mirror one discussion and its comments.

        Returns:
            False when the discussion is gone upstream
        """
        log = logger.bind(
            connector_id=target.connector_id,
            repo_id=container.id,
            discussion_number=number,
        )
        discussion = await self._client.get_discussion(container.owner, container.name, number)
        if discussion is None:
            log.warning("github_discussion_not_found")
            return False

        document_id = discussion_document_id(container.id, number)
        document = Document(
            document_id=document_id,
            text=_render_thread(
                "Discussion",
                container,
                number,
                discussion.title,
                discussion.author,
                discussion.body,
                discussion.comments,
            ),
            source_url=discussion.url,
            timestamp_ms=_timestamp_ms(discussion.updated_at),
            tags=[
                f"title:{discussion.title}",
                f"author:{discussion.author}",
                f"repository:{container.owner}/{container.name}",
                "type:discussion",
            ],
            parents=[document_id, container.id],
            upsert_context={"sync_type": "batch"},
        )
        await self._document_store.upsert(target.data_source_id, document)
        await self._state_store.upsert_discussion(
            GithubDiscussion(
                connector_id=target.connector_id,
                repo_id=container.id,
                repo_login=container.owner,
                repo_name=container.name,
                discussion_number=number,
                document_id=document_id,
            )
        )
        log.info("github_discussion_upserted", comments=len(discussion.comments))
        return True

    # ------------------------------------------------------------------
    # Code
    # ------------------------------------------------------------------

    async def sync_code(self, target: SyncTarget, container: ContainerRef) -> int:
        """Mirror the repository's files at HEAD.

        Unchanged blobs are skipped, files over the size limit or not valid
        UTF-8 are ignored, and files no longer in the tree are deleted.

        Returns:
            Number of file documents upserted
        """
        log = logger.bind(connector_id=target.connector_id, repo_id=container.id)
        heartbeat("listing_tree")
        tree = await self._client.get_tree(container.owner, container.name)
        if tree is None:
            log.warning("github_repo_not_found")
            return 0

        mirrored = {
            code_file.path: code_file
            for code_file in await self._state_store.list_code_files(
                target.connector_id, container.id
            )
        }
        upserted = 0
        skipped = 0
        seen_paths: set[str] = set()
        for entry in tree:
            heartbeat(entry.path)
            if entry.size > self._max_file_bytes:
                skipped += 1
                continue
            seen_paths.add(entry.path)
            existing = mirrored.get(entry.path)
            if existing is not None and existing.blob_sha == entry.sha:
                continue

            blob = await self._client.get_blob(container.owner, container.name, entry.sha)
            if blob is None:
                continue
            try:
                content = blob.decode("utf-8")
            except UnicodeDecodeError:
                skipped += 1
                continue

            document_id = code_file_document_id(container.id, entry.path)
            await self._document_store.upsert(
                target.data_source_id,
                Document(
                    document_id=document_id,
                    text=DocumentSection(
                        prefix=f"{container.owner}/{container.name}/{entry.path}\n",
                        content=content,
                    ),
                    source_url=(
                        f"https://github.com/{container.owner}/{container.name}/blob/HEAD/{entry.path}"
                    ),
                    timestamp_ms=int(utc_now().timestamp() * 1000),
                    tags=[f"title:{entry.path.rsplit('/', 1)[-1]}", "type:code"],
                    parents=[document_id, container.id],
                    upsert_context={"sync_type": "batch"},
                ),
            )
            await self._state_store.upsert_code_file(
                GithubCodeFile(
                    connector_id=target.connector_id,
                    repo_id=container.id,
                    path=entry.path,
                    document_id=document_id,
                    blob_sha=entry.sha,
                )
            )
            upserted += 1

        removed = 0
        for path, code_file in mirrored.items():
            if path in seen_paths:
                continue
            heartbeat(path)
            await self._document_store.delete(target.data_source_id, code_file.document_id)
            await self._state_store.delete_code_file(
                target.connector_id, container.id, code_file.document_id
            )
            removed += 1

        now = utc_now()
        await self._state_store.upsert_code_repository(
            GithubCodeRepository(
                connector_id=target.connector_id,
                repo_id=container.id,
                repo_login=container.owner,
                repo_name=container.name,
                code_updated_at=now,
                last_seen_at=now,
            )
        )
        log.info("github_code_synced", upserted=upserted, removed=removed, skipped=skipped)
        return upserted

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    async def repo_exists(self, target: SyncTarget, repo_id: str) -> bool:
        return await self._client.get_repo(repo_id) is not None

    async def issue_exists(self, target: SyncTarget, repo_id: str, number: int) -> bool:
        repo = await self._client.get_repo(repo_id)
        if repo is None:
            return False
        return await self._client.has_issue(repo.owner, repo.name, number)

    async def discussion_exists(self, target: SyncTarget, repo_id: str, number: int) -> bool:
        repo = await self._client.get_repo(repo_id)
        if repo is None:
            return False
        return await self._client.get_discussion(repo.owner, repo.name, number) is not None

    async def repository_document_ids(self, target: SyncTarget, repo_id: str) -> list[str]:
        """Every document mirrored from one repository."""
        cid = target.connector_id
        document_ids = [issue.document_id for issue in await self._state_store.list_issues(cid, repo_id)]
        document_ids.extend(
            discussion.document_id
            for discussion in await self._state_store.list_discussions(cid, repo_id)
        )
        document_ids.extend(
            code_file.document_id
            for code_file in await self._state_store.list_code_files(cid, repo_id)
        )
        return document_ids

    async def delete_repository(self, target: SyncTarget, repo_id: str) -> int:
        """Delete every document and record of a repository gone upstream."""
        document_ids = await self.repository_document_ids(target, repo_id)
        for document_id in document_ids:
            heartbeat(document_id)
            await self._document_store.delete(target.data_source_id, document_id)
        await self._state_store.delete_repository_records(target.connector_id, repo_id)
        logger.info(
            "github_repository_deleted",
            connector_id=target.connector_id,
            repo_id=repo_id,
            documents=len(document_ids),
        )
        return len(document_ids)

    async def delete_issue(self, target: SyncTarget, repo_id: str, number: int) -> None:
        await self._document_store.delete(target.data_source_id, issue_document_id(repo_id, number))
        await self._state_store.delete_issue(target.connector_id, repo_id, number)
        logger.info(
            "github_issue_deleted",
            connector_id=target.connector_id,
            repo_id=repo_id,
            issue_number=number,
        )

    async def delete_discussion(self, target: SyncTarget, repo_id: str, number: int) -> None:
        await self._document_store.delete(
            target.data_source_id, discussion_document_id(repo_id, number)
        )
        await self._state_store.delete_discussion(target.connector_id, repo_id, number)
        logger.info(
            "github_discussion_deleted",
            connector_id=target.connector_id,
            repo_id=repo_id,
            discussion_number=number,
        )

    async def mirrored_repository_ids(self, target: SyncTarget) -> list[str]:
        """Repositories with at least one mirrored record, sorted."""
        cid = target.connector_id
        repo_ids = {repo.repo_id for repo in await self._state_store.list_code_repositories(cid)}
        repo_ids.update(issue.repo_id for issue in await self._state_store.list_issues(cid))
        repo_ids.update(
            discussion.repo_id for discussion in await self._state_store.list_discussions(cid)
        )
        return sorted(repo_ids)

    # ------------------------------------------------------------------
    # Provider steps of the sync workflows
    # ------------------------------------------------------------------

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.LIST_CONTAINERS))
    async def list_containers(self, target: SyncTarget, cursor: Optional[str]) -> ContainerPage:
        page = await self.list_repos_page(target, cursor)
        return ContainerPage(items=list(page.items), next_cursor=page.next_cursor)

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.LIST_LEAVES))
    async def list_leaves(
        self,
        target: SyncTarget,
        container: ContainerRef,
        kind: UnitKind,
        cursor: Optional[str],
    ) -> LeafPage:
        if kind == UnitKind.ISSUE:
            page = await self.list_issues_page(target, container, cursor)
        elif kind == UnitKind.DISCUSSION:
            page = await self.list_discussions_page(target, container, cursor)
        else:
            raise UnsupportedOperationError("github", f"list_leaves:{kind.value}")
        return LeafPage(items=[str(number) for number in page.items], next_cursor=page.next_cursor)

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.SYNC_LEAF))
    async def sync_leaf(
        self,
        target: SyncTarget,
        container: ContainerRef,
        kind: UnitKind,
        external_id: str,
    ) -> bool:
        """Mirror one issue or discussion under its exclusivity key."""
        unit = SyncUnit(target, kind, external_id, container.id)
        async with self._locks.hold(unit.exclusivity_key, within=unit.container_key):
            if kind == UnitKind.ISSUE:
                return await self.upsert_issue(target, container, int(external_id))
            if kind == UnitKind.DISCUSSION:
                return await self.upsert_discussion(target, container, int(external_id))
        raise UnsupportedOperationError("github", f"sync_leaf:{kind.value}")

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.SYNC_BULK))
    async def sync_bulk(self, target: SyncTarget, container: ContainerRef) -> int:
        unit = SyncUnit(target, UnitKind.CODE, container.id)
        async with self._locks.hold(unit.exclusivity_key, within=unit.container_key):
            return await self.sync_code(target, container)

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.GC_LIST_MIRRORED))
    async def gc_list_mirrored(self, target: SyncTarget) -> list[MirroredArtifact]:
        """Every mirrored repository with the documents derived from it.

        Issues and discussions are collected one by one when upstream
        reports their deletion, never by a target-wide pass.
        """
        artifacts = []
        for repo_id in await self.mirrored_repository_ids(target):
            document_ids = await self.repository_document_ids(target, repo_id)
            artifacts.append(repository_artifact(target.connector_id, repo_id, document_ids))
        return artifacts

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.GC_EXISTS_UPSTREAM))
    async def gc_exists_upstream(self, target: SyncTarget, artifact: MirroredArtifact) -> bool:
        if artifact.kind == UnitKind.REPOSITORY:
            return await self.repo_exists(target, artifact.external_id)
        repo_id = _repository_of(artifact)
        if artifact.kind == UnitKind.ISSUE:
            return await self.issue_exists(target, repo_id, int(artifact.external_id))
        if artifact.kind == UnitKind.DISCUSSION:
            return await self.discussion_exists(target, repo_id, int(artifact.external_id))
        raise UnsupportedOperationError("github", f"gc:{artifact.kind.value}")

    @activity.defn(name=activity_name(ConnectorProvider.GITHUB, SyncActivity.GC_DELETE_MIRRORED))
    async def gc_delete_mirrored(self, target: SyncTarget, artifact: MirroredArtifact) -> None:
        """Delete a mirrored resource once no sync of it, or inside it, is running."""
        async with self._locks.hold(artifact.resource_key, within=artifact.container_key):
            if artifact.kind == UnitKind.REPOSITORY:
                await self.delete_repository(target, artifact.external_id)
                return
            repo_id = _repository_of(artifact)
            if artifact.kind == UnitKind.ISSUE:
                await self.delete_issue(target, repo_id, int(artifact.external_id))
                return
            if artifact.kind == UnitKind.DISCUSSION:
                await self.delete_discussion(target, repo_id, int(artifact.external_id))
                return
        raise UnsupportedOperationError("github", f"gc:{artifact.kind.value}")

    def definitions(self) -> list[Callable]:
        """Bound activity methods to register on a worker."""
        return [
            self.save_start,
            self.save_success,
            self.save_failure,
            self.list_containers,
            self.list_leaves,
            self.sync_leaf,
            self.sync_bulk,
            self.gc_list_mirrored,
            self.gc_exists_upstream,
            self.gc_delete_mirrored,
        ]


def _repository_of(artifact: MirroredArtifact) -> str:
    if artifact.container_id is None:
        raise UnsupportedOperationError("github", f"gc:{artifact.artifact_id}:no_repository")
    return artifact.container_id
