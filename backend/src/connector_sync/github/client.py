"""GitHub REST and GraphQL client.

Rate limits, 5xx responses and transport errors are retried with backoff;
once retries are exhausted they surface as UpstreamTransientError so the
calling activity can be retried as a whole. Other failures surface as
UpstreamPermanentError. A missing resource is reported as None.
"""

import base64
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from connector_sync.core.errors import UpstreamPermanentError, UpstreamTransientError
from connector_sync.orchestration.models import ContainerRef
from connector_sync.orchestration.pagination import Page, collect_all, page_number_listing
from connector_sync.workflows.retry import (
    parse_retry_after,
    should_retry_http,
    wait_rate_limit_with_backoff,
)

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.github.com"
PAGE_SIZE = 100
NOT_FOUND_STATUSES = {404, 410}

DISCUSSIONS_PAGE_QUERY = """
query ($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    discussions(first: 100, after: $cursor) {
      nodes { number }
      pageInfo { endCursor hasNextPage }
    }
  }
}
"""

DISCUSSION_QUERY = """
query ($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    discussion(number: $number) {
      number
      title
      body
      url
      createdAt
      updatedAt
      author { login }
      comments(first: 100) {
        nodes { body createdAt author { login } }
      }
    }
  }
}
"""


@dataclass
class GithubComment:
    author: str
    body: str
    created_at: Optional[str] = None


@dataclass
class GithubIssueData:
    """An issue with its comments."""

    number: int
    title: str
    body: str
    url: str
    author: str
    created_at: Optional[str]
    updated_at: Optional[str]
    is_pull_request: bool = False
    comments: list[GithubComment] = field(default_factory=list)


@dataclass
class GithubDiscussionData:
    """A discussion with its top-level comments."""

    number: int
    title: str
    body: str
    url: str
    author: str
    created_at: Optional[str]
    updated_at: Optional[str]
    comments: list[GithubComment] = field(default_factory=list)


@dataclass
class GithubTreeEntry:
    path: str
    sha: str
    size: int


def _repo_ref(payload: dict[str, Any]) -> ContainerRef:
    return ContainerRef(
        id=str(payload["id"]),
        name=payload["name"],
        owner=payload["owner"]["login"],
    )


def _login(payload: Optional[dict[str, Any]]) -> str:
    if not payload:
        return "ghost"
    return payload.get("login") or "ghost"


class GithubClient:
    """Async GitHub API client.

    Example:
        async with GithubClient(token=settings.github_token) as client:
            repos = await client.list_installation_repos(page=1)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "connector-sync",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if http_client is None:
            self._client = httpx.AsyncClient(
                base_url=base_url,
                headers=headers,
                timeout=timeout,
                follow_redirects=True,
            )
            self._owns_client = True
        else:
            self._client = http_client
            self._owns_client = False
        self._max_attempts = max(1, max_attempts)

    async def __aenter__(self) -> "GithubClient":
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

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_rate_limit_with_backoff,
            retry=retry_if_exception(should_retry_http),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code not in NOT_FOUND_STATUSES:
                    response.raise_for_status()
                return response
        raise AssertionError("unreachable")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Optional[httpx.Response]:
        """Send a request; returns None when the resource does not exist."""
        try:
            response = await self._send(method, url, **kwargs)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            headers = e.response.headers
            if (
                status_code == 429
                or status_code >= 500
                or (status_code == 403 and headers.get("x-ratelimit-remaining") == "0")
            ):
                raise UpstreamTransientError(
                    "github",
                    f"{method} {url} returned {status_code}",
                    retry_after=parse_retry_after(headers.get("Retry-After")),
                ) from e
            raise UpstreamPermanentError(
                "github", f"{method} {url} returned {status_code}", status_code=status_code
            ) from e
        except httpx.RequestError as e:
            raise UpstreamTransientError("github", str(e)) from e

        if response.status_code in NOT_FOUND_STATUSES:
            return None
        return response

    async def _graphql(self, query: str, variables: dict[str, Any]) -> Optional[dict[str, Any]]:
        response = await self._request("POST", "/graphql", json={"query": query, "variables": variables})
        if response is None:
            return None
        payload = response.json()
        errors = payload.get("errors") or []
        if errors:
            if all(error.get("type") == "NOT_FOUND" for error in errors):
                return None
            raise UpstreamPermanentError("github", f"GraphQL error: {errors[0].get('message')}")
        return payload.get("data")

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    async def list_installation_repos(self, page: int) -> list[ContainerRef]:
        response = await self._request(
            "GET",
            "/installation/repositories",
            params={"per_page": PAGE_SIZE, "page": page},
        )
        if response is None:
            return []
        return [_repo_ref(repo) for repo in response.json().get("repositories", [])]

    async def get_repo(self, repo_id: str) -> Optional[ContainerRef]:
        response = await self._request("GET", f"/repositories/{repo_id}")
        if response is None:
            return None
        return _repo_ref(response.json())

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def list_issue_numbers(self, owner: str, repo: str, page: int) -> list[int]:
        """One page of issue numbers; pull requests are included."""
        response = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/issues",
            params={"state": "all", "per_page": PAGE_SIZE, "page": page},
        )
        if response is None:
            return []
        return [issue["number"] for issue in response.json()]

    async def has_issue(self, owner: str, repo: str, number: int) -> bool:
        """Whether an issue (not a pull request) exists, without fetching comments."""
        response = await self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        return response is not None and "pull_request" not in response.json()

    async def get_issue(self, owner: str, repo: str, number: int) -> Optional[GithubIssueData]:
        response = await self._request("GET", f"/repos/{owner}/{repo}/issues/{number}")
        if response is None:
            return None
        issue = response.json()

        async def fetch_comments(page: int) -> list[dict[str, Any]]:
            comments = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/issues/{number}/comments",
                params={"per_page": PAGE_SIZE, "page": page},
            )
            return comments.json() if comments is not None else []

        comments = await collect_all(page_number_listing(fetch_comments), name="issue_comments")
        return GithubIssueData(
            number=issue["number"],
            title=issue.get("title") or "",
            body=issue.get("body") or "",
            url=issue.get("html_url") or "",
            author=_login(issue.get("user")),
            created_at=issue.get("created_at"),
            updated_at=issue.get("updated_at"),
            is_pull_request="pull_request" in issue,
            comments=[
                GithubComment(
                    author=_login(comment.get("user")),
                    body=comment.get("body") or "",
                    created_at=comment.get("created_at"),
                )
                for comment in comments
            ],
        )

    # ------------------------------------------------------------------
    # Discussions
    # ------------------------------------------------------------------

    async def list_discussion_numbers(
        self, owner: str, repo: str, cursor: Optional[str]
    ) -> Page[int]:
        data = await self._graphql(
            DISCUSSIONS_PAGE_QUERY,
            {"owner": owner, "name": repo, "cursor": cursor},
        )
        repository = (data or {}).get("repository")
        if not repository:
            return Page(items=[], next_cursor=None)
        discussions = repository["discussions"]
        page_info = discussions["pageInfo"]
        return Page(
            items=[node["number"] for node in discussions["nodes"]],
            next_cursor=page_info["endCursor"] if page_info["hasNextPage"] else None,
        )

    async def get_discussion(
        self, owner: str, repo: str, number: int
    ) -> Optional[GithubDiscussionData]:
        data = await self._graphql(
            DISCUSSION_QUERY,
            {"owner": owner, "name": repo, "number": number},
        )
        discussion = ((data or {}).get("repository") or {}).get("discussion")
        if not discussion:
            return None
        return GithubDiscussionData(
            number=discussion["number"],
            title=discussion.get("title") or "",
            body=discussion.get("body") or "",
            url=discussion.get("url") or "",
            author=_login(discussion.get("author")),
            created_at=discussion.get("createdAt"),
            updated_at=discussion.get("updatedAt"),
            comments=[
                GithubComment(
                    author=_login(comment.get("author")),
                    body=comment.get("body") or "",
                    created_at=comment.get("createdAt"),
                )
                for comment in discussion["comments"]["nodes"]
            ],
        )

    # ------------------------------------------------------------------
    # Code
    # ------------------------------------------------------------------

    async def get_tree(
        self, owner: str, repo: str, ref: str = "HEAD"
    ) -> Optional[list[GithubTreeEntry]]:
        """Blobs of the repository tree at ``ref``.

        Returns an empty list for a repository without commits and None when
        the repository does not exist.
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{owner}/{repo}/git/trees/{ref}",
                params={"recursive": "1"},
            )
        except UpstreamPermanentError as e:
            # 409: the repository has no commits yet.
            if e.status_code == 409:
                return []
            raise
        if response is None:
            return None
        payload = response.json()
        if payload.get("truncated"):
            logger.warning("github_tree_truncated", owner=owner, repo=repo)
        return [
            GithubTreeEntry(path=entry["path"], sha=entry["sha"], size=entry.get("size", 0))
            for entry in payload.get("tree", [])
            if entry.get("type") == "blob"
        ]

    async def get_blob(self, owner: str, repo: str, sha: str) -> Optional[bytes]:
        response = await self._request("GET", f"/repos/{owner}/{repo}/git/blobs/{sha}")
        if response is None:
            return None
        payload = response.json()
        if payload.get("encoding") == "base64":
            return base64.b64decode(payload.get("content", ""))
        return (payload.get("content") or "").encode("utf-8")
