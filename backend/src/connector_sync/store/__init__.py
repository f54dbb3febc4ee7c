"""Mirrored-metadata state store."""

from .base import StateStore
from .memory import InMemoryStateStore
from .models import (
    Connector,
    CrawlFolder,
    CrawlPage,
    GithubCodeFile,
    GithubCodeRepository,
    GithubDiscussion,
    GithubIssue,
    WebCrawlerConfiguration,
)
from .redis import RedisStateStore

__all__ = [
    "Connector",
    "CrawlFolder",
    "CrawlPage",
    "GithubCodeFile",
    "GithubCodeRepository",
    "GithubDiscussion",
    "GithubIssue",
    "InMemoryStateStore",
    "RedisStateStore",
    "StateStore",
    "WebCrawlerConfiguration",
]
