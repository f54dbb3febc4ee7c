"""GitHub connector: client, activities and workflow inputs."""

from .activities import (
    GithubActivities,
    code_file_document_id,
    discussion_artifact,
    discussion_document_id,
    issue_artifact,
    issue_document_id,
    repository_artifact,
)
from .client import GithubClient
from .workflows import (
    LEAF_KINDS,
    code_sync_task_id,
    discussion_sync_task_id,
    fan_out_input,
    gc_input,
    gc_task_id,
    incremental_input,
    issue_sync_task_id,
)

__all__ = [
    "LEAF_KINDS",
    "GithubActivities",
    "GithubClient",
    "code_file_document_id",
    "code_sync_task_id",
    "discussion_artifact",
    "discussion_document_id",
    "discussion_sync_task_id",
    "fan_out_input",
    "gc_input",
    "gc_task_id",
    "incremental_input",
    "issue_artifact",
    "issue_document_id",
    "issue_sync_task_id",
    "repository_artifact",
]
