"""Tests for GitHub workflow ids, inputs and end-to-end runs on a worker."""

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from temporalio.client import WorkflowContinuedAsNewError

from connector_sync.github.activities import GithubActivities, issue_artifact, repository_artifact
from connector_sync.github.client import GithubClient, GithubIssueData
from connector_sync.github.workflows import (
    LEAF_KINDS,
    code_sync_task_id,
    discussion_sync_task_id,
    fan_out_input,
    gc_input,
    gc_task_id,
    incremental_input,
    issue_sync_task_id,
)
from connector_sync.orchestration.models import SyncStatus, UnitKind
from connector_sync.orchestration.pagination import Page
from connector_sync.store.models import GithubIssue
from connector_sync.workflows.sync import (
    DebouncedSyncWorkflow,
    FullSyncWorkflow,
    GarbageCollectWorkflow,
)


def _issue_data(number: int, is_pull_request: bool = False) -> GithubIssueData:
    return GithubIssueData(
        number=number,
        title=f"Issue {number}",
        body="body",
        url=f"https://github.com/acme/widgets/issues/{number}",
        author="alice",
        created_at=None,
        updated_at=None,
        is_pull_request=is_pull_request,
    )


@pytest.fixture
def client(repo) -> AsyncMock:
    mock = AsyncMock(spec=GithubClient)
    mock.list_installation_repos.side_effect = lambda page: [repo] if page == 1 else []
    mock.list_issue_numbers.side_effect = lambda owner, name, page: [1, 2] if page == 1 else []
    mock.list_discussion_numbers.return_value = Page(items=[], next_cursor=None)
    mock.get_issue.side_effect = lambda owner, name, number: _issue_data(
        number, is_pull_request=number == 2
    )
    mock.get_tree.return_value = []
    return mock


@pytest.fixture
def activities(client, state_store, document_store) -> GithubActivities:
    return GithubActivities(client, state_store, document_store)


# =============================================================================
# Ids and inputs
# =============================================================================


class TestTaskIds:
    """Tests for deterministic workflow ids."""

    def test_ids(self):
        assert code_sync_task_id("1", "100") == "github-code-sync-1-100"
        assert issue_sync_task_id("1", "100", 5) == "github-issue-sync-1-100-5"
        assert discussion_sync_task_id("1", "100", 5) == "github-discussion-sync-1-100-5"
        assert gc_task_id("1") == "github-gc-1"
        assert gc_task_id("1", "repo-100") == "github-gc-1-repo-100"


class TestArtifacts:
    """Tests for GC artifact builders."""

    def test_repository_artifact_is_a_container(self):
        artifact = repository_artifact("1", "100", ["doc-a"])

        assert artifact.artifact_id == "repository:100"
        assert artifact.resource_key == "1:100"
        assert artifact.container_key is None
        assert artifact.document_ids == ["doc-a"]

    def test_item_artifacts_sit_inside_their_repository(self):
        issue = issue_artifact("1", "100", 5)

        assert issue.artifact_id == "issue:100:5"
        assert issue.resource_key == "1:100:issue:5"
        assert issue.container_key == "1:100"
        assert issue.document_ids == ["github-issue-100-5"]


class TestInputs:
    """Tests for workflow inputs."""

    def test_fan_out_input_lists_leaf_kinds(self, sync_target, sync_options, repo):
        full = fan_out_input(sync_target, sync_options)
        repos = fan_out_input(sync_target, sync_options, containers=[repo])

        assert full.leaf_kinds == LEAF_KINDS
        assert full.containers is None
        assert repos.containers == [repo]

    def test_incremental_input_per_kind(self, sync_target, sync_options, repo):
        code_id, code = incremental_input(sync_target, repo, UnitKind.CODE, sync_options)
        issue_id, issue = incremental_input(
            sync_target, repo, UnitKind.ISSUE, sync_options, number=5
        )

        assert code_id == "github-code-sync-1-100"
        assert code.external_id is None
        assert issue_id == "github-issue-sync-1-100-5"
        assert issue.external_id == "5"

    def test_incremental_input_requires_number_for_leaves(self, sync_target, sync_options, repo):
        with pytest.raises(ValueError):
            incremental_input(sync_target, repo, UnitKind.DISCUSSION, sync_options)
        with pytest.raises(ValueError):
            incremental_input(sync_target, repo, UnitKind.REPOSITORY, sync_options, number=1)


# =============================================================================
# Runs
# =============================================================================


class TestGithubWorkflows:
    """Tests for the sync workflows over the GitHub activities."""

    @pytest.mark.asyncio
    async def test_full_sync(
        self,
        env,
        start_worker,
        activities,
        state_store,
        document_store,
        github_connector,
        sync_target,
        sync_options,
    ):
        async with start_worker(activities.definitions()) as task_queue:
            report = await env.client.execute_workflow(
                FullSyncWorkflow.run,
                fan_out_input(sync_target, sync_options),
                id=sync_target.full_sync_task_id,
                task_queue=task_queue,
            )

        assert report.status == SyncStatus.COMPLETED
        # The pull request is listed but not mirrored.
        assert document_store.document_ids("ds-1") == ["github-issue-100-1"]
        connector = await state_store.get_connector("1")
        assert connector.last_sync_status == "succeeded"
        assert await state_store.get_code_repository("1", "100") is not None

    @pytest.mark.asyncio
    async def test_code_sync_is_debounced(
        self,
        env,
        start_worker,
        activities,
        client,
        state_store,
        github_connector,
        sync_target,
        sync_options,
        repo,
    ):
        workflow_id, input = incremental_input(
            sync_target, repo, UnitKind.CODE, replace(sync_options, passes_per_run=1)
        )

        async with start_worker(activities.definitions()) as task_queue:
            handle = None
            for _ in range(3):
                handle = await env.client.start_workflow(
                    DebouncedSyncWorkflow.run,
                    input,
                    id=workflow_id,
                    task_queue=task_queue,
                    start_signal="notify",
                    start_signal_args=[UnitKind.CODE.value],
                )
            with pytest.raises(WorkflowContinuedAsNewError):
                await asyncio.wait_for(handle.result(follow_runs=False), timeout=30)

        assert client.get_tree.await_count == 1
        assert (await state_store.get_connector("1")).last_sync_status == "succeeded"

    @pytest.mark.asyncio
    async def test_gc_removes_deleted_repository(
        self,
        env,
        start_worker,
        activities,
        client,
        state_store,
        github_connector,
        sync_target,
        sync_options,
    ):
        await state_store.upsert_issue(
            GithubIssue(
                connector_id="1",
                repo_id="100",
                repo_login="acme",
                repo_name="widgets",
                issue_number=5,
                document_id="github-issue-100-5",
            )
        )
        client.get_repo.return_value = None

        async with start_worker(activities.definitions()) as task_queue:
            result = await env.client.execute_workflow(
                GarbageCollectWorkflow.run,
                gc_input(sync_target, sync_options),
                id=gc_task_id("1"),
                task_queue=task_queue,
            )

        assert result.removed == 1
        assert await state_store.list_issues("1") == []
        assert (await state_store.get_connector("1")).last_sync_status == "succeeded"

    @pytest.mark.asyncio
    async def test_gc_keeps_existing_issue(
        self,
        env,
        start_worker,
        activities,
        client,
        github_connector,
        sync_target,
        sync_options,
        repo,
    ):
        client.get_repo.return_value = repo
        client.has_issue.return_value = True

        async with start_worker(activities.definitions()) as task_queue:
            result = await env.client.execute_workflow(
                GarbageCollectWorkflow.run,
                gc_input(sync_target, sync_options, [issue_artifact("1", "100", 5)]),
                id=gc_task_id("1", "issue-100-5"),
                task_queue=task_queue,
            )

        assert result.kept == 1
        assert result.removed == 0
