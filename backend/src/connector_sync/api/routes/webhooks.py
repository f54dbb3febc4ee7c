"""GitHub webhook endpoint.

Events are mapped onto lifecycle operations: changes to issues, discussions
and the default branch notify debounced incremental syncs, deletions start
resource GC, and installation repository changes start a repos sync or a
repository GC.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Body, Depends, Header

from connector_sync.api.utils import get_connector_manager, success_response, unwrap
from connector_sync.connectors.manager import ConnectorManager
from connector_sync.connectors.models import ResourceRef
from connector_sync.core.errors import ValidationError
from connector_sync.orchestration.models import ContainerRef, UnitKind

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

ISSUE_EVENTS = {"issues", "issue_comment"}
DISCUSSION_EVENTS = {"discussion", "discussion_comment"}
# Events whose "deleted" action removes the item itself, not one of its comments.
ITEM_EVENTS = {"issues", "discussion"}


def _repository(payload: dict[str, Any]) -> ContainerRef:
    repo = payload.get("repository")
    if not isinstance(repo, dict):
        raise ValidationError("Webhook payload has no repository")
    return ContainerRef(id=str(repo["id"]), name=repo["name"], owner=repo["owner"]["login"])


def _installation_repository(repo: dict[str, Any]) -> ContainerRef:
    owner = repo.get("full_name", "").split("/", 1)[0]
    return ContainerRef(id=str(repo["id"]), name=repo["name"], owner=owner)


def _number(payload: dict[str, Any], key: str) -> int:
    item = payload.get(key)
    if not isinstance(item, dict) or "number" not in item:
        raise ValidationError(f"Webhook payload has no {key} number")
    return int(item["number"])


async def _dispatch(
    manager: ConnectorManager,
    connector_id: str,
    event: str,
    action: Optional[str],
    payload: dict[str, Any],
) -> list[str]:
    if event in ISSUE_EVENTS or event in DISCUSSION_EVENTS:
        kind = UnitKind.ISSUE if event in ISSUE_EVENTS else UnitKind.DISCUSSION
        item_key = "issue" if kind == UnitKind.ISSUE else "discussion"
        resource = ResourceRef(
            kind=kind,
            repository=_repository(payload),
            number=_number(payload, item_key),
        )
        if event in ITEM_EVENTS and action == "deleted":
            return [unwrap(await manager.garbage_collect(connector_id, resource))]
        return [unwrap(await manager.trigger_incremental(connector_id, resource))]

    if event == "push":
        repo = payload.get("repository") or {}
        default_branch = repo.get("default_branch")
        if payload.get("ref") != f"refs/heads/{default_branch}":
            return []
        resource = ResourceRef(kind=UnitKind.CODE, repository=_repository(payload))
        return [unwrap(await manager.trigger_incremental(connector_id, resource))]

    if event == "installation_repositories":
        if action == "added":
            added = [_installation_repository(r) for r in payload.get("repositories_added", [])]
            if not added:
                return []
            return [unwrap(await manager.sync_repositories(connector_id, added))]
        if action == "removed":
            task_ids = []
            for repo in payload.get("repositories_removed", []):
                resource = ResourceRef(
                    kind=UnitKind.REPOSITORY,
                    repository=_installation_repository(repo),
                )
                task_ids.append(unwrap(await manager.garbage_collect(connector_id, resource)))
            return task_ids

    return []


@router.post("/github/{connector_id}")
async def github_webhook(
    connector_id: str,
    payload: dict[str, Any] = Body(...),
    x_github_event: str = Header(..., alias="X-GitHub-Event"),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    action = payload.get("action")
    task_ids = await _dispatch(manager, connector_id, x_github_event, action, payload)
    logger.info(
        "github_webhook_handled",
        connector_id=connector_id,
        event=x_github_event,
        action=action,
        task_ids=task_ids,
    )
    return success_response(
        {
            "event": x_github_event,
            "action": action,
            "handled": bool(task_ids),
            "task_ids": task_ids,
        }
    )
