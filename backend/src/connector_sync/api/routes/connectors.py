"""Connector lifecycle endpoints."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field

from connector_sync.api.utils import get_connector_manager, success_response, unwrap
from connector_sync.connectors.manager import ConnectorManager
from connector_sync.connectors.models import ResourceRef
from connector_sync.orchestration.models import ConnectorProvider, ContainerRef, UnitKind

router = APIRouter(prefix="/connectors", tags=["connectors"])


class RepositoryPayload(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    owner: str = Field(..., min_length=1)

    def to_ref(self) -> ContainerRef:
        return ContainerRef(id=self.id, name=self.name, owner=self.owner)


class CreateConnectorRequest(BaseModel):
    provider: ConnectorProvider
    workspace_id: str = Field(..., min_length=1)
    data_source_id: str = Field(..., min_length=1)
    connection_id: str = Field(..., min_length=1, description="Installation id or seed URL")
    max_depth: Optional[int] = Field(None, ge=1)
    max_pages: Optional[int] = Field(None, ge=1)


class SyncRequest(BaseModel):
    sync_code_only: bool = False


class RepositoriesSyncRequest(BaseModel):
    repositories: list[RepositoryPayload] = Field(..., min_length=1)


class GarbageCollectRequest(BaseModel):
    """Empty body for a connector-wide pass; otherwise one resource."""

    kind: Optional[UnitKind] = None
    repository: Optional[RepositoryPayload] = None
    number: Optional[int] = Field(None, ge=1)

    def to_resource(self) -> Optional[ResourceRef]:
        if self.kind is None or self.repository is None:
            return None
        return ResourceRef(kind=self.kind, repository=self.repository.to_ref(), number=self.number)


class TitlesRequest(BaseModel):
    internal_ids: list[str] = Field(default_factory=list)


@router.post("")
async def create_connector(
    payload: CreateConnectorRequest = Body(...),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    connector = unwrap(
        await manager.create_connector(
            payload.provider,
            payload.workspace_id,
            payload.data_source_id,
            payload.connection_id,
            max_depth=payload.max_depth,
            max_pages=payload.max_pages,
        )
    )
    return success_response(connector.model_dump(mode="json"))


@router.get("/{connector_id}")
async def get_connector(
    connector_id: str,
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    status = unwrap(await manager.get_status(connector_id))
    return success_response(status.to_dict())


@router.delete("/{connector_id}")
async def delete_connector(
    connector_id: str,
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    unwrap(await manager.delete_connector(connector_id))
    return success_response({"deleted": True, "connector_id": connector_id})


@router.post("/{connector_id}/sync")
async def start_sync(
    connector_id: str,
    payload: Optional[SyncRequest] = Body(None),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    sync_code_only = payload.sync_code_only if payload else False
    task_id = unwrap(await manager.start_sync(connector_id, sync_code_only=sync_code_only))
    return success_response({"task_id": task_id})


@router.post("/{connector_id}/stop")
async def stop_connector(
    connector_id: str,
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    terminated = unwrap(await manager.stop(connector_id))
    return success_response({"terminated": terminated})


@router.post("/{connector_id}/resume")
async def resume_connector(
    connector_id: str,
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    task_id = unwrap(await manager.resume(connector_id))
    return success_response({"task_id": task_id})


@router.post("/{connector_id}/gc")
async def garbage_collect(
    connector_id: str,
    payload: Optional[GarbageCollectRequest] = Body(None),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    resource = payload.to_resource() if payload else None
    task_id = unwrap(await manager.garbage_collect(connector_id, resource))
    return success_response({"task_id": task_id})


@router.post("/{connector_id}/repositories/sync")
async def sync_repositories(
    connector_id: str,
    payload: RepositoriesSyncRequest = Body(...),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    repositories = [repo.to_ref() for repo in payload.repositories]
    task_id = unwrap(await manager.sync_repositories(connector_id, repositories))
    return success_response({"task_id": task_id})


@router.get("/{connector_id}/permissions")
async def retrieve_permissions(
    connector_id: str,
    parent_id: Optional[str] = Query(None),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    resources = unwrap(await manager.retrieve_permissions(connector_id, parent_id))
    return success_response({"resources": [r.model_dump(mode="json") for r in resources]})


@router.post("/{connector_id}/titles")
async def retrieve_titles(
    connector_id: str,
    payload: TitlesRequest = Body(...),
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    titles = unwrap(await manager.retrieve_titles(connector_id, payload.internal_ids))
    return success_response({"titles": titles})


@router.get("/{connector_id}/parents/{internal_id}")
async def retrieve_parents(
    connector_id: str,
    internal_id: str,
    manager: ConnectorManager = Depends(get_connector_manager),
) -> dict[str, Any]:
    parents = unwrap(await manager.retrieve_parents(connector_id, internal_id))
    return success_response({"parents": parents})
