"""Temporal client connection and the search attributes sync workflows carry."""

import structlog
from temporalio.api.enums.v1 import IndexedValueType
from temporalio.api.operatorservice.v1 import AddSearchAttributesRequest
from temporalio.client import Client
from temporalio.common import SearchAttributeKey
from temporalio.service import RPCError, RPCStatusCode

from connector_sync.config import Settings

logger = structlog.get_logger(__name__)

CONNECTOR_ID = SearchAttributeKey.for_keyword("ConnectorId")


async def connect(settings: Settings) -> Client:
    client = await Client.connect(settings.temporal_host, namespace=settings.temporal_namespace)
    logger.info(
        "temporal_client_connected",
        host=settings.temporal_host,
        namespace=settings.temporal_namespace,
    )
    return client


async def ensure_search_attributes(client: Client, namespace: str) -> None:
    """Register the ConnectorId search attribute; a no-op when it exists."""
    try:
        await client.operator_service.add_search_attributes(
            AddSearchAttributesRequest(
                namespace=namespace,
                search_attributes={
                    CONNECTOR_ID.name: IndexedValueType.INDEXED_VALUE_TYPE_KEYWORD,
                },
            )
        )
    except RPCError as e:
        if e.status != RPCStatusCode.ALREADY_EXISTS:
            raise
    logger.info("temporal_search_attributes_ready", namespace=namespace)
