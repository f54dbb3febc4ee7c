"""Tests for Temporal client helpers."""

from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from temporalio import activity
from temporalio.service import RPCError, RPCStatusCode
from temporalio.testing import ActivityEnvironment

from connector_sync.workflows.client import CONNECTOR_ID, ensure_search_attributes
from connector_sync.workflows.heartbeat import heartbeat


def _client(error: Optional[Exception] = None) -> MagicMock:
    client = MagicMock()
    client.operator_service.add_search_attributes = AsyncMock(side_effect=error)
    return client


class TestSearchAttributes:
    """Tests for search attribute registration."""

    @pytest.mark.asyncio
    async def test_registers_connector_id(self):
        client = _client()

        await ensure_search_attributes(client, "default")

        request = client.operator_service.add_search_attributes.await_args.args[0]
        assert request.namespace == "default"
        assert CONNECTOR_ID.name in request.search_attributes

    @pytest.mark.asyncio
    async def test_existing_attribute_is_accepted(self):
        client = _client(RPCError("already registered", RPCStatusCode.ALREADY_EXISTS, b""))

        await ensure_search_attributes(client, "default")

    @pytest.mark.asyncio
    async def test_other_rpc_errors_propagate(self):
        client = _client(RPCError("denied", RPCStatusCode.PERMISSION_DENIED, b""))

        with pytest.raises(RPCError):
            await ensure_search_attributes(client, "default")


class TestHeartbeat:
    """Tests for the heartbeat helper."""

    def test_no_op_outside_activity(self):
        heartbeat("3 pages")

    @pytest.mark.asyncio
    async def test_records_details_inside_activity(self):
        env = ActivityEnvironment()
        recorded: list = []
        env.on_heartbeat = lambda *details: recorded.append(details)

        @activity.defn
        async def crawl() -> None:
            heartbeat("3 pages")

        await env.run(crawl)

        assert recorded == [("3 pages",)]
