"""
Tests for the Supabase-backed binding store.

The Supabase query builder is mocked; every chain ends in an AsyncMock
``execute()`` so no database is touched.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from wxrelay.services.binding_store import BINDINGS_TABLE, BindingStore, BindingStoreError


def _mock_client(data=None, error: Exception | None = None) -> tuple[MagicMock, MagicMock]:
    """Return (client, query) where every builder call returns ``query``."""
    query = MagicMock()
    for method in ("upsert", "select", "eq", "limit", "delete"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data if data is not None else []))

    client = MagicMock()
    client.table.return_value = query
    return client, query


class TestSetBinding:

    @pytest.mark.asyncio
    async def test_upserts_on_openid(self):
        client, query = _mock_client(data=[{}])
        store = BindingStore(client)

        binding = await store.set_binding("U1", "https://rt.example.com/webhook", "tok1")

        client.table.assert_called_with(BINDINGS_TABLE)
        row = query.upsert.call_args.args[0]
        assert row["openid"] == "U1"
        assert row["endpoint"] == "https://rt.example.com/webhook"
        assert row["token"] == "tok1"
        assert query.upsert.call_args.kwargs["on_conflict"] == "openid"
        assert binding.openid == "U1"
        assert binding.created_at

    @pytest.mark.asyncio
    async def test_failure_raises_store_error(self):
        client, _ = _mock_client(error=RuntimeError("connection refused"))
        with pytest.raises(BindingStoreError):
            await BindingStore(client).set_binding("U1", "https://rt.example.com/webhook", "tok1")


class TestGetBinding:

    @pytest.mark.asyncio
    async def test_returns_binding(self):
        row = {
            "openid": "U1",
            "endpoint": "https://rt.example.com/webhook",
            "token": "tok1",
            "created_at": "2026-10-19T12:00:00+00:00",
        }
        client, query = _mock_client(data=[row])

        binding = await BindingStore(client).get_binding("U1")

        query.eq.assert_called_with("openid", "U1")
        assert binding.endpoint == "https://rt.example.com/webhook"
        assert binding.token == "tok1"

    @pytest.mark.asyncio
    async def test_unbound_returns_none(self):
        client, _ = _mock_client(data=[])
        assert await BindingStore(client).get_binding("U1") is None

    @pytest.mark.asyncio
    async def test_failure_raises_store_error(self):
        client, _ = _mock_client(error=RuntimeError("timeout"))
        with pytest.raises(BindingStoreError):
            await BindingStore(client).get_binding("U1")


class TestDeleteBinding:

    @pytest.mark.asyncio
    async def test_returns_true_when_row_deleted(self):
        client, query = _mock_client(data=[{"openid": "U1"}])
        assert await BindingStore(client).delete_binding("U1") is True
        query.delete.assert_called_once()

    @pytest.mark.asyncio
    async def test_returns_false_when_unbound(self):
        client, _ = _mock_client(data=[])
        assert await BindingStore(client).delete_binding("U1") is False
