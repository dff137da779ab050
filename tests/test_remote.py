"""Tests for the Supabase remote adapter (client mocked)."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from macrosync.errors import NetworkError, RemoteError
from macrosync.remote import SupabaseRemote


def _client(data=None, error=None):
    """Mock AsyncClient whose query builder chains back to itself."""
    query = MagicMock()
    for method in ("select", "gt", "order", "range", "upsert", "delete", "eq"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute = AsyncMock(side_effect=error)
    else:
        query.execute = AsyncMock(return_value=MagicMock(data=data))
    client = MagicMock()
    client.table.return_value = query
    return client, query


class TestQueries:
    @pytest.mark.asyncio
    async def test_fetch_changes_builds_cursor_query(self):
        client, query = _client(data=[{"id": "f1"}])
        remote = SupabaseRemote(client)

        since = "2024-05-01T00:00:00+00:00"
        rows = await remote.fetch_changes("foods", "updated_at", since, 100, 199)

        assert rows == [{"id": "f1"}]
        client.table.assert_called_once_with("foods")
        query.select.assert_called_once_with("*")
        query.gt.assert_called_once_with("updated_at", since)
        assert [c.args for c in query.order.call_args_list] == [("updated_at",), ("id",)]
        query.range.assert_called_once_with(100, 199)

    @pytest.mark.asyncio
    async def test_fetch_changes_none_data(self):
        client, _ = _client(data=None)
        assert await SupabaseRemote(client).fetch_changes("foods", "updated_at", "x", 0, 99) == []

    @pytest.mark.asyncio
    async def test_fetch_ids(self):
        client, query = _client(data=[{"id": "a"}, {"id": "b"}, {"id": None}])
        ids = await SupabaseRemote(client).fetch_ids("foods", 0, 499)
        assert ids == ["a", "b"]
        query.select.assert_called_once_with("id")
        query.range.assert_called_once_with(0, 499)

    @pytest.mark.asyncio
    async def test_upsert_keyed_by_id(self):
        client, query = _client(data=[])
        await SupabaseRemote(client).upsert("goals", {"id": "g1"})
        query.upsert.assert_called_once_with({"id": "g1"}, on_conflict="id")

    @pytest.mark.asyncio
    async def test_delete_by_id(self):
        client, query = _client(data=[])
        await SupabaseRemote(client).delete("foods", "f1")
        query.delete.assert_called_once_with()
        query.eq.assert_called_once_with("id", "f1")


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_api_error_becomes_remote_error(self):
        error = APIError(
            {
                "message": (
                    "Could not find the 'fiber_target' column of 'goals' in the schema cache"
                ),
                "code": "PGRST204",
                "details": None,
                "hint": None,
            }
        )
        client, _ = _client(error=error)

        with pytest.raises(RemoteError) as exc:
            await SupabaseRemote(client).upsert("goals", {"id": "g1", "fiber_target": 30})

        assert exc.value.code == "PGRST204"
        assert "fiber_target" in exc.value.message
        assert not isinstance(exc.value, NetworkError)

    @pytest.mark.asyncio
    async def test_transport_error_becomes_network_error(self):
        client, _ = _client(error=httpx.ConnectError("connection refused"))
        with pytest.raises(NetworkError):
            await SupabaseRemote(client).fetch_ids("foods", 0, 0)


class TestPing:
    @pytest.mark.asyncio
    async def test_reachable(self):
        client, _ = _client(data=[])
        assert await SupabaseRemote(client).ping() is True

    @pytest.mark.asyncio
    async def test_remote_error_still_online(self):
        client, _ = _client(error=APIError({"message": "denied", "code": "42501"}))
        assert await SupabaseRemote(client).ping() is True

    @pytest.mark.asyncio
    async def test_unreachable(self):
        client, _ = _client(error=httpx.ConnectTimeout("timed out"))
        assert await SupabaseRemote(client).ping() is False
