"""Remote datastore access over Supabase (PostgREST).

``SupabaseRemote`` is the only module that talks to the supabase client.
Library errors are translated into ``RemoteError`` / ``NetworkError`` so
the pipelines never depend on postgrest or httpx exception types.
"""

import logging
from typing import Any, Dict, List, Protocol

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from .errors import NetworkError, RemoteError

logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    """Remote operations the sync engine relies on."""

    async def fetch_changes(
        self, table: str, date_field: str, since: str, start: int, end: int
    ) -> List[Dict[str, Any]]:
        """Rows with ``date_field > since`` ordered by (date_field, id), range inclusive."""
        ...

    async def fetch_ids(self, table: str, start: int, end: int) -> List[str]:
        """Primary keys ordered ascending, range inclusive."""
        ...

    async def upsert(self, table: str, payload: Dict[str, Any]) -> None: ...

    async def delete(self, table: str, record_id: str) -> None: ...

    async def ping(self) -> bool: ...


class SupabaseRemote:
    """RemoteStore backed by the async supabase client.

    Args:
        client: An authenticated (or anonymous) ``supabase.AsyncClient``.
        ping_table: Table used for connectivity probes.
    """

    def __init__(self, client: AsyncClient, ping_table: str = "foods"):
        self._client = client
        self._ping_table = ping_table

    async def _execute(self, query, table: str) -> Any:
        try:
            response = await query.execute()
        except APIError as e:
            raise RemoteError(
                e.message or str(e), code=e.code, details=e.details, hint=e.hint
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Network request failed for {table}: {e}") from e
        return response.data

    async def fetch_changes(
        self, table: str, date_field: str, since: str, start: int, end: int
    ) -> List[Dict[str, Any]]:
        query = (
            self._client.table(table)
            .select("*")
            .gt(date_field, since)
            .order(date_field, desc=False)
            .order("id", desc=False)
            .range(start, end)
        )
        return await self._execute(query, table) or []

    async def fetch_ids(self, table: str, start: int, end: int) -> List[str]:
        query = self._client.table(table).select("id").order("id", desc=False).range(start, end)
        rows = await self._execute(query, table) or []
        return [row["id"] for row in rows if row.get("id")]

    async def upsert(self, table: str, payload: Dict[str, Any]) -> None:
        query = self._client.table(table).upsert(payload, on_conflict="id")
        await self._execute(query, table)

    async def delete(self, table: str, record_id: str) -> None:
        query = self._client.table(table).delete().eq("id", record_id)
        await self._execute(query, table)

    async def ping(self) -> bool:
        """Cheap reachability probe; any remote answer counts as online."""
        try:
            await self.fetch_ids(self._ping_table, 0, 0)
        except NetworkError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False
        except RemoteError as e:
            logger.debug(f"Connectivity probe got remote error (still online): {e}")
        return True
