"""
Supabase-backed credential store for WeChat user bindings.

Table: wechat_bindings (openid primary key, endpoint, token, created_at).
This module is the only writer of that table.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from supabase import AsyncClient

from wxrelay.models.binding import Binding

logger = logging.getLogger(__name__)

BINDINGS_TABLE = "wechat_bindings"


class BindingStoreError(Exception):
    """Raised when the bindings table cannot be read or written."""


class BindingStore:
    """Create, read and delete bindings keyed by WeChat OpenID."""

    def __init__(self, client: AsyncClient, table: str = BINDINGS_TABLE):
        self._client = client
        self._table = table

    async def set_binding(self, openid: str, endpoint: str, token: str) -> Binding:
        """
        Create or replace the binding for ``openid``.

        Upserts on the primary key, so a second bind fully replaces the first
        (last writer wins).
        """
        binding = Binding(
            openid=openid,
            endpoint=endpoint,
            token=token,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        try:
            await (
                self._client.table(self._table)
                .upsert(binding.model_dump(), on_conflict="openid")
                .execute()
            )
        except Exception as e:
            raise BindingStoreError(f"Failed to save binding for {openid}: {e}") from e
        return binding

    async def get_binding(self, openid: str) -> Optional[Binding]:
        """Return the binding for ``openid`` or None when unbound."""
        try:
            result = await (
                self._client.table(self._table)
                .select("*")
                .eq("openid", openid)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise BindingStoreError(f"Failed to load binding for {openid}: {e}") from e

        if not result.data:
            return None
        return Binding(**result.data[0])

    async def delete_binding(self, openid: str) -> bool:
        """Delete the binding. Returns True if one existed; unbound is not an error."""
        try:
            result = await (
                self._client.table(self._table)
                .delete()
                .eq("openid", openid)
                .execute()
            )
        except Exception as e:
            raise BindingStoreError(f"Failed to delete binding for {openid}: {e}") from e
        return bool(result.data)

    async def ping(self) -> None:
        """Lightweight read used by the store health check."""
        await self._client.table(self._table).select("openid").limit(1).execute()
