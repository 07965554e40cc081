"""Last known group, expense and balance snapshots per group."""

import logging
from typing import Any

from .db import Storage
from .models import Balance, CacheKind, Group, ledger_entry_adapter

logger = logging.getLogger(__name__)

_EMPTY: dict[str, Any] = {"group": None, "expenses": [], "balances": []}


class LocalCacheStore:
    """Snapshot cache keyed by group id.

    Writes overwrite unconditionally (last write wins) and nothing expires.
    """

    def __init__(self, storage: Storage):
        """Initialize the cache on top of a storage backend."""
        self.storage = storage

    @staticmethod
    def _namespace(kind: CacheKind) -> str:
        if kind not in _EMPTY:
            raise ValueError(f"Unknown cache kind: {kind}")
        return f"cache:{kind}"

    async def put(self, group_id: str, kind: CacheKind, value: Any) -> None:
        """Store a JSON-compatible snapshot for a group."""
        await self.storage.put(self._namespace(kind), group_id, value)

    async def get(self, group_id: str, kind: CacheKind) -> Any:
        """Return the last stored snapshot, or an empty default."""
        value = await self.storage.get(self._namespace(kind), group_id)
        if value is None:
            logger.debug(f"Cache miss for {kind} of group {group_id}")
            empty = _EMPTY[kind]
            return list(empty) if isinstance(empty, list) else empty
        return value

    # ========================================================================
    # Typed helpers
    # ========================================================================

    async def put_group(self, group: Group) -> None:
        await self.put(group.id, "group", group.model_dump(mode="json"))

    async def get_group(self, group_id: str) -> Group | None:
        data = await self.get(group_id, "group")
        return Group.model_validate(data) if data else None

    async def put_expenses(self, group_id: str, expenses: list) -> None:
        await self.put(
            group_id, "expenses", [entry.model_dump(mode="json") for entry in expenses]
        )

    async def get_expenses(self, group_id: str) -> list:
        data = await self.get(group_id, "expenses")
        return [ledger_entry_adapter.validate_python(item) for item in data]

    async def put_balances(self, group_id: str, balances: list[Balance]) -> None:
        await self.put(
            group_id, "balances", [b.model_dump(mode="json") for b in balances]
        )

    async def get_balances(self, group_id: str) -> list[Balance]:
        data = await self.get(group_id, "balances")
        return [Balance.model_validate(item) for item in data]
