"""Durable, ordered log of writes not yet confirmed by the ledger service."""

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .db import Storage
from .models import ActionKind, QueuedMutation

logger = logging.getLogger(__name__)

QUEUE_NAMESPACE = "mutation_queue"
META_NAMESPACE = "mutation_queue_meta"
_SEQUENCE_KEY = "last_id"

PendingListener = Callable[[int], None]


class MutationQueue:
    """Append-only queue of QueuedMutation entries.

    Entries are never modified after creation; they are only appended and
    removed by id. Ids increase monotonically, also across restarts, so
    insertion order is id order.
    """

    def __init__(self, storage: Storage):
        """Initialize the queue on top of a storage backend."""
        self.storage = storage
        self._id_lock = asyncio.Lock()
        self._listeners: list[PendingListener] = []

    def subscribe(self, listener: PendingListener) -> None:
        """Call listener with the pending count after every enqueue/remove."""
        self._listeners.append(listener)

    async def _notify(self) -> None:
        if not self._listeners:
            return
        count = await self.count()
        for listener in self._listeners:
            listener(count)

    async def _next_id(self) -> int:
        # Caller holds _id_lock: read and write of the sequence must not interleave
        last_id = await self.storage.get(META_NAMESPACE, _SEQUENCE_KEY)
        if last_id is None:
            existing = [int(key) for key, _ in await self.storage.list(QUEUE_NAMESPACE)]
            last_id = max(existing, default=0)
        next_id = int(last_id) + 1
        await self.storage.put(META_NAMESPACE, _SEQUENCE_KEY, next_id)
        return next_id

    async def enqueue(
        self,
        group_id: str,
        auth_token: str,
        action_kind: ActionKind,
        payload: dict[str, Any],
    ) -> QueuedMutation:
        """Append a mutation. Touches local storage only, never the network."""
        async with self._id_lock:
            mutation = QueuedMutation(
                id=await self._next_id(),
                timestamp=datetime.now(UTC),
                group_id=group_id,
                auth_token=auth_token,
                action_kind=action_kind,
                payload=payload,
            )
            await self.storage.put(
                QUEUE_NAMESPACE, str(mutation.id), mutation.model_dump(mode="json")
            )

        logger.info(
            f"Queued {action_kind} for group {group_id} (mutation #{mutation.id})"
        )
        await self._notify()
        return mutation

    async def list_pending(self) -> list[QueuedMutation]:
        """All queued mutations in insertion order."""
        mutations = [
            QueuedMutation.model_validate(value)
            for _, value in await self.storage.list(QUEUE_NAMESPACE)
        ]
        mutations.sort(key=lambda m: m.id)
        return mutations

    async def remove(self, mutation_id: int) -> None:
        """Delete exactly one mutation."""
        await self.storage.delete(QUEUE_NAMESPACE, str(mutation_id))
        logger.debug(f"Removed mutation #{mutation_id}")
        await self._notify()

    async def count(self) -> int:
        """Number of pending mutations."""
        return len(await self.storage.list(QUEUE_NAMESPACE))

    async def has_pending(self, group_id: str) -> bool:
        """Whether any mutation for the group is still waiting."""
        return any(m.group_id == group_id for m in await self.list_pending())
