"""Groups joined on this device, with their tokens and the local user's identity."""

import logging
from datetime import UTC, datetime

from .db import Storage
from .models import StoredGroup

logger = logging.getLogger(__name__)

REGISTRY_NAMESPACE = "groups"


class GroupRegistry:
    """Persistent list of joined groups, most recently accessed first."""

    def __init__(self, storage: Storage):
        self.storage = storage

    async def list_groups(self) -> list[StoredGroup]:
        groups = [
            StoredGroup.model_validate(value)
            for _, value in await self.storage.list(REGISTRY_NAMESPACE)
        ]
        groups.sort(key=lambda g: g.last_accessed, reverse=True)
        return groups

    async def get(self, group_id: str) -> StoredGroup | None:
        data = await self.storage.get(REGISTRY_NAMESPACE, group_id)
        return StoredGroup.model_validate(data) if data else None

    async def find_by_token(self, token: str) -> StoredGroup | None:
        for group in await self.list_groups():
            if group.token == token:
                return group
        return None

    async def save_group(self, group_id: str, name: str, token: str) -> StoredGroup:
        """
        Register a group or refresh its name, token and access time.

        An existing member selection is preserved.
        """
        existing = await self.get(group_id)
        now = datetime.now(UTC)
        if existing:
            stored = existing.model_copy(
                update={"name": name, "token": token, "last_accessed": now}
            )
        else:
            stored = StoredGroup(id=group_id, name=name, token=token, last_accessed=now)
            logger.info(f"Registered group {name} ({group_id})")

        await self.storage.put(
            REGISTRY_NAMESPACE, group_id, stored.model_dump(mode="json")
        )
        return stored

    async def remove(self, group_id: str) -> None:
        await self.storage.delete(REGISTRY_NAMESPACE, group_id)

    async def set_selected_member(
        self, group_id: str, member_id: str, member_name: str
    ) -> StoredGroup | None:
        """Record which member the local user is in a group."""
        stored = await self.get(group_id)
        if not stored:
            return None
        stored = stored.model_copy(
            update={"selected_member_id": member_id, "selected_member_name": member_name}
        )
        await self.storage.put(
            REGISTRY_NAMESPACE, group_id, stored.model_dump(mode="json")
        )
        return stored
