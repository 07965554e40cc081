"""Offline-aware ledger access.

Reads try the server first and fall back to the local cache. Queueable writes
try the server first; if it cannot be reached they are queued for replay and
projected into the cache right away so the change is visible offline.
"""

import asyncio
import logging
from datetime import date
from typing import Any

from .cache import LocalCacheStore
from .clients.ledger import LedgerClient
from .exceptions import (
    LedgerAPIError,
    NetworkUnavailableError,
    OfflineUnavailableError,
    PendingRecordError,
)
from .models import (
    Balance,
    EntryDraft,
    Group,
    GroupCreated,
    Member,
    is_pending,
    make_temp_id,
    record_from_draft,
)
from .mutation_queue import MutationQueue
from .registry import GroupRegistry

logger = logging.getLogger(__name__)


def ensure_confirmed(*record_ids: str | None) -> None:
    """Refuse to build on records the server has not confirmed yet."""
    for record_id in record_ids:
        if record_id and is_pending(record_id):
            raise PendingRecordError(record_id)


class OfflineLedger:
    """Ledger operations that keep working without connectivity."""

    def __init__(
        self,
        client: LedgerClient,
        cache: LocalCacheStore,
        queue: MutationQueue,
        registry: GroupRegistry,
    ):
        self.client = client
        self.cache = cache
        self.queue = queue
        self.registry = registry

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_group(self, token: str, group_id: str | None = None) -> Group | None:
        """Get a group, from the server if possible, else from the cache."""
        try:
            group = await self.client.get_group(token)
        except LedgerAPIError as e:
            logger.info(f"Serving cached group: {e}")
            if group_id is None:
                stored = await self.registry.find_by_token(token)
                group_id = stored.id if stored else None
            return await self.cache.get_group(group_id) if group_id else None

        await self.cache.put_group(group)
        return group

    async def get_expenses(self, token: str, group_id: str) -> list:
        """Get ledger entries, from the server if possible, else from the cache."""
        try:
            expenses = await self.client.get_expenses(token)
        except LedgerAPIError as e:
            logger.info(f"Serving cached expenses for group {group_id}: {e}")
            return await self.cache.get_expenses(group_id)

        await self.cache.put_expenses(group_id, expenses)
        return expenses

    async def get_balances(self, token: str, group_id: str) -> list[Balance]:
        """Get balances, from the server if possible, else from the cache."""
        try:
            balances = await self.client.get_balances(token)
        except LedgerAPIError as e:
            logger.info(f"Serving cached balances for group {group_id}: {e}")
            return await self.cache.get_balances(group_id)

        await self.cache.put_balances(group_id, balances)
        return balances

    async def refresh_group(self, token: str) -> Group:
        """Fetch a group with its expenses and balances and overwrite the cache.

        Raises LedgerAPIError if any of the three fetches fails.
        """
        group = await self.client.get_group(token)
        expenses = await self.client.get_expenses(token)
        balances = await self.client.get_balances(token)
        await self.cache.put_group(group)
        await self.cache.put_expenses(group.id, expenses)
        await self.cache.put_balances(group.id, balances)
        return group

    async def prefetch_all_groups(self) -> int:
        """Refresh the cache for every registered group.

        Returns:
            Number of groups refreshed
        """
        stored = await self.registry.list_groups()
        results = await asyncio.gather(
            *(self.refresh_group(sg.token) for sg in stored), return_exceptions=True
        )
        refreshed = 0
        for sg, result in zip(stored, results):
            if isinstance(result, LedgerAPIError):
                logger.info(f"Could not prefetch group {sg.name}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                refreshed += 1
        return refreshed

    # ========================================================================
    # Online-only operations
    # ========================================================================

    async def create_group(
        self, name: str, member_names: list[str], currency: str | None = None
    ) -> GroupCreated:
        """Create a group. Needs the server, which issues the token."""
        created = await self.client.create_group(name, member_names, currency)
        await self.registry.save_group(created.group.id, created.group.name, created.token)
        await self.cache.put_group(created.group)
        return created

    async def join_group(self, token: str) -> Group:
        """Register a group by token and cache its data."""
        group = await self.refresh_group(token)
        await self.registry.save_group(group.id, group.name, token)
        return group

    # ========================================================================
    # Queueable writes
    # ========================================================================

    async def _attempt(self, group_id: str, call) -> tuple[bool, Any]:
        """
        Run a remote write unless it must wait behind queued mutations.

        Returns:
            (True, result) if the server confirmed the write, (False, None) if
            it has to be queued. RemoteRejectedError propagates.
        """
        if await self.queue.has_pending(group_id):
            # Preserve ordering behind earlier offline writes
            logger.debug(f"Group {group_id} has pending mutations, queueing write")
            return False, None
        try:
            return True, await call()
        except NetworkUnavailableError as e:
            logger.info(f"Ledger unreachable, queueing write: {e}")
            return False, None

    async def create_expense(self, token: str, group_id: str, draft: EntryDraft):
        """Record a ledger entry; offline it gets a temporary id."""
        ensure_confirmed(*draft.member_ids())

        done, entry = await self._attempt(
            group_id, lambda: self.client.create_expense(token, draft)
        )
        if done:
            return entry

        await self.queue.enqueue(
            group_id, token, "createExpense", {"entry": draft.model_dump(mode="json")}
        )
        if draft.expense_date is None:
            draft = draft.model_copy(update={"expense_date": date.today()})
        temp = record_from_draft(draft, make_temp_id(), group_id)
        cached = await self.cache.get_expenses(group_id)
        await self.cache.put_expenses(group_id, [temp, *cached])
        return temp

    async def update_expense(
        self, token: str, group_id: str, expense_id: str, draft: EntryDraft
    ):
        """Replace a ledger entry."""
        ensure_confirmed(expense_id, *draft.member_ids())

        done, entry = await self._attempt(
            group_id, lambda: self.client.update_expense(token, expense_id, draft)
        )
        if done:
            return entry

        await self.queue.enqueue(
            group_id,
            token,
            "updateExpense",
            {"expense_id": expense_id, "entry": draft.model_dump(mode="json")},
        )
        cached = await self.cache.get_expenses(group_id)
        original = next((e for e in cached if e.id == expense_id), None)
        if draft.expense_date is None:
            draft = draft.model_copy(update={"expense_date": date.today()})
        updated = record_from_draft(
            draft,
            expense_id,
            group_id,
            created_at=original.created_at if original else None,
        )
        await self.cache.put_expenses(
            group_id, [updated if e.id == expense_id else e for e in cached]
        )
        return updated

    async def delete_expense(self, token: str, group_id: str, expense_id: str) -> None:
        """Delete a ledger entry."""
        ensure_confirmed(expense_id)

        done, _ = await self._attempt(
            group_id, lambda: self.client.delete_expense(token, expense_id)
        )
        if done:
            return

        await self.queue.enqueue(group_id, token, "deleteExpense", {"expense_id": expense_id})
        cached = await self.cache.get_expenses(group_id)
        await self.cache.put_expenses(
            group_id, [e for e in cached if e.id != expense_id]
        )

    async def add_member(self, token: str, group_id: str, name: str) -> Group:
        """Add a member; offline the member gets a temporary id."""
        done, group = await self._attempt(
            group_id, lambda: self.client.add_member(token, name)
        )
        if done:
            await self.cache.put_group(group)
            return group

        cached = await self.cache.get_group(group_id)
        if cached is None:
            raise OfflineUnavailableError(
                f"Offline and no cached data for group {group_id}"
            )

        await self.queue.enqueue(group_id, token, "addMember", {"name": name})
        temp_member = Member(id=make_temp_id(), name=name)
        updated = cached.model_copy(update={"members": [*cached.members, temp_member]})
        await self.cache.put_group(updated)
        return updated

    async def update_member_payment(
        self,
        token: str,
        group_id: str,
        member_id: str,
        paypal_email: str | None,
        iban: str | None,
    ) -> Member:
        """Update a member's payment details."""
        ensure_confirmed(member_id)

        done, member = await self._attempt(
            group_id,
            lambda: self.client.update_member_payment(token, member_id, paypal_email, iban),
        )
        if done:
            return member

        await self.queue.enqueue(
            group_id,
            token,
            "updatePayment",
            {"member_id": member_id, "paypal_email": paypal_email, "iban": iban},
        )
        cached = await self.cache.get_group(group_id)
        existing = cached.get_member(member_id) if cached else None
        updated_member = (
            existing.model_copy(update={"paypal_email": paypal_email, "iban": iban})
            if existing
            else Member(id=member_id, name="", paypal_email=paypal_email, iban=iban)
        )
        if cached:
            await self.cache.put_group(
                cached.model_copy(
                    update={
                        "members": [
                            updated_member if m.id == member_id else m
                            for m in cached.members
                        ]
                    }
                )
            )
        return updated_member

