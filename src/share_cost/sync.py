"""Replays queued writes once connectivity returns and reconciles the cache."""

import logging
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel

from .exceptions import (
    LedgerAPIError,
    NetworkUnavailableError,
    RemoteRejectedError,
    ReplayRejectedError,
)
from .models import QueuedMutation, entry_draft_adapter
from .offline import OfflineLedger

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Coordinator state."""

    IDLE = "idle"
    SYNCING = "syncing"


class SyncStatus(BaseModel):
    """Snapshot of what the presentation layer shows about syncing."""

    is_online: bool
    pending_count: int
    syncing: bool
    sync_version: int
    last_rejection: str | None = None


StatusListener = Callable[[SyncStatus], None]


class SyncCoordinator:
    """
    Drains the mutation queue against the ledger service.

    Only one replay pass runs at a time; a trigger that arrives while a pass is
    in flight is dropped. Mutations are replayed strictly in queue order and
    the pass stops at the first failure, leaving the rest queued: later
    entries may depend on the failed one (an update queued after its create).
    """

    def __init__(self, ledger: OfflineLedger, online: bool = True):
        """Initialize the coordinator around an offline ledger."""
        self.ledger = ledger
        self.queue = ledger.queue
        self._online = online
        self._state = SyncState.IDLE
        self._pending_count = 0
        self._sync_version = 0
        self._listeners: list[StatusListener] = []
        self.last_rejection: ReplayRejectedError | None = None

        self.queue.subscribe(self._on_pending_changed)

    # ========================================================================
    # Observable state
    # ========================================================================

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def pending_count(self) -> int:
        return self._pending_count

    @property
    def syncing(self) -> bool:
        return self._state is SyncState.SYNCING

    @property
    def sync_version(self) -> int:
        """Bumped after every pass that confirmed at least one mutation."""
        return self._sync_version

    @property
    def state(self) -> SyncState:
        return self._state

    def status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self._online,
            pending_count=self._pending_count,
            syncing=self.syncing,
            sync_version=self._sync_version,
            last_rejection=str(self.last_rejection) if self.last_rejection else None,
        )

    def subscribe(self, listener: StatusListener) -> None:
        """Call listener with a fresh status after every change."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        status = self.status()
        for listener in self._listeners:
            listener(status)

    def _on_pending_changed(self, count: int) -> None:
        self._pending_count = count
        self._notify()

    # ========================================================================
    # Triggers
    # ========================================================================

    async def start(self) -> None:
        """Load the pending count from the durable queue."""
        self._pending_count = await self.queue.count()
        self._notify()

    async def set_online(self, online: bool) -> None:
        """Handle a platform connectivity event."""
        was_online = self._online
        self._online = online
        if online != was_online:
            logger.info("Connectivity restored" if online else "Connectivity lost")
            self._notify()
        if online:
            await self.trigger_sync()

    async def check_connectivity(self) -> bool:
        """Probe the ledger service and treat the result as a connectivity event."""
        online = await self.ledger.client.health()
        await self.set_online(online)
        return online

    async def trigger_sync(self) -> bool:
        """
        Run a replay pass unless one is already running or we are offline.

        Returns:
            True if a pass ran, False if the trigger was dropped
        """
        if self._state is SyncState.SYNCING or not self._online:
            return False

        # No suspension point before this assignment, so a concurrent trigger
        # always sees SYNCING.
        self._state = SyncState.SYNCING
        self._notify()
        try:
            await self._run_pass()
        finally:
            self._state = SyncState.IDLE
            self._pending_count = await self.queue.count()
            self._notify()
        return True

    async def discard(self, mutation_id: int) -> None:
        """Drop a queued mutation by hand, e.g. one the server keeps rejecting."""
        logger.warning(f"Discarding queued mutation #{mutation_id}")
        await self.queue.remove(mutation_id)
        if self.last_rejection and self.last_rejection.mutation_id == mutation_id:
            self.last_rejection = None
            self._notify()

    # ========================================================================
    # Replay
    # ========================================================================

    async def _replay(self, mutation: QueuedMutation) -> None:
        """Invoke the remote write matching the mutation's action kind."""
        client = self.ledger.client
        token = mutation.auth_token
        payload = mutation.payload

        if mutation.action_kind == "createExpense":
            await client.create_expense(
                token, entry_draft_adapter.validate_python(payload["entry"])
            )
        elif mutation.action_kind == "updateExpense":
            await client.update_expense(
                token,
                payload["expense_id"],
                entry_draft_adapter.validate_python(payload["entry"]),
            )
        elif mutation.action_kind == "deleteExpense":
            await client.delete_expense(token, payload["expense_id"])
        elif mutation.action_kind == "addMember":
            await client.add_member(token, payload["name"])
        elif mutation.action_kind == "updatePayment":
            await client.update_member_payment(
                token, payload["member_id"], payload.get("paypal_email"), payload.get("iban")
            )
        else:
            raise ValueError(f"Unknown action kind: {mutation.action_kind}")

    async def _run_pass(self) -> None:
        mutations = await self.queue.list_pending()
        if mutations:
            logger.info(f"Replaying {len(mutations)} queued mutations")

        # group_id -> token, in first-touched order
        touched: dict[str, str] = {}

        for mutation in mutations:
            try:
                await self._replay(mutation)
            except NetworkUnavailableError as e:
                logger.warning(
                    f"Sync failed for {mutation.action_kind} "
                    f"(#{mutation.id}), will retry later: {e}"
                )
                break
            except RemoteRejectedError as e:
                self.last_rejection = ReplayRejectedError(
                    mutation.id, mutation.action_kind, e
                )
                logger.error(str(self.last_rejection))
                break
            except Exception as e:
                # Unreadable payloads or unknown kinds halt the pass too
                logger.exception(
                    f"Unexpected error replaying {mutation.action_kind} "
                    f"(#{mutation.id}), keeping it queued: {e}"
                )
                break

            await self.queue.remove(mutation.id)
            touched.setdefault(mutation.group_id, mutation.auth_token)
            if self.last_rejection and self.last_rejection.mutation_id == mutation.id:
                self.last_rejection = None

        for group_id, token in touched.items():
            try:
                await self.ledger.refresh_group(token)
            except LedgerAPIError as e:
                logger.warning(f"Could not refresh group {group_id} after sync: {e}")

        if touched:
            self._sync_version += 1
            logger.info(
                f"Sync complete for {len(touched)} group(s), version {self._sync_version}"
            )
