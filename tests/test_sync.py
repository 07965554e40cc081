"""Tests for the sync coordinator."""

import asyncio
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from share_cost.cache import LocalCacheStore
from share_cost.clients.ledger import LedgerClient
from share_cost.models import SharedExpenseDraft, is_pending
from share_cost.mutation_queue import MutationQueue
from share_cost.offline import OfflineLedger
from share_cost.registry import GroupRegistry
from share_cost.sync import SyncCoordinator, SyncState

TOKEN = "trip-token"


@pytest.fixture
def group_id(server):
    return server.groups[TOKEN]["id"]


@pytest.fixture
def draft(server):
    alice = server.member_id(TOKEN, "Alice Smith")
    bob = server.member_id(TOKEN, "Bob Jones")
    return SharedExpenseDraft(
        description="Groceries",
        amount=Decimal("30.00"),
        paid_by=alice,
        split_between=[alice, bob],
    )


def ledger_with_handler(storage, handler) -> OfflineLedger:
    """An offline ledger whose HTTP traffic goes through handler."""
    client = LedgerClient("http://ledger.test/api", transport=httpx.MockTransport(handler))
    return OfflineLedger(
        client, LocalCacheStore(storage), MutationQueue(storage), GroupRegistry(storage)
    )


class TestReplay:
    """Draining the queue once connectivity returns."""

    def test_offline_write_syncs_when_back_online(
        self, coordinator, ledger, server, group_id, draft
    ):
        async def scenario():
            await coordinator.set_online(False)
            server.online = False
            temp = await ledger.create_expense(TOKEN, group_id, draft)
            queued = coordinator.pending_count

            server.online = True
            await coordinator.set_online(True)
            return temp, queued, await ledger.cache.get_expenses(group_id)

        temp, queued, cached = asyncio.run(scenario())

        assert queued == 1
        assert coordinator.pending_count == 0
        assert coordinator.sync_version == 1
        assert len(server.expenses[TOKEN]) == 1
        [entry] = cached
        assert not is_pending(entry)
        assert entry.id != temp.id
        assert entry.description == "Groceries"

    def test_network_failure_halts_the_pass(
        self, coordinator, ledger, server, group_id, draft
    ):
        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            server.reject_once_status = 503
            return await coordinator.trigger_sync()

        ran = asyncio.run(scenario())

        assert ran is True
        assert coordinator.pending_count == 2
        assert server.write_requests() == [("POST", "/groups/current/expenses")]
        assert coordinator.sync_version == 0
        assert coordinator.last_rejection is None

    def test_rejection_is_kept_until_discarded(
        self, coordinator, ledger, server, group_id, draft
    ):
        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            server.reject_once_status = 422
            await coordinator.trigger_sync()
            rejection = coordinator.last_rejection
            pending_after_rejection = coordinator.pending_count

            await coordinator.discard(rejection.mutation_id)
            await coordinator.trigger_sync()
            return rejection, pending_after_rejection

        rejection, pending_after_rejection = asyncio.run(scenario())

        assert rejection.action_kind == "createExpense"
        assert rejection.cause.status_code == 422
        assert pending_after_rejection == 2
        assert coordinator.last_rejection is None
        assert coordinator.pending_count == 0
        assert len(server.expenses[TOKEN]) == 1

    def test_replays_across_groups_in_queue_order(
        self, coordinator, ledger, server, group_id, draft
    ):
        server.add_group("flat-token", "Flat", ["Dan", "Eve"])
        flat_id = server.groups["flat-token"]["id"]

        async def scenario():
            await ledger.get_group("flat-token")
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            await ledger.add_member("flat-token", flat_id, "Frank")
            server.online = True
            await coordinator.trigger_sync()
            return await ledger.cache.get_group(flat_id)

        flat = asyncio.run(scenario())

        assert server.write_requests() == [
            ("POST", "/groups/current/expenses"),
            ("POST", "/groups/current/members"),
        ]
        assert coordinator.sync_version == 1
        assert not any(is_pending(m) for m in flat.members)
        assert [m.name for m in flat.members] == ["Dan", "Eve", "Frank"]

    def test_refresh_failure_does_not_fail_the_pass(self, storage, server, group_id, draft):
        def handler(request):
            if request.method == "GET" and server.online:
                return httpx.Response(500, text="read replica down")
            return server.handler(request)

        ledger = ledger_with_handler(storage, handler)
        coordinator = SyncCoordinator(ledger)

        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            await coordinator.trigger_sync()

        asyncio.run(scenario())

        assert coordinator.pending_count == 0
        assert coordinator.sync_version == 1
        assert len(server.expenses[TOKEN]) == 1

    def test_unreadable_reply_mid_pass_still_reconciles(
        self, storage, server, group_id, draft
    ):
        posts = []

        def handler(request):
            if request.method == "POST" and server.online:
                posts.append(request)
                if len(posts) == 2:
                    return httpx.Response(200, text="<html>Sign in to continue</html>")
            return server.handler(request)

        ledger = ledger_with_handler(storage, handler)
        coordinator = SyncCoordinator(ledger)

        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            ran = await coordinator.trigger_sync()
            return ran, await ledger.cache.get_expenses(group_id)

        ran, cached = asyncio.run(scenario())

        assert ran is True
        assert coordinator.pending_count == 1
        assert coordinator.sync_version == 1
        assert coordinator.state is SyncState.IDLE
        assert len(cached) == 1
        assert not is_pending(cached[0])

    def test_malformed_queued_payload_halts_without_raising(
        self, coordinator, ledger, server, group_id, draft
    ):
        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            await ledger.queue.enqueue(
                group_id, TOKEN, "createExpense", {"entry": {"description": "torn"}}
            )
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            return await coordinator.trigger_sync()

        assert asyncio.run(scenario()) is True
        assert coordinator.pending_count == 2
        assert coordinator.sync_version == 1
        assert len(server.expenses[TOKEN]) == 1

    def test_empty_queue_leaves_version(self, coordinator):
        assert asyncio.run(coordinator.trigger_sync()) is True
        assert coordinator.sync_version == 0


class TestTriggers:
    """When a pass may run."""

    def test_trigger_while_syncing_is_dropped(self, storage, server, group_id, draft):
        async def scenario():
            gate = asyncio.Event()

            async def handler(request):
                await gate.wait()
                return server.handler(request)

            ledger = ledger_with_handler(storage, handler)
            coordinator = SyncCoordinator(ledger)
            await ledger.queue.enqueue(
                group_id, TOKEN, "createExpense", {"entry": draft.model_dump(mode="json")}
            )

            first = asyncio.create_task(coordinator.trigger_sync())
            await asyncio.sleep(0)
            state_during = coordinator.state
            second = await coordinator.trigger_sync()
            gate.set()
            return state_during, second, await first, coordinator

        state_during, second, first, coordinator = asyncio.run(scenario())

        assert state_during is SyncState.SYNCING
        assert second is False
        assert first is True
        assert coordinator.state is SyncState.IDLE
        assert len(server.expenses[TOKEN]) == 1

    def test_trigger_while_offline_is_dropped(
        self, coordinator, ledger, server, group_id, draft
    ):
        async def scenario():
            await coordinator.set_online(False)
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            return await coordinator.trigger_sync()

        assert asyncio.run(scenario()) is False
        assert coordinator.pending_count == 1
        assert server.write_requests() == []

    def test_check_connectivity(self, coordinator, server):
        async def scenario():
            server.online = False
            offline = await coordinator.check_connectivity()
            server.online = True
            online = await coordinator.check_connectivity()
            return offline, online

        assert asyncio.run(scenario()) == (False, True)
        assert coordinator.is_online is True

    def test_start_loads_pending_count(self, storage, ledger, group_id):
        async def scenario():
            await MutationQueue(storage).enqueue(group_id, TOKEN, "addMember", {"name": "Dan"})
            coordinator = SyncCoordinator(ledger, online=False)
            before = coordinator.pending_count
            await coordinator.start()
            return before, coordinator.pending_count

        assert asyncio.run(scenario()) == (0, 1)


class TestStatus:
    """Status notifications for the presentation layer."""

    def test_listeners_see_pass_lifecycle(
        self, coordinator, ledger, server, group_id, draft
    ):
        statuses = []
        coordinator.subscribe(statuses.append)

        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            await coordinator.trigger_sync()

        asyncio.run(scenario())

        assert statuses[0].pending_count == 1
        assert any(s.syncing for s in statuses)
        assert statuses[-1].syncing is False
        assert statuses[-1].pending_count == 0
        assert statuses[-1].sync_version == 1

    def test_status_reports_rejection(self, coordinator, ledger, server, group_id, draft):
        async def scenario():
            server.online = False
            await ledger.create_expense(TOKEN, group_id, draft)
            server.online = True
            server.reject_once_status = 400
            await coordinator.trigger_sync()

        asyncio.run(scenario())

        status = coordinator.status()
        assert status.pending_count == 1
        assert "createExpense" in status.last_rejection

    def test_connectivity_change_notifies(self, coordinator):
        listener = MagicMock()
        coordinator.subscribe(listener)

        asyncio.run(coordinator.set_online(False))

        listener.assert_called_once()
        assert listener.call_args.args[0].is_online is False
