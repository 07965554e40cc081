"""Shared fixtures: an in-memory ledger service behind httpx.MockTransport."""

import json
import uuid
from datetime import UTC, date, datetime

import httpx
import pytest

from share_cost.cache import LocalCacheStore
from share_cost.clients.ledger import LedgerClient
from share_cost.db import MemoryDatabase
from share_cost.mutation_queue import MutationQueue
from share_cost.offline import OfflineLedger
from share_cost.registry import GroupRegistry
from share_cost.sync import SyncCoordinator

BASE_URL = "http://ledger.test/api"


class FakeLedgerServer:
    """Minimal stand-in for the remote ledger service."""

    def __init__(self):
        self.online = True
        self.reject_status: int | None = None  # answer every call with this status
        self.reject_once_status: int | None = None  # answer the next call with this
        self.captive_portal = False  # answer everything with a 200 HTML page
        self.groups: dict[str, dict] = {}  # token -> group
        self.expenses: dict[str, list[dict]] = {}  # token -> expenses
        self.requests: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def add_group(self, token: str, name: str, member_names: list[str]) -> dict:
        group = {
            "id": str(uuid.uuid4()),
            "name": name,
            "currency": "EUR",
            "created_at": datetime(2024, 1, 1, tzinfo=UTC).isoformat(),
            "members": [
                {"id": str(uuid.uuid4()), "name": n, "paypal_email": None, "iban": None}
                for n in member_names
            ],
        }
        self.groups[token] = group
        self.expenses[token] = []
        return group

    def member_id(self, token: str, name: str) -> str:
        for member in self.groups[token]["members"]:
            if member["name"] == name:
                return member["id"]
        raise KeyError(name)

    def write_requests(self) -> list[tuple[str, str]]:
        return [r for r in self.requests if r[0] != "GET"]

    # ------------------------------------------------------------------
    # Ledger semantics
    # ------------------------------------------------------------------

    def _balances(self, token: str) -> list[dict]:
        group = self.groups[token]
        nets = {m["id"]: 0.0 for m in group["members"]}
        for exp in self.expenses[token]:
            amount = exp["amount"]
            if exp["expense_type"] == "transfer":
                nets[exp["paid_by"]] += amount
                nets[exp["transfer_to"]] -= amount
            elif exp["expense_type"] == "income":
                share = amount / len(exp["split_between"])
                nets[exp["paid_by"]] -= amount
                for member_id in exp["split_between"]:
                    nets[member_id] += share
            else:
                share = amount / len(exp["split_between"])
                nets[exp["paid_by"]] += amount
                for member_id in exp["split_between"]:
                    nets[member_id] -= share
        return [
            {"user_id": m["id"], "user_name": m["name"], "balance": round(nets[m["id"]], 2)}
            for m in group["members"]
        ]

    def _record(self, token: str, body: dict, expense_id: str | None = None) -> dict:
        return {
            "id": expense_id or str(uuid.uuid4()),
            "group_id": self.groups[token]["id"],
            "description": body["description"],
            "amount": body["amount"],
            "paid_by": body["paid_by"],
            "split_between": body.get("split_between", []),
            "expense_type": body.get("expense_type", "expense"),
            "transfer_to": body.get("transfer_to"),
            "expense_date": body.get("expense_date") or date(2024, 1, 2).isoformat(),
            "currency": body.get("currency", "EUR"),
            "exchange_rate": body.get("exchange_rate", 1.0),
            "created_at": datetime(2024, 1, 2, tzinfo=UTC).isoformat(),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        if not self.online:
            raise httpx.ConnectError("network unreachable", request=request)
        if self.captive_portal:
            return httpx.Response(200, text="<html>Sign in to the hotel Wi-Fi</html>")

        path = request.url.path.removeprefix("/api")
        self.requests.append((request.method, path))

        if self.reject_once_status:
            status, self.reject_once_status = self.reject_once_status, None
            return httpx.Response(status, text="rejected")
        if self.reject_status:
            return httpx.Response(self.reject_status, text="rejected")

        if path == "/health":
            return httpx.Response(200, text="OK")

        if path == "/groups" and request.method == "POST":
            body = json.loads(request.content)
            token = f"token-{len(self.groups) + 1}"
            group = self.add_group(token, body["name"], body["member_names"])
            return httpx.Response(201, json={"group": group, "token": token})

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in self.groups:
            return httpx.Response(401, text="invalid token")
        group = self.groups[token]
        body = json.loads(request.content) if request.content else {}

        if path == "/groups/current" and request.method == "GET":
            return httpx.Response(200, json=group)

        if path == "/groups/current/members" and request.method == "POST":
            group["members"].append(
                {"id": str(uuid.uuid4()), "name": body["name"], "paypal_email": None, "iban": None}
            )
            return httpx.Response(200, json=group)

        if path.startswith("/groups/current/members/") and request.method == "PUT":
            member_id = path.split("/")[4]
            for member in group["members"]:
                if member["id"] == member_id:
                    member.update(paypal_email=body["paypal_email"], iban=body["iban"])
                    return httpx.Response(200, json=member)
            return httpx.Response(404, text="member not found")

        if path == "/groups/current/expenses":
            if request.method == "GET":
                return httpx.Response(200, json=list(reversed(self.expenses[token])))
            record = self._record(token, body)
            self.expenses[token].append(record)
            return httpx.Response(201, json=record)

        if path.startswith("/groups/current/expenses/"):
            expense_id = path.rsplit("/", 1)[1]
            existing = [e for e in self.expenses[token] if e["id"] == expense_id]
            if not existing:
                return httpx.Response(404, text="expense not found")
            if request.method == "DELETE":
                self.expenses[token].remove(existing[0])
                return httpx.Response(204)
            record = self._record(token, body, expense_id)
            index = self.expenses[token].index(existing[0])
            self.expenses[token][index] = record
            return httpx.Response(200, json=record)

        if path == "/groups/current/balances":
            return httpx.Response(200, json=self._balances(token))

        return httpx.Response(404, text="not found")


@pytest.fixture
def server():
    """An in-memory ledger service with one group."""
    fake = FakeLedgerServer()
    fake.add_group("trip-token", "Trip", ["Alice Smith", "Bob Jones", "Carol White"])
    return fake


@pytest.fixture
def storage():
    """In-memory storage backend."""
    db = MemoryDatabase()
    yield db
    db.close()


@pytest.fixture
def client(server):
    """Ledger client wired to the fake server."""
    return LedgerClient(BASE_URL, transport=httpx.MockTransport(server.handler))


@pytest.fixture
def ledger(client, storage):
    """Offline ledger over the fake server and in-memory storage."""
    return OfflineLedger(
        client,
        LocalCacheStore(storage),
        MutationQueue(storage),
        GroupRegistry(storage),
    )


@pytest.fixture
def coordinator(ledger):
    """Sync coordinator around the offline ledger."""
    return SyncCoordinator(ledger)
