"""Ledger service API client."""

import logging
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar

import httpx

from ..exceptions import NetworkUnavailableError, RemoteRejectedError
from ..models import (
    Balance,
    EntryDraft,
    Group,
    GroupCreated,
    Member,
    ledger_entry_adapter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LedgerClient:
    """Async client for the share-cost ledger REST API.

    Every group-scoped call is authorized by the group's bearer token. Failures
    are classified: anything that means "could not reach the service" raises
    NetworkUnavailableError, an explicit refusal raises RemoteRejectedError.
    """

    DEFAULT_BASE_URL = "http://localhost:8000/api"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the ledger client."""
        self.base_url = base_url
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and classify the outcome."""
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            response = await self.client.request(method, path, headers=headers, json=json)
        except httpx.TransportError as e:
            logger.debug(f"{method} {path} failed: {e!r}")
            raise NetworkUnavailableError(f"{method} {path}: {e}") from e

        if response.status_code >= 500:
            raise NetworkUnavailableError(
                f"{method} {path}: server error {response.status_code}"
            )
        if response.status_code >= 400:
            raise RemoteRejectedError(response.status_code, response.text.strip())
        return response

    async def _call(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        token: str | None = None,
        json: dict[str, Any] | None = None,
    ) -> T:
        """
        Send a request and parse its JSON body.

        A 2xx body that is not the service's JSON (a captive portal or proxy
        page, a truncated payload) means the service was not really reached,
        so it is classified like a transport failure.
        """
        response = await self._request(method, path, token, json)
        try:
            return parse(response.json())
        except (ValueError, KeyError, TypeError, ArithmeticError) as e:
            logger.debug(f"{method} {path} returned an unreadable body: {e!r}")
            raise NetworkUnavailableError(
                f"{method} {path}: unexpected response body ({type(e).__name__})"
            ) from e

    # ========================================================================
    # Parsing
    # ========================================================================

    @staticmethod
    def _parse_member(data: dict[str, Any]) -> Member:
        return Member(
            id=str(data["id"]),
            name=data["name"],
            paypal_email=data.get("paypal_email"),
            iban=data.get("iban"),
        )

    @classmethod
    def _parse_group(cls, data: dict[str, Any]) -> Group:
        return Group(
            id=str(data["id"]),
            name=data["name"],
            members=[cls._parse_member(m) for m in data.get("members", [])],
            currency=data.get("currency", "EUR"),
            created_at=data.get("created_at"),
        )

    @staticmethod
    def _parse_entry(data: dict[str, Any]):
        return ledger_entry_adapter.validate_python(
            {
                **data,
                "amount": Decimal(str(data["amount"])),
                "exchange_rate": Decimal(str(data.get("exchange_rate", 1))),
            }
        )

    @staticmethod
    def _parse_balance(data: dict[str, Any]) -> Balance:
        return Balance(
            member_id=str(data["user_id"]),
            member_name=data["user_name"],
            net=Decimal(str(data["balance"])),
        )

    # ========================================================================
    # Service
    # ========================================================================

    async def health(self) -> bool:
        """Check whether the service is reachable."""
        try:
            await self._request("GET", "/health")
        except (NetworkUnavailableError, RemoteRejectedError):
            return False
        return True

    # ========================================================================
    # Groups & members
    # ========================================================================

    async def create_group(
        self, name: str, member_names: list[str], currency: str | None = None
    ) -> GroupCreated:
        """Create a group; the response carries its bearer token."""
        body: dict[str, Any] = {"name": name, "member_names": member_names}
        if currency:
            body["currency"] = currency
        return await self._call(
            "POST",
            "/groups",
            lambda data: GroupCreated(
                group=self._parse_group(data["group"]), token=data["token"]
            ),
            json=body,
        )

    async def get_group(self, token: str) -> Group:
        """Get the group the token belongs to."""
        return await self._call("GET", "/groups/current", self._parse_group, token)

    async def add_member(self, token: str, name: str) -> Group:
        """Add a member; returns the updated group."""
        return await self._call(
            "POST", "/groups/current/members", self._parse_group, token, json={"name": name}
        )

    async def update_member_payment(
        self,
        token: str,
        member_id: str,
        paypal_email: str | None,
        iban: str | None,
    ) -> Member:
        """Update a member's payment details."""
        return await self._call(
            "PUT",
            f"/groups/current/members/{member_id}/payment",
            self._parse_member,
            token,
            json={"paypal_email": paypal_email or None, "iban": iban or None},
        )

    # ========================================================================
    # Expenses
    # ========================================================================

    async def get_expenses(self, token: str) -> list:
        """Get all ledger entries of the group."""
        return await self._call(
            "GET",
            "/groups/current/expenses",
            lambda data: [self._parse_entry(item) for item in data],
            token,
        )

    async def create_expense(self, token: str, draft: EntryDraft):
        """Record a new ledger entry; returns it with its server id."""
        return await self._call(
            "POST", "/groups/current/expenses", self._parse_entry, token, json=draft.to_wire()
        )

    async def update_expense(self, token: str, expense_id: str, draft: EntryDraft):
        """Replace a ledger entry."""
        return await self._call(
            "PUT",
            f"/groups/current/expenses/{expense_id}",
            self._parse_entry,
            token,
            json=draft.to_wire(),
        )

    async def delete_expense(self, token: str, expense_id: str) -> None:
        """Delete a ledger entry."""
        await self._request("DELETE", f"/groups/current/expenses/{expense_id}", token)

    # ========================================================================
    # Balances
    # ========================================================================

    async def get_balances(self, token: str) -> list[Balance]:
        """Get the net balance of every member."""
        return await self._call(
            "GET",
            "/groups/current/balances",
            lambda data: [self._parse_balance(item) for item in data],
            token,
        )
