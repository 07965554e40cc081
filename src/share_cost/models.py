"""Pydantic domain models for share-cost."""

import time
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# Records created locally carry this prefix until the server assigns an id.
TEMP_ID_PREFIX = "temp-"


def make_temp_id() -> str:
    """Generate a temporary id for a record created while offline."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"


def is_pending(record_or_id: "str | BaseModel") -> bool:
    """Return True for records created offline that haven't been synced yet."""
    record_id = record_or_id if isinstance(record_or_id, str) else record_or_id.id
    return record_id.startswith(TEMP_ID_PREFIX)


# ============================================================================
# Group Models
# ============================================================================


class Member(BaseModel):
    """A member of a group."""

    id: str
    name: str
    paypal_email: str | None = None
    iban: str | None = None


class Group(BaseModel):
    """A group ledger and its members."""

    id: str
    name: str
    members: list[Member] = Field(default_factory=list)
    currency: str = "EUR"
    created_at: datetime | None = None

    def get_member(self, member_id: str) -> Member | None:
        """Find a member by id."""
        for member in self.members:
            if member.id == member_id:
                return member
        return None


class GroupCreated(BaseModel):
    """Response to group creation: the group plus its bearer token."""

    group: Group
    token: str


class StoredGroup(BaseModel):
    """A group this device has joined.

    selected_member_id is the member the local user identifies as in this
    group; it is what lets identities be carried across ledgers.
    """

    id: str
    name: str
    token: str
    last_accessed: datetime = Field(default_factory=lambda: datetime.now(UTC))
    selected_member_id: str | None = None
    selected_member_name: str | None = None


# ============================================================================
# Ledger Entry Models
# ============================================================================


class _EntryFields(BaseModel):
    """Fields shared by every ledger entry variant."""

    description: str
    amount: Decimal
    paid_by: str
    expense_date: date | None = None
    currency: str = "EUR"
    exchange_rate: Decimal = Decimal("1")

    def member_ids(self) -> list[str]:
        """Ids of every member this entry refers to."""
        return [self.paid_by]

    def to_wire(self) -> dict[str, Any]:
        """Request body for the ledger service."""
        return {
            "description": self.description,
            "amount": float(self.amount),
            "paid_by": self.paid_by,
            "split_between": [],
            "expense_type": getattr(self, "expense_type"),
            "transfer_to": None,
            "expense_date": self.expense_date.isoformat() if self.expense_date else None,
            "currency": self.currency,
            "exchange_rate": float(self.exchange_rate),
        }


class SharedExpenseDraft(_EntryFields):
    """A purchase paid by one member and split between several."""

    expense_type: Literal["expense"] = "expense"
    split_between: list[str]

    def member_ids(self) -> list[str]:
        return [self.paid_by, *self.split_between]

    def to_wire(self) -> dict[str, Any]:
        return {**super().to_wire(), "split_between": list(self.split_between)}


class TransferDraft(_EntryFields):
    """Money handed directly from paid_by to transfer_to."""

    expense_type: Literal["transfer"] = "transfer"
    transfer_to: str

    def member_ids(self) -> list[str]:
        return [self.paid_by, self.transfer_to]

    def to_wire(self) -> dict[str, Any]:
        return {**super().to_wire(), "transfer_to": self.transfer_to}


class IncomeDraft(_EntryFields):
    """External money received by paid_by and owed out to split_between."""

    expense_type: Literal["income"] = "income"
    split_between: list[str]

    def member_ids(self) -> list[str]:
        return [self.paid_by, *self.split_between]

    def to_wire(self) -> dict[str, Any]:
        return {**super().to_wire(), "split_between": list(self.split_between)}


class _RecordFields(BaseModel):
    """Fields the server assigns to a recorded entry."""

    id: str
    group_id: str
    created_at: datetime | None = None


class SharedExpense(SharedExpenseDraft, _RecordFields):
    """A recorded shared expense."""


class Transfer(TransferDraft, _RecordFields):
    """A recorded transfer."""


class Income(IncomeDraft, _RecordFields):
    """A recorded income."""


EntryDraft = Annotated[
    SharedExpenseDraft | TransferDraft | IncomeDraft,
    Field(discriminator="expense_type"),
]
LedgerEntry = Annotated[
    SharedExpense | Transfer | Income,
    Field(discriminator="expense_type"),
]

entry_draft_adapter: TypeAdapter = TypeAdapter(EntryDraft)
ledger_entry_adapter: TypeAdapter = TypeAdapter(LedgerEntry)

_VARIANTS = {
    "expense": (SharedExpenseDraft, SharedExpense),
    "transfer": (TransferDraft, Transfer),
    "income": (IncomeDraft, Income),
}


def record_from_draft(
    draft: SharedExpenseDraft | TransferDraft | IncomeDraft,
    record_id: str,
    group_id: str,
    created_at: datetime | None = None,
) -> SharedExpense | Transfer | Income:
    """Project a draft into a recorded entry with the given id."""
    draft_type, record_type = _VARIANTS[draft.expense_type]
    fields = draft.model_dump(include=set(draft_type.model_fields))
    return record_type(
        **fields,
        id=record_id,
        group_id=group_id,
        created_at=created_at or datetime.now(UTC),
    )


# ============================================================================
# Balance & Settlement Models
# ============================================================================


class Balance(BaseModel):
    """A member's net position: positive = owed money, negative = owes money."""

    member_id: str
    member_name: str
    net: Decimal


class Settlement(BaseModel):
    """A recommended payment from one member to another."""

    from_member_id: str
    from_member_name: str
    to_member_id: str
    to_member_name: str
    amount: Decimal


# ============================================================================
# Offline Models
# ============================================================================

ActionKind = Literal[
    "createExpense",
    "updateExpense",
    "deleteExpense",
    "addMember",
    "updatePayment",
]

CacheKind = Literal["group", "expenses", "balances"]


class QueuedMutation(BaseModel):
    """A write waiting to be replayed against the ledger service."""

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: datetime
    group_id: str
    auth_token: str
    action_kind: ActionKind
    payload: dict[str, Any] = Field(default_factory=dict)
