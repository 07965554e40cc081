"""share-cost - Offline-capable shared expense tracking and settlement planning."""

__version__ = "0.1.0"

from .cache import LocalCacheStore
from .config import Settings, load_settings
from .db import Database, MemoryDatabase
from .matcher import match_member, resolve_settlement
from .models import (
    Balance,
    Group,
    Member,
    QueuedMutation,
    Settlement,
    is_pending,
)
from .mutation_queue import MutationQueue
from .offline import OfflineLedger
from .planner import greedy_settlements, plan_settlements
from .sync import SyncCoordinator
from .transfer import CrossLedgerTransfer

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "MemoryDatabase",
    "LocalCacheStore",
    "MutationQueue",
    "OfflineLedger",
    "SyncCoordinator",
    "CrossLedgerTransfer",
    "Balance",
    "Group",
    "Member",
    "QueuedMutation",
    "Settlement",
    "is_pending",
    "match_member",
    "resolve_settlement",
    "greedy_settlements",
    "plan_settlements",
]
