"""HTTP clients for external services."""

from .ledger import LedgerClient

__all__ = ["LedgerClient"]
