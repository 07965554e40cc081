"""Custom exceptions for share-cost."""


class ShareCostError(Exception):
    """Base exception for all share-cost errors."""

    pass


class ConfigurationError(ShareCostError):
    """Raised when configuration is invalid or missing."""

    pass


class APIError(ShareCostError):
    """Base class for API-related errors."""

    pass


class LedgerAPIError(APIError):
    """Raised when a ledger service request fails."""

    pass


class NetworkUnavailableError(LedgerAPIError):
    """Raised when the ledger service cannot be reached.

    Covers transport failures, timeouts and 5xx responses. Callers treat this
    as "offline": reads fall back to the cache and writes are queued.
    """

    pass


class RemoteRejectedError(LedgerAPIError):
    """Raised when the ledger service explicitly refuses a request (4xx)."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(
            f"Ledger service rejected the request ({status_code})"
            + (f": {detail}" if detail else "")
        )


class ReplayRejectedError(ShareCostError):
    """Raised when the ledger service refuses a queued mutation during replay."""

    def __init__(self, mutation_id: int, action_kind: str, cause: RemoteRejectedError):
        self.mutation_id = mutation_id
        self.action_kind = action_kind
        self.cause = cause
        super().__init__(
            f"Queued {action_kind} (#{mutation_id}) was rejected: {cause}"
        )


class PartialCrossLedgerFailureError(ShareCostError):
    """Raised when only the source half of a cross-ledger transfer was recorded.

    No compensation is attempted; the caller must reconcile the target group
    by hand.
    """

    def __init__(self, source_group_id: str, target_group_id: str, source_entry, cause):
        self.source_group_id = source_group_id
        self.target_group_id = target_group_id
        self.source_entry = source_entry
        self.cause = cause
        super().__init__(
            f"Settled in group {source_group_id} but failed to record the debt "
            f"in group {target_group_id}: {cause}"
        )


class UnresolvedIdentityError(ShareCostError):
    """Raised when a member cannot be matched in the target ledger."""

    def __init__(self, role: str, member_name: str):
        self.role = role
        self.member_name = member_name
        super().__init__(
            f"Could not match {role} member '{member_name}' in the target group; "
            f"select the member manually"
        )


class PendingRecordError(ShareCostError):
    """Raised when editing a record the server has not confirmed yet."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(
            f"Record {record_id} is waiting to be synced and cannot be changed yet"
        )


class OfflineUnavailableError(ShareCostError):
    """Raised when an operation needs the server or cached data and has neither."""

    pass
