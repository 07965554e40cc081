"""Settlement planning: turn net balances into a minimal list of payments.

Amounts are handled in integer minor units (cents) internally; Decimal values
only appear at the boundaries.

Minimizing the number of payments is NP-hard in general. Greedily matching the
largest debtor with the largest creditor is not always minimal, because a
subset of members whose balances cancel out can be settled on its own with
fewer payments. For small groups we therefore first split the members into the
largest possible number of independent zero-sum subsets, then settle each
subset greedily.
"""

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from .models import Balance, Settlement

logger = logging.getLogger(__name__)

# Balances at or below this are treated as settled
TOLERANCE = Decimal("0.005")

# Beyond this many members the O(3^n) sub-mask enumeration is impractical
DEFAULT_PARTITION_LIMIT = 16

_CENT = Decimal("0.01")


def to_minor_units(amount: Decimal | float | str) -> int:
    """
    Convert a currency amount to integer cents.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Amount in major units

    Returns:
        Amount in cents (integer)
    """
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    """Convert integer cents back to a two-decimal amount."""
    return (Decimal(minor) / 100).quantize(_CENT)


def _prepare(balances: Iterable[Balance]) -> tuple[list[Balance], list[int]]:
    """
    Drop settled members and convert the rest to cents.

    Rounding each balance to cents can leave the group a cent or two away from
    zero. That residual is folded into the largest absolute balance so the
    integer balances sum to exactly zero.
    """
    members = [b for b in balances if abs(Decimal(str(b.net))) > TOLERANCE]
    minor = [to_minor_units(b.net) for b in members]

    residual = sum(minor)
    if residual and minor:
        largest = max(range(len(minor)), key=lambda i: abs(minor[i]))
        minor[largest] -= residual
        logger.debug(
            f"Applied rounding adjustment: {residual} cents "
            f"to member {members[largest].member_id}"
        )

    return members, minor


def _subset_sums(minor: list[int]) -> list[int]:
    """Signed sum of every bitmask subset."""
    sums = [0] * (1 << len(minor))
    for mask in range(1, len(sums)):
        low = mask & -mask
        sums[mask] = sums[mask ^ low] + minor[low.bit_length() - 1]
    return sums


def partition_zero_sum(minor: list[int]) -> list[list[int]]:
    """
    Split members into the maximum number of disjoint zero-sum groups.

    dp[mask] is the largest number of zero-sum subsets that exactly partition
    mask (-1 if mask itself does not sum to zero). Only sub-masks containing the
    lowest member of mask are enumerated; every partition has exactly one
    such part, so nothing is missed.

    Args:
        minor: Zero-sum balances in cents

    Returns:
        Groups of member indices, each group in ascending index order
    """
    n = len(minor)
    if n == 0:
        return []

    full = (1 << n) - 1
    sums = _subset_sums(minor)
    dp = [-1] * (1 << n)
    dp[0] = 0

    for mask in range(1, full + 1):
        if sums[mask] != 0:
            continue
        low = mask & -mask
        rest = mask ^ low
        sub = rest
        while True:
            part = sub | low
            if sums[part] == 0 and dp[mask ^ part] >= 0:
                dp[mask] = max(dp[mask], dp[mask ^ part] + 1)
            if sub == 0:
                break
            sub = (sub - 1) & rest

    if dp[full] < 0:
        # Not zero-sum; nothing to split
        return [list(range(n))]

    groups = []
    remaining = full
    while remaining:
        low = remaining & -remaining
        rest = remaining ^ low
        sub = 0
        while True:
            part = sub | low
            if sums[part] == 0 and dp[remaining ^ part] == dp[remaining] - 1:
                break
            # Next sub-mask of rest in increasing order
            sub = (sub - rest) & rest
        groups.append([i for i in range(n) if part >> i & 1])
        remaining ^= part

    return groups


def _settle_group(
    indices: list[int], members: list[Balance], minor: list[int]
) -> list[Settlement]:
    """Greedy largest-debtor/largest-creditor matching within one group."""
    # [index, outstanding cents]; ties broken by input order
    debtors = sorted(
        ([i, -minor[i]] for i in indices if minor[i] < 0), key=lambda p: (-p[1], p[0])
    )
    creditors = sorted(
        ([i, minor[i]] for i in indices if minor[i] > 0), key=lambda p: (-p[1], p[0])
    )

    settlements = []
    d = c = 0
    while d < len(debtors) and c < len(creditors):
        debtor, creditor = debtors[d], creditors[c]
        amount = min(debtor[1], creditor[1])

        if amount > 0:
            payer, payee = members[debtor[0]], members[creditor[0]]
            settlements.append(
                Settlement(
                    from_member_id=payer.member_id,
                    from_member_name=payer.member_name,
                    to_member_id=payee.member_id,
                    to_member_name=payee.member_name,
                    amount=from_minor_units(amount),
                )
            )

        debtor[1] -= amount
        creditor[1] -= amount
        if debtor[1] == 0:
            d += 1
        if creditor[1] == 0:
            c += 1

    return settlements


def greedy_settlements(balances: Iterable[Balance]) -> list[Settlement]:
    """Settle everyone as a single group, without partitioning."""
    members, minor = _prepare(balances)
    return _settle_group(list(range(len(members))), members, minor)


def plan_settlements(
    balances: Iterable[Balance],
    partition_limit: int = DEFAULT_PARTITION_LIMIT,
) -> list[Settlement]:
    """
    Compute the payments that bring every balance to zero.

    Args:
        balances: Net balances of a group (summing to zero)
        partition_limit: Largest member count for exact partitioning

    Returns:
        Ordered list of settlements; identical input yields identical output
    """
    members, minor = _prepare(balances)
    n = len(members)

    if n <= partition_limit:
        groups = partition_zero_sum(minor)
    else:
        logger.info(
            f"{n} members exceed the partition limit of {partition_limit}, "
            f"settling as a single group"
        )
        groups = [list(range(n))]

    settlements = []
    for group in groups:
        settlements.extend(_settle_group(group, members, minor))

    logger.debug(f"Planned {len(settlements)} settlements for {n} open balances")
    return settlements


def apply_settlements(
    balances: Iterable[Balance], settlements: Iterable[Settlement]
) -> dict[str, Decimal]:
    """Net balance of every member after the settlements are paid."""
    remaining = {b.member_id: Decimal(str(b.net)) for b in balances}
    for settlement in settlements:
        remaining[settlement.from_member_id] += settlement.amount
        remaining[settlement.to_member_id] -= settlement.amount
    return remaining
