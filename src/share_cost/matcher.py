"""Match members of one group ledger to members of another."""

import logging
from collections.abc import Callable, Mapping

from .exceptions import UnresolvedIdentityError
from .models import Member, Settlement

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """
    Normalize a member name for consistent matching.

    Args:
        name: The raw member name

    Returns:
        Normalized name (lowercase, stripped, single-spaced)
    """
    return " ".join(name.lower().split())


def first_name(name: str) -> str:
    """Normalized first word of a name."""
    parts = normalize_name(name).split(" ")
    return parts[0]


def _name_rules(source_name: str) -> list[tuple[str, Callable[[Member], bool]]]:
    needle = normalize_name(source_name)
    needle_first = first_name(source_name)

    def contains(member: Member) -> bool:
        candidate = normalize_name(member.name)
        return bool(candidate) and (needle in candidate or candidate in needle)

    return [
        ("full name", lambda m: normalize_name(m.name) == needle),
        ("first name", lambda m: first_name(m.name) == needle_first),
        ("substring", contains),
    ]


def match_member(
    source_member_id: str,
    source_name: str,
    target_members: list[Member],
    known_links: Mapping[str, str] | None = None,
) -> Member | None:
    """
    Find the target-group member corresponding to a source-group member.

    Resolution order, first match wins:
    1. A known link from source member id to target member id
    2. Case-insensitive full-name match
    3. Case-insensitive first-name match
    4. Case-insensitive substring containment in either direction

    A rule that matches more than one target member is ambiguous and stops
    resolution; guessing between candidates is not allowed.

    Args:
        source_member_id: Member id in the source group
        source_name: Member name in the source group
        target_members: Members of the target group
        known_links: Source member id -> target member id

    Returns:
        The matching target member, or None if unresolved
    """
    if known_links and source_member_id in known_links:
        target_id = known_links[source_member_id]
        for member in target_members:
            if member.id == target_id:
                logger.debug(f"Known identity: {source_name} -> {member.name}")
                return member

    if not normalize_name(source_name):
        return None

    for rule, predicate in _name_rules(source_name):
        candidates = [m for m in target_members if predicate(m)]
        if len(candidates) == 1:
            logger.debug(f"Matched {source_name} -> {candidates[0].name} by {rule}")
            return candidates[0]
        if len(candidates) > 1:
            logger.info(
                f"Ambiguous {rule} match for '{source_name}': "
                f"{', '.join(m.name for m in candidates)}"
            )
            return None

    return None


def resolve_settlement(
    settlement: Settlement,
    target_members: list[Member],
    known_links: Mapping[str, str] | None = None,
) -> tuple[Member, Member]:
    """
    Resolve both parties of a settlement in the target group.

    Returns:
        (payer, payee) as target-group members

    Raises:
        UnresolvedIdentityError: If either party has no unique match
    """
    payer = match_member(
        settlement.from_member_id, settlement.from_member_name, target_members, known_links
    )
    if payer is None:
        raise UnresolvedIdentityError("payer", settlement.from_member_name)

    payee = match_member(
        settlement.to_member_id, settlement.to_member_name, target_members, known_links
    )
    if payee is None or payee.id == payer.id:
        raise UnresolvedIdentityError("payee", settlement.to_member_name)

    return payer, payee
