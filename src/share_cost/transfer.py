"""Move a debt from one group ledger to another.

The same cash payment settles the debt in the source group and records an
equivalent debt in the target group. The two writes are independent: if the
second one fails, the first is not rolled back.
"""

import logging

from .exceptions import PartialCrossLedgerFailureError, ShareCostError
from .matcher import resolve_settlement
from .models import Group, Member, Settlement, StoredGroup, TransferDraft
from .offline import OfflineLedger, ensure_confirmed

logger = logging.getLogger(__name__)


class CrossLedgerTransfer:
    """Resolves identities across two groups and records the debt move."""

    def __init__(self, ledger: OfflineLedger):
        self.ledger = ledger
        # (source group, target group) -> {source member id: target member id}
        self._links: dict[tuple[str, str], dict[str, str]] = {}

    def remember(
        self,
        source_group_id: str,
        target_group_id: str,
        source_member_id: str,
        target_member_id: str,
    ) -> None:
        """Record that two members are the same person for this session."""
        self._links.setdefault((source_group_id, target_group_id), {})[
            source_member_id
        ] = target_member_id

    async def known_links(self, source_group_id: str, target_group_id: str) -> dict[str, str]:
        """Identities already associated with both groups."""
        links = dict(self._links.get((source_group_id, target_group_id), {}))

        source = await self.ledger.registry.get(source_group_id)
        target = await self.ledger.registry.get(target_group_id)
        if (
            source
            and target
            and source.selected_member_id
            and target.selected_member_id
        ):
            links.setdefault(source.selected_member_id, target.selected_member_id)

        return links

    async def resolve(
        self, settlement: Settlement, source_group_id: str, target_group: Group
    ) -> tuple[Member, Member]:
        """
        Find the settlement's payer and payee in the target group.

        Raises:
            UnresolvedIdentityError: The caller must ask for a manual selection
        """
        links = await self.known_links(source_group_id, target_group.id)
        return resolve_settlement(settlement, target_group.members, links)

    async def execute(
        self,
        settlement: Settlement,
        source: StoredGroup,
        target: StoredGroup,
        target_payer: Member,
        target_payee: Member,
        currency: str = "EUR",
    ):
        """
        Settle the debt in the source group and re-create it in the target group.

        Args:
            settlement: Payment from the source group's plan
            source: Group the debt is recorded in
            target: Group the debt moves to
            target_payer: The settlement's payer, as a target-group member
            target_payee: The settlement's payee, as a target-group member
            currency: Currency of the amount

        Returns:
            (source entry, target entry)

        Raises:
            PendingRecordError: If any party is not confirmed by the server yet;
                nothing is written
            PartialCrossLedgerFailureError: If only the source write succeeded
        """
        ensure_confirmed(
            settlement.from_member_id,
            settlement.to_member_id,
            target_payer.id,
            target_payee.id,
        )

        source_entry = await self.ledger.create_expense(
            source.token,
            source.id,
            TransferDraft(
                description=f"Moved to {target.name}",
                amount=settlement.amount,
                paid_by=settlement.from_member_id,
                transfer_to=settlement.to_member_id,
                currency=currency,
            ),
        )
        logger.info(
            f"Settled {settlement.from_member_name} -> {settlement.to_member_name} "
            f"{settlement.amount} in {source.name}"
        )

        try:
            # Reverse direction: the payee now holds a claim in the target group
            target_entry = await self.ledger.create_expense(
                target.token,
                target.id,
                TransferDraft(
                    description=f"Moved from {source.name}",
                    amount=settlement.amount,
                    paid_by=target_payee.id,
                    transfer_to=target_payer.id,
                    currency=currency,
                ),
            )
        except ShareCostError as e:
            logger.error(
                f"Cross-ledger transfer left unbalanced: recorded in {source.name}, "
                f"failed in {target.name}: {e}"
            )
            raise PartialCrossLedgerFailureError(
                source.id, target.id, source_entry, e
            ) from e

        self.remember(source.id, target.id, settlement.from_member_id, target_payer.id)
        self.remember(source.id, target.id, settlement.to_member_id, target_payee.id)
        return source_entry, target_entry
