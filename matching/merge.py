import logging

from ledger.models import EntryKind, MergeRecord
from ledger.service import LedgerService, StructuralViolationError

logger = logging.getLogger(__name__)


class MergeExecutor:
    """Turns a matched deposit and withdrawal into a single transfer.

    The deposit survives: its paying leg is moved from the outside
    counterparty to the account the withdrawal left, and it becomes a
    transfer. The withdrawal is deleted together with its legs. Both steps
    run in one store transaction.
    """

    def __init__(self, store: LedgerService):
        self.store = store

    def merge(self, deposit_id: int, withdrawal_id: int) -> MergeRecord:
        with self.store.transaction():
            deposit = self.store.get_entry(deposit_id)
            withdrawal = self.store.get_entry(withdrawal_id)

            for entry, kind in ((deposit, EntryKind.DEPOSIT), (withdrawal, EntryKind.WITHDRAWAL)):
                if entry.kind != kind:
                    raise StructuralViolationError(f"Entry #{entry.id} is a {entry.kind.value}, expected a {kind.value}")
                if not entry.is_balanced():
                    raise StructuralViolationError(f"Entry #{entry.id} is not a balanced two-leg entry")

            funding_leg = deposit.negative_leg()
            receiving_leg = deposit.positive_leg()
            source_leg = withdrawal.negative_leg()
            if funding_leg is None or receiving_leg is None or source_leg is None:
                raise StructuralViolationError(
                    f"Cannot locate the negative leg of #{deposit.id} or #{withdrawal.id}"
                )
            if source_leg.account_id == receiving_leg.account_id:
                raise StructuralViolationError(
                    f"Withdrawal #{withdrawal.id} leaves the account deposit #{deposit.id} lands on"
                )
            if source_leg.amount != funding_leg.amount or source_leg.currency_code != funding_leg.currency_code:
                raise StructuralViolationError(
                    f"Withdrawal #{withdrawal.id} does not carry the amount of deposit #{deposit.id}"
                )

            currency = self.store.get_currency(deposit.currency_code)
            self.store.get_account(source_leg.account_id)
            funding_leg.account_id = source_leg.account_id
            deposit.kind = EntryKind.TRANSFER
            self.store.save_entry(deposit)
            self.store.delete_entry(withdrawal.id)

        logger.info("Merged withdrawal #%s into deposit #%s", withdrawal.id, deposit.id)
        return MergeRecord(
            transfer_id=deposit.id,
            removed_id=withdrawal.id,
            description=deposit.description,
            currency_code=deposit.currency_code,
            decimal_places=currency.decimal_places,
            amount=receiving_leg.amount,
            source_account_id=source_leg.account_id,
            destination_account_id=receiving_leg.account_id,
        )
