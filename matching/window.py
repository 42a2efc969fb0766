import logging
from datetime import timedelta
from typing import Iterable, Optional, Protocol

from ledger.models import EntryKind, EntryView

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7


class LedgerQuery(Protocol):
    def find(self, account_ids, start, end, kind, amount=None, currency_code=None) -> list[EntryView]:
        ...


class WindowMatcher:
    """Finds withdrawals that may be the other half of a deposit.

    A withdrawal qualifies when it leaves another eligible account, carries
    exactly the same amount in the same currency, and is dated no more than
    `window_days` before or after the deposit.
    """

    def __init__(self, query: LedgerQuery, window_days: int = DEFAULT_WINDOW_DAYS):
        if window_days < 0:
            raise ValueError(f"window_days must be >= 0, got {window_days}")
        self.query = query
        self.window = timedelta(days=window_days)

    def candidates(
        self,
        deposit: EntryView,
        eligible: Iterable[int],
        exclude_entries: Optional[set[int]] = None,
    ) -> list[EntryView]:
        accounts = set(eligible) - {deposit.account_id}
        if not accounts:
            return []

        found = self.query.find(
            accounts,
            deposit.date - self.window,
            deposit.date + self.window,
            EntryKind.WITHDRAWAL,
            amount=deposit.amount,
            currency_code=deposit.currency_code,
        )
        if exclude_entries:
            found = [view for view in found if view.entry_id not in exclude_entries]

        logger.debug("Deposit #%s has %d candidate withdrawal(s)", deposit.entry_id, len(found))
        return found
