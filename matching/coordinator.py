import logging
from typing import Optional, Protocol

from ledger.models import Account, EntryKind, MergeRecord, ReconcileReport, ReconcileRequest
from ledger.service import LedgerServiceError

from .merge import MergeExecutor
from .resolver import AmbiguityResolver, AmbiguityUnresolvedError
from .window import LedgerQuery, WindowMatcher

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    pass


class InvalidInputError(ReconciliationError):
    pass


class RunAbortedError(ReconciliationError):
    """A deposit could not be processed; the run stopped there.

    Merges committed before the failing deposit are kept and listed in
    `merges`. The original error is available as `cause`.
    """

    def __init__(self, deposit_id: int, cause: Exception, merges: list[MergeRecord]):
        self.deposit_id = deposit_id
        self.cause = cause
        self.merges = merges
        super().__init__(f"Reconciliation aborted at deposit #{deposit_id}: {cause}")


class AccountLookup(Protocol):
    def find_account(self, account_id: int) -> Optional[Account]:
        ...


class Reconciler:
    """Runs one reconciliation pass over a user's accounts.

    An injected `matcher` keeps its own window; `request.window_days` only
    applies when the reconciler builds the matcher itself.
    """

    def __init__(
        self,
        ledger: LedgerQuery,
        accounts: AccountLookup,
        resolver: AmbiguityResolver,
        merger: MergeExecutor,
        matcher: Optional[WindowMatcher] = None,
    ):
        self.ledger = ledger
        self.accounts = accounts
        self.resolver = resolver
        self.merger = merger
        self.matcher = matcher

    def eligible_accounts(self, user_id: int, account_ids: list[int]) -> list[Account]:
        if not account_ids:
            raise InvalidInputError("No accounts given to reconcile")

        eligible = []
        for account_id in dict.fromkeys(account_ids):
            account = self.accounts.find_account(account_id)
            if account is None:
                logger.warning("Ignoring unknown account %s", account_id)
                continue
            if account.user_id != user_id or not account.is_reconcilable():
                logger.warning("Ignoring account %s (%s)", account_id, account.account_type.value)
                continue
            eligible.append(account)

        if not eligible:
            raise InvalidInputError("None of the given accounts are asset accounts or liabilities")
        return eligible

    def run(self, request: ReconcileRequest) -> ReconcileReport:
        eligible = {account.id for account in self.eligible_accounts(request.user_id, request.account_ids)}
        matcher = self.matcher or WindowMatcher(self.ledger, request.window_days)
        if matcher.window.days != request.window_days:
            logger.warning(
                "Using the injected matcher's %d-day window instead of the requested %d days",
                matcher.window.days, request.window_days,
            )
        logger.info(
            "Reconciling %d account(s) from %s to %s",
            len(eligible), request.start_date.isoformat(), request.end_date.isoformat(),
        )

        deposits = list(self.ledger.find(eligible, request.start_date, request.end_date, EntryKind.DEPOSIT))
        report = ReconcileReport(
            user_id=request.user_id,
            start_date=request.start_date,
            end_date=request.end_date,
            deposits_considered=len(deposits),
        )
        consumed: set[int] = set()
        merges: list[MergeRecord] = []

        for deposit in deposits:
            try:
                candidates = matcher.candidates(deposit, eligible, exclude_entries=consumed)
                if not candidates:
                    report.unmatched += 1
                    continue

                decision = self.resolver.resolve(deposit, candidates)
                if not decision.is_proceed:
                    logger.debug("Skipped deposit #%s (%s)", deposit.entry_id, decision.reason)
                    report.skipped += 1
                    continue

                record = self.merger.merge(deposit.entry_id, decision.chosen.entry_id)
            except (AmbiguityUnresolvedError, LedgerServiceError) as e:
                logger.error("Aborting run at deposit #%s: %s", deposit.entry_id, e)
                raise RunAbortedError(deposit.entry_id, e, list(merges)) from e

            consumed.add(record.removed_id)
            merges.append(record)

        report.merges = merges
        logger.info("Considered %d deposit(s), merged %d", report.deposits_considered, report.merged)
        return report
