"""
Tests for full reconciliation runs

Tests cover:
1. Single match merged automatically
2. Ambiguous matches: skip-all, pick and invalid pick
3. Abort keeps earlier merges and leaves the failing deposit untouched
4. A withdrawal is never consumed twice
5. Account validation
6. Report rendering
"""

import logging

import pytest
from datetime import date
from decimal import Decimal

from ledger.models import AccountType, EntryKind, ReconcileRequest
from ledger.service import LedgerService, EntryNotFoundError
from matching.coordinator import InvalidInputError, Reconciler, RunAbortedError
from matching.merge import MergeExecutor
from matching.report import format_report
from matching.resolver import AmbiguityUnresolvedError, AutomatedPolicy, InteractivePrompt
from matching.window import WindowMatcher


USER_ID = 1
START = date(2024, 1, 1)
END = date(2024, 12, 31)


def make_reconciler(service, resolver=None):
    return Reconciler(service, service, resolver or AutomatedPolicy(), MergeExecutor(service))


def request_for(*accounts, **kwargs):
    return ReconcileRequest(
        user_id=USER_ID,
        account_ids=[a.id for a in accounts],
        start_date=kwargs.pop("start_date", START),
        end_date=kwargs.pop("end_date", END),
        **kwargs,
    )


def assert_all_balanced(service):
    for entry_id in service.storage.entries:
        assert service.get_entry(entry_id).is_balanced()


def answers(*values):
    queue = list(values)
    return lambda question: queue.pop(0)


class TestSingleMatch:
    """Deposit #10 of 50.00 EUR on Checking, withdrawal of 50.00 EUR on Savings two days later."""

    def test_merged_into_transfer(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        deposit = service.record_deposit(checking.id, Decimal("50.00"), date(2024, 3, 1), "From savings", "Me")
        withdrawal = service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 3), "To checking", "Me")

        report = make_reconciler(service).run(request_for(checking, savings))

        assert report.deposits_considered == 1
        assert report.merged == 1
        assert report.merges[0].transfer_id == deposit.id
        assert report.merges[0].removed_id == withdrawal.id

        transfer = service.get_entry(deposit.id)
        assert transfer.kind == EntryKind.TRANSFER
        assert {(leg.account_id, leg.amount) for leg in transfer.legs} == {
            (checking.id, Decimal("50.00")),
            (savings.id, Decimal("-50.00")),
        }
        with pytest.raises(EntryNotFoundError):
            service.get_entry(withdrawal.id)
        assert_all_balanced(service)

    def test_no_match_leaves_ledger_untouched(self):
        """Test amounts a cent apart and dates nine days apart are not merged."""
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        service.record_deposit(checking.id, Decimal("50.00"), date(2024, 3, 1), "a", "Me")
        service.record_withdrawal(savings.id, Decimal("50.01"), date(2024, 3, 1), "b", "Me")
        service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 10), "c", "Me")
        before = service.snapshot()

        report = make_reconciler(service).run(request_for(checking, savings))

        assert report.merged == 0
        assert report.unmatched == 1
        assert service.snapshot() == before

    def test_deposits_outside_range_ignored(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        service.record_deposit(checking.id, Decimal("50.00"), date(2024, 3, 1), "a", "Me")
        service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 1), "b", "Me")

        report = make_reconciler(service).run(
            request_for(checking, savings, start_date=date(2024, 4, 1), end_date=date(2024, 4, 30))
        )

        assert report.deposits_considered == 0
        assert report.merged == 0

    def test_existing_transfers_left_alone(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        transfer = service.record_transfer(savings.id, checking.id, Decimal("50.00"), date(2024, 3, 1), "Moved")
        service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 2), "Out", "Me")

        report = make_reconciler(service).run(request_for(checking, savings))

        assert report.deposits_considered == 0
        assert report.merged == 0
        assert service.get_entry(transfer.id) == transfer

    def test_injected_matcher_window_wins_and_is_logged(self, caplog):
        """Test a 3-day matcher ignores a 7-day request and says so."""
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        service.record_deposit(checking.id, Decimal("50.00"), date(2024, 3, 1), "In", "Me")
        service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 6), "Out", "Me")
        reconciler = Reconciler(
            service, service, AutomatedPolicy(), MergeExecutor(service), WindowMatcher(service, window_days=3),
        )

        with caplog.at_level(logging.WARNING, logger="matching.coordinator"):
            report = reconciler.run(request_for(checking, savings, window_days=7))

        assert report.merged == 0
        assert report.unmatched == 1
        assert "3-day window instead of the requested 7 days" in caplog.text


class TestAmbiguousMatch:
    """Two withdrawals of 50.00 EUR on different accounts inside the window."""

    def _ledger(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        loan = service.add_account(USER_ID, "Loan", AccountType.LOAN)
        deposit = service.record_deposit(checking.id, Decimal("50.00"), date(2024, 3, 1), "In", "Me")
        first = service.record_withdrawal(savings.id, Decimal("50.00"), date(2024, 3, 2), "Out 1", "Me")
        second = service.record_withdrawal(loan.id, Decimal("50.00"), date(2024, 3, 4), "Out 2", "Me")
        return service, (checking, savings, loan), deposit, first, second

    def test_skip_all_changes_nothing(self):
        service, accounts, _, _, _ = self._ledger()
        before = service.snapshot()
        resolver = InteractivePrompt(ask=answers("y"), write=lambda line: None)

        report = make_reconciler(service, resolver).run(request_for(*accounts))

        assert report.skipped == 1
        assert report.merged == 0
        assert service.snapshot() == before

    def test_pick_merges_chosen_withdrawal(self):
        service, accounts, deposit, first, second = self._ledger()
        resolver = InteractivePrompt(ask=answers("n", str(second.id)), write=lambda line: None)

        report = make_reconciler(service, resolver).run(request_for(*accounts))

        assert report.merges[0].removed_id == second.id
        assert service.get_entry(first.id).kind == EntryKind.WITHDRAWAL
        with pytest.raises(EntryNotFoundError):
            service.get_entry(second.id)

    def test_invalid_pick_aborts_run(self):
        service, accounts, deposit, _, _ = self._ledger()
        before = service.snapshot()
        resolver = InteractivePrompt(ask=answers("n", "nope"), write=lambda line: None)

        with pytest.raises(RunAbortedError) as excinfo:
            make_reconciler(service, resolver).run(request_for(*accounts))

        assert excinfo.value.deposit_id == deposit.id
        assert isinstance(excinfo.value.cause, AmbiguityUnresolvedError)
        assert excinfo.value.merges == []
        assert service.snapshot() == before


class TestAbort:
    """Tests for aborting part-way through a run."""

    def test_earlier_merges_kept_and_later_deposits_untouched(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        loan = service.add_account(USER_ID, "Loan", AccountType.LOAN)
        first_deposit = service.record_deposit(checking.id, Decimal("10.00"), date(2024, 3, 1), "One", "Me")
        first_withdrawal = service.record_withdrawal(savings.id, Decimal("10.00"), date(2024, 3, 1), "One", "Me")
        ambiguous = service.record_deposit(checking.id, Decimal("20.00"), date(2024, 4, 1), "Two", "Me")
        w1 = service.record_withdrawal(savings.id, Decimal("20.00"), date(2024, 4, 1), "Two a", "Me")
        w2 = service.record_withdrawal(loan.id, Decimal("20.00"), date(2024, 4, 2), "Two b", "Me")
        last_deposit = service.record_deposit(checking.id, Decimal("30.00"), date(2024, 5, 1), "Three", "Me")
        service.record_withdrawal(savings.id, Decimal("30.00"), date(2024, 5, 1), "Three", "Me")
        resolver = InteractivePrompt(ask=answers("n", ""), write=lambda line: None)

        with pytest.raises(RunAbortedError) as excinfo:
            make_reconciler(service, resolver).run(request_for(checking, savings, loan))

        assert excinfo.value.deposit_id == ambiguous.id
        assert [m.transfer_id for m in excinfo.value.merges] == [first_deposit.id]
        assert service.get_entry(first_deposit.id).kind == EntryKind.TRANSFER
        with pytest.raises(EntryNotFoundError):
            service.get_entry(first_withdrawal.id)
        assert service.get_entry(ambiguous.id).kind == EntryKind.DEPOSIT
        assert service.get_entry(w1.id).kind == EntryKind.WITHDRAWAL
        assert service.get_entry(w2.id).kind == EntryKind.WITHDRAWAL
        assert service.get_entry(last_deposit.id).kind == EntryKind.DEPOSIT
        assert_all_balanced(service)

    def test_vanished_withdrawal_aborts(self, monkeypatch):
        """Test an entry deleted between query and merge stops the run."""
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        deposit = service.record_deposit(checking.id, Decimal("10.00"), date(2024, 3, 1), "In", "Me")
        withdrawal = service.record_withdrawal(savings.id, Decimal("10.00"), date(2024, 3, 1), "Out", "Me")
        merger = MergeExecutor(service)
        original_merge = merger.merge

        def merge_after_external_delete(deposit_id, withdrawal_id):
            service.delete_entry(withdrawal_id)
            return original_merge(deposit_id, withdrawal_id)

        monkeypatch.setattr(merger, "merge", merge_after_external_delete)
        reconciler = Reconciler(service, service, AutomatedPolicy(), merger)

        with pytest.raises(RunAbortedError) as excinfo:
            reconciler.run(request_for(checking, savings))

        assert isinstance(excinfo.value.cause, EntryNotFoundError)
        assert service.get_entry(deposit.id).kind == EntryKind.DEPOSIT
        assert withdrawal.id not in service.storage.entries

    def test_unknown_currency_aborts_with_no_merges(self):
        """Test a merge that cannot resolve its currency is not reported as committed."""
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        service.add_currency("CHF")
        deposit = service.record_deposit(checking.id, Decimal("10.00"), date(2024, 3, 1), "In", "Me", "CHF")
        withdrawal = service.record_withdrawal(savings.id, Decimal("10.00"), date(2024, 3, 1), "Out", "Me", "CHF")
        del service.storage.currencies["CHF"]

        with pytest.raises(RunAbortedError) as excinfo:
            make_reconciler(service).run(request_for(checking, savings))

        assert excinfo.value.merges == []
        assert service.get_entry(deposit.id) == deposit
        assert service.get_entry(withdrawal.id) == withdrawal


class TestNoDoubleConsumption:
    """Tests that one withdrawal never pays for two deposits."""

    def test_second_deposit_finds_nothing(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        first = service.record_deposit(checking.id, Decimal("25.00"), date(2024, 3, 1), "a", "Me")
        second = service.record_deposit(checking.id, Decimal("25.00"), date(2024, 3, 2), "b", "Me")
        service.record_withdrawal(savings.id, Decimal("25.00"), date(2024, 3, 1), "c", "Me")

        report = make_reconciler(service).run(request_for(checking, savings))

        assert report.deposits_considered == 2
        assert [m.transfer_id for m in report.merges] == [first.id]
        assert report.unmatched == 1
        assert service.get_entry(second.id).kind == EntryKind.DEPOSIT
        removed = [m.removed_id for m in report.merges]
        assert len(removed) == len(set(removed))

    def test_pairs_in_both_directions(self):
        """Test transfers from savings and back to savings are both found."""
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        service.record_deposit(checking.id, Decimal("40.00"), date(2024, 3, 1), "in checking", "Me")
        service.record_withdrawal(savings.id, Decimal("40.00"), date(2024, 3, 1), "out savings", "Me")
        service.record_deposit(savings.id, Decimal("15.00"), date(2024, 3, 5), "in savings", "Me")
        service.record_withdrawal(checking.id, Decimal("15.00"), date(2024, 3, 6), "out checking", "Me")

        report = make_reconciler(service).run(request_for(checking, savings))

        assert report.merged == 2
        assert len(service.storage.entries) == 2
        assert_all_balanced(service)


class TestAccountValidation:
    """Tests for the eligible account set."""

    def test_empty_account_list(self):
        service = LedgerService()

        with pytest.raises(InvalidInputError):
            make_reconciler(service).eligible_accounts(USER_ID, [])

    def test_only_ineligible_accounts(self):
        service = LedgerService()
        other = service.add_account(USER_ID, "Shop", AccountType.OTHER)
        foreign = service.add_account(2, "Someone else's checking")

        with pytest.raises(InvalidInputError):
            make_reconciler(service).run(request_for(other, foreign))

    def test_unknown_and_foreign_accounts_dropped(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")
        mortgage = service.add_account(USER_ID, "House", AccountType.MORTGAGE)
        foreign = service.add_account(2, "Foreign")

        eligible = make_reconciler(service).eligible_accounts(
            USER_ID, [checking.id, 999, foreign.id, mortgage.id, checking.id],
        )

        assert [a.id for a in eligible] == [checking.id, mortgage.id]


class TestReport:
    """Tests for the text report."""

    def test_lines_for_merges(self):
        service = LedgerService()
        service.add_currency("BHD", 3)
        checking = service.add_account(USER_ID, "Checking")
        savings = service.add_account(USER_ID, "Savings")
        deposit = service.record_deposit(checking.id, Decimal("50"), date(2024, 3, 1), "Top up", "Me")
        service.record_withdrawal(savings.id, Decimal("50"), date(2024, 3, 3), "Out", "Me")
        dinar = service.record_deposit(checking.id, Decimal("1.5"), date(2024, 3, 4), "Dinar", "Me", "BHD")
        service.record_withdrawal(savings.id, Decimal("1.5"), date(2024, 3, 4), "Out", "Me", "BHD")

        lines = format_report(make_reconciler(service).run(request_for(checking, savings)))

        assert "Merged 2 deposit(s) into transfers." in lines
        assert f'#{deposit.id}: "Top up" (EUR 50.00)' in lines
        assert f'#{dinar.id}: "Dinar" (BHD 1.500)' in lines

    def test_nothing_merged(self):
        service = LedgerService()
        checking = service.add_account(USER_ID, "Checking")

        lines = format_report(make_reconciler(service).run(request_for(checking)))

        assert lines[-1] == "No deposits were matched to withdrawals."
        assert lines[0] == "Start date is 2024-01-01"
