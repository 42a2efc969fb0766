import copy
import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator, Optional

from .models import (
    Account,
    AccountType,
    Currency,
    EntryKind,
    EntryView,
    LedgerEntry,
    LedgerSnapshot,
    Leg,
)

logger = logging.getLogger(__name__)


class LedgerServiceError(Exception):
    pass


class NotFoundError(LedgerServiceError):
    pass


class AccountNotFoundError(NotFoundError):
    pass


class EntryNotFoundError(NotFoundError):
    pass


class StructuralViolationError(LedgerServiceError):
    pass


DEFAULT_CURRENCIES = {
    "EUR": 2,
    "USD": 2,
    "GBP": 2,
    "JPY": 0,
}


class InMemoryStorage:
    def __init__(self):
        self.accounts: dict[int, dict] = {}
        self.currencies: dict[str, dict] = {}
        self.entries: dict[int, dict] = {}
        self.legs: dict[int, dict] = {}
        self.sequences: dict[str, int] = {"account": 0, "entry": 0, "leg": 0}
        self._depth = 0
        self._seed_data()

    def _seed_data(self):
        for code, decimal_places in DEFAULT_CURRENCIES.items():
            self.currencies[code] = {"code": code, "decimal_places": decimal_places}

    def next_id(self, table: str) -> int:
        self.sequences[table] += 1
        return self.sequences[table]

    def bump_sequence(self, table: str, value: int):
        self.sequences[table] = max(self.sequences[table], value)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        """All-or-nothing unit of work.

        Tables are restored from a snapshot if the block raises. Nested calls
        join the outermost transaction.
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        saved = copy.deepcopy((self.accounts, self.entries, self.legs, self.sequences))
        self._depth = 1
        try:
            yield self
        except BaseException:
            self.accounts, self.entries, self.legs, self.sequences = saved
            logger.debug("Transaction rolled back")
            raise
        finally:
            self._depth = 0


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    @classmethod
    def from_snapshot(cls, snapshot: LedgerSnapshot) -> "LedgerService":
        service = cls()
        storage = service.storage
        for currency in snapshot.currencies:
            storage.currencies[currency.code] = currency.model_dump()
        for account in snapshot.accounts:
            storage.accounts[account.id] = account.model_dump()
            storage.bump_sequence("account", account.id)
        seen_legs: set[int] = set()
        for entry in snapshot.entries:
            if not entry.is_balanced():
                raise StructuralViolationError(f"Entry #{entry.id} is not a balanced two-leg entry")
            if entry.id in storage.entries:
                raise StructuralViolationError(f"Entry #{entry.id} appears twice")
            if entry.currency_code not in storage.currencies:
                raise StructuralViolationError(f"Entry #{entry.id} uses unknown currency {entry.currency_code}")
            for leg in entry.legs:
                if leg.account_id not in storage.accounts:
                    raise AccountNotFoundError(f"Entry #{entry.id} references unknown account {leg.account_id}")
                if leg.id in seen_legs:
                    raise StructuralViolationError(f"Leg {leg.id} of entry #{entry.id} belongs to another entry")
                seen_legs.add(leg.id)
            service._write_entry(entry)
            storage.bump_sequence("entry", entry.id)
            for leg in entry.legs:
                storage.bump_sequence("leg", leg.id)
        return service

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            currencies=[Currency(**c) for c in self.storage.currencies.values()],
            accounts=[Account(**a) for a in sorted(self.storage.accounts.values(), key=lambda a: a["id"])],
            entries=[self.get_entry(entry_id) for entry_id in sorted(self.storage.entries)],
        )

    def transaction(self):
        return self.storage.transaction()

    # Currencies and accounts

    def add_currency(self, code: str, decimal_places: int = 2) -> Currency:
        currency = Currency(code=code, decimal_places=decimal_places)
        self.storage.currencies[code] = currency.model_dump()
        return currency

    def get_currency(self, code: str) -> Currency:
        data = self.storage.currencies.get(code)
        if not data:
            raise LedgerServiceError(f"Unknown currency {code}")
        return Currency(**data)

    def add_account(self, user_id: int, name: str, account_type: AccountType = AccountType.ASSET) -> Account:
        account_id = self.storage.next_id("account")
        account_data = {
            "id": account_id,
            "user_id": user_id,
            "name": name,
            "account_type": account_type,
        }
        self.storage.accounts[account_id] = account_data
        return Account(**account_data)

    def find_account(self, account_id: int) -> Optional[Account]:
        account_data = self.storage.accounts.get(account_id)
        return Account(**account_data) if account_data else None

    def get_account(self, account_id: int) -> Account:
        account = self.find_account(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found")
        return account

    def list_accounts(self, user_id: int, types: Optional[Iterable[AccountType]] = None) -> list[Account]:
        wanted = set(types) if types is not None else None
        accounts = [
            Account(**a) for a in self.storage.accounts.values()
            if a["user_id"] == user_id and (wanted is None or a["account_type"] in wanted)
        ]
        accounts.sort(key=lambda a: a.id)
        return accounts

    def _counterparty_account(self, user_id: int, name: str) -> int:
        for account in self.storage.accounts.values():
            if (
                account["user_id"] == user_id
                and account["name"] == name
                and account["account_type"] == AccountType.OTHER
            ):
                return account["id"]
        return self.add_account(user_id, name, AccountType.OTHER).id

    # Capture

    def record_deposit(
        self,
        account_id: int,
        amount: Decimal,
        entry_date: date,
        description: str,
        counterparty_name: str,
        currency_code: str = "EUR",
    ) -> LedgerEntry:
        account = self.get_account(account_id)
        source_id = self._counterparty_account(account.user_id, counterparty_name)
        return self._record(EntryKind.DEPOSIT, account.user_id, source_id, account.id,
                            amount, entry_date, description, currency_code)

    def record_withdrawal(
        self,
        account_id: int,
        amount: Decimal,
        entry_date: date,
        description: str,
        counterparty_name: str,
        currency_code: str = "EUR",
    ) -> LedgerEntry:
        account = self.get_account(account_id)
        destination_id = self._counterparty_account(account.user_id, counterparty_name)
        return self._record(EntryKind.WITHDRAWAL, account.user_id, account.id, destination_id,
                            amount, entry_date, description, currency_code)

    def record_transfer(
        self,
        source_id: int,
        destination_id: int,
        amount: Decimal,
        entry_date: date,
        description: str,
        currency_code: str = "EUR",
    ) -> LedgerEntry:
        source = self.get_account(source_id)
        self.get_account(destination_id)
        return self._record(EntryKind.TRANSFER, source.user_id, source_id, destination_id,
                            amount, entry_date, description, currency_code)

    def _record(self, kind, user_id, source_id, destination_id, amount, entry_date, description, currency_code):
        amount = Decimal(amount)
        if amount <= 0:
            raise LedgerServiceError(f"Amount must be positive, got {amount}")
        if source_id == destination_id:
            raise StructuralViolationError("Source and destination account must differ")
        self.get_currency(currency_code)

        entry_id = self.storage.next_id("entry")
        legs = [
            Leg(id=self.storage.next_id("leg"), entry_id=entry_id, account_id=source_id,
                amount=-amount, currency_code=currency_code),
            Leg(id=self.storage.next_id("leg"), entry_id=entry_id, account_id=destination_id,
                amount=amount, currency_code=currency_code),
        ]
        entry = LedgerEntry(
            id=entry_id,
            user_id=user_id,
            kind=kind,
            date=entry_date,
            description=description,
            currency_code=currency_code,
            legs=legs,
        )
        self._write_entry(entry)
        return entry

    # Entries

    def get_entry(self, entry_id: int) -> LedgerEntry:
        entry_data = self.storage.entries.get(entry_id)
        if not entry_data:
            raise EntryNotFoundError(f"Entry #{entry_id} not found")
        legs = [Leg(**self.storage.legs[leg_id]) for leg_id in entry_data["leg_ids"]]
        return LedgerEntry(**{k: v for k, v in entry_data.items() if k != "leg_ids"}, legs=legs)

    def save_entry(self, entry: LedgerEntry) -> LedgerEntry:
        if entry.id not in self.storage.entries:
            raise EntryNotFoundError(f"Entry #{entry.id} not found")
        if not entry.is_balanced():
            raise StructuralViolationError(f"Entry #{entry.id} is not a balanced two-leg entry")
        for leg in entry.legs:
            if leg.account_id not in self.storage.accounts:
                raise AccountNotFoundError(f"Account {leg.account_id} not found")
        for leg_id in self.storage.entries[entry.id]["leg_ids"]:
            self.storage.legs.pop(leg_id, None)
        self._write_entry(entry)
        return entry

    def delete_entry(self, entry_id: int):
        entry_data = self.storage.entries.pop(entry_id, None)
        if not entry_data:
            raise EntryNotFoundError(f"Entry #{entry_id} not found")
        for leg_id in entry_data["leg_ids"]:
            self.storage.legs.pop(leg_id, None)

    def _write_entry(self, entry: LedgerEntry):
        entry_data = entry.model_dump(exclude={"legs"})
        entry_data["leg_ids"] = [leg.id for leg in entry.legs]
        for leg in entry.legs:
            self.storage.legs[leg.id] = leg.model_dump()
        self.storage.entries[entry.id] = entry_data

    # Query port

    def find(
        self,
        account_ids: Iterable[int],
        start: Optional[date],
        end: Optional[date],
        kind: EntryKind,
        amount: Optional[Decimal] = None,
        currency_code: Optional[str] = None,
    ) -> list[EntryView]:
        """Entries of one kind touching the given accounts, oldest first.

        Deposits are matched on their receiving leg, everything else on the
        paying leg. Missing bounds leave that side of the range open.
        """
        wanted = set(account_ids)
        views = []
        for entry_id, entry_data in self.storage.entries.items():
            if entry_data["kind"] != kind:
                continue
            if start is not None and entry_data["date"] < start:
                continue
            if end is not None and entry_data["date"] > end:
                continue
            if currency_code is not None and entry_data["currency_code"] != currency_code:
                continue
            entry = self.get_entry(entry_id)
            own_leg = entry.positive_leg() if kind == EntryKind.DEPOSIT else entry.negative_leg()
            counter_leg = entry.negative_leg() if kind == EntryKind.DEPOSIT else entry.positive_leg()
            if own_leg is None or counter_leg is None or own_leg.account_id not in wanted:
                continue
            if amount is not None and abs(own_leg.amount) != Decimal(amount):
                continue
            counter_account = self.storage.accounts.get(counter_leg.account_id, {})
            currency = self.storage.currencies.get(entry.currency_code, {})
            views.append(EntryView(
                entry_id=entry.id,
                kind=entry.kind,
                date=entry.date,
                description=entry.description,
                currency_code=entry.currency_code,
                decimal_places=currency.get("decimal_places", 2),
                amount=abs(own_leg.amount),
                account_id=own_leg.account_id,
                counter_account_id=counter_leg.account_id,
                counterparty_name=counter_account.get("name", ""),
            ))
        views.sort(key=lambda v: (v.date, v.entry_id))
        return views

    def first_entry_date(self, user_id: int) -> Optional[date]:
        dates = [e["date"] for e in self.storage.entries.values() if e["user_id"] == user_id]
        return min(dates) if dates else None

    def last_entry_date(self, user_id: int) -> Optional[date]:
        dates = [e["date"] for e in self.storage.entries.values() if e["user_id"] == user_id]
        return max(dates) if dates else None
