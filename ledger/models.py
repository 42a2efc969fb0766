from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, computed_field


class AccountType(str, Enum):
    ASSET = "asset"
    DEFAULT = "default"
    DEBT = "debt"
    LOAN = "loan"
    MORTGAGE = "mortgage"
    OTHER = "other"


RECONCILABLE_ACCOUNT_TYPES = frozenset({
    AccountType.ASSET,
    AccountType.DEFAULT,
    AccountType.DEBT,
    AccountType.LOAN,
    AccountType.MORTGAGE,
})


class EntryKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"


def quantize(amount: Decimal, decimal_places: int) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-decimal_places), rounding=ROUND_HALF_UP)


class Currency(BaseModel):
    code: str
    decimal_places: int = Field(default=2, ge=0)

    model_config = ConfigDict(from_attributes=True)

    def format(self, amount: Decimal) -> str:
        return str(quantize(amount, self.decimal_places))


class Account(BaseModel):
    id: int
    user_id: int
    name: str
    account_type: AccountType

    model_config = ConfigDict(from_attributes=True)

    def is_reconcilable(self) -> bool:
        return self.account_type in RECONCILABLE_ACCOUNT_TYPES


class Leg(BaseModel):
    id: int
    entry_id: int
    account_id: int
    amount: Decimal
    currency_code: str

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    id: int
    user_id: int
    kind: EntryKind
    date: date
    description: str
    currency_code: str
    legs: list[Leg] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    def negative_leg(self) -> Optional[Leg]:
        return next((leg for leg in self.legs if leg.amount < 0), None)

    def positive_leg(self) -> Optional[Leg]:
        return next((leg for leg in self.legs if leg.amount > 0), None)

    def is_balanced(self) -> bool:
        """Two legs, one currency, amounts cancel out, two distinct accounts."""
        if len(self.legs) != 2:
            return False
        first, second = self.legs
        if first.currency_code != second.currency_code or first.currency_code != self.currency_code:
            return False
        if first.account_id == second.account_id:
            return False
        return first.amount + second.amount == 0 and first.amount != 0


class EntryView(BaseModel):
    """One row of a ledger query, seen from the queried account's side.

    For deposits `account_id` is the receiving (positive) leg, for withdrawals
    and transfers it is the paying (negative) leg. `amount` is always positive.
    """

    entry_id: int
    kind: EntryKind
    date: date
    description: str
    currency_code: str
    decimal_places: int = 2
    amount: Decimal
    account_id: int
    counter_account_id: int
    counterparty_name: str

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_amount(self) -> str:
        return Currency(code=self.currency_code, decimal_places=self.decimal_places).format(self.amount)


class MergeRecord(BaseModel):
    transfer_id: int
    removed_id: int
    description: str
    currency_code: str
    decimal_places: int = 2
    amount: Decimal
    source_account_id: int
    destination_account_id: int

    @property
    def display_amount(self) -> str:
        return Currency(code=self.currency_code, decimal_places=self.decimal_places).format(self.amount)


class ReconcileRequest(BaseModel):
    user_id: int
    account_ids: list[int]
    start_date: date
    end_date: date
    expected_name: Optional[str] = None
    window_days: int = Field(default=7, ge=0)


class ReconcileReport(BaseModel):
    user_id: int
    start_date: date
    end_date: date
    deposits_considered: int = 0
    skipped: int = 0
    unmatched: int = 0
    merges: list[MergeRecord] = Field(default_factory=list)

    @computed_field
    @property
    def merged(self) -> int:
        return len(self.merges)


class AccountCreate(BaseModel):
    user_id: int
    name: str
    account_type: AccountType = AccountType.ASSET

    model_config = ConfigDict(json_schema_extra={
        "example": {"user_id": 1, "name": "Checking", "account_type": "asset"}
    })


class EntryCreate(BaseModel):
    kind: EntryKind = Field(..., description="deposit or withdrawal")
    account_id: int
    amount: Decimal = Field(..., gt=0)
    currency_code: str = "EUR"
    date: date
    description: str
    counterparty_name: str

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "kind": "deposit",
            "account_id": 1,
            "amount": "50.00",
            "currency_code": "EUR",
            "date": "2024-03-01",
            "description": "Move to checking",
            "counterparty_name": "Me"
        }
    })


class ReconcileRunRequest(BaseModel):
    user_id: int
    account_ids: list[int]
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    expected_name: Optional[str] = None
    skip_others: bool = True
    on_ambiguity: str = Field(default="skip", pattern="^(skip|nearest|fail)$")
    window_days: int = Field(default=7, ge=0)


class ReconcileRunResponse(BaseModel):
    report: ReconcileReport
    lines: list[str]


class LedgerSnapshot(BaseModel):
    currencies: list[Currency] = Field(default_factory=list)
    accounts: list[Account] = Field(default_factory=list)
    entries: list[LedgerEntry] = Field(default_factory=list)
