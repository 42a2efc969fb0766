"""
Ambiguity resolution for matched deposits.

A resolver decides, for one deposit and its candidate withdrawals, whether
the run merges (and with which withdrawal) or leaves the deposit alone.
The run coordinator does not care whether the answer comes from a fixed
policy or from an operator at a terminal.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from ledger.models import EntryView

logger = logging.getLogger(__name__)


class DecisionAction(str, Enum):
    PROCEED = "proceed"
    SKIP = "skip"


class AmbiguityPolicy(str, Enum):
    SKIP = "skip"
    NEAREST = "nearest"
    FAIL = "fail"


class AmbiguityUnresolvedError(Exception):
    def __init__(self, deposit_id: int, message: Optional[str] = None):
        self.deposit_id = deposit_id
        super().__init__(message or f"More than one withdrawal found for deposit #{deposit_id}")


@dataclass(frozen=True)
class Decision:
    action: DecisionAction
    chosen: Optional[EntryView] = None
    reason: str = ""

    @classmethod
    def proceed(cls, chosen: EntryView) -> "Decision":
        return cls(DecisionAction.PROCEED, chosen)

    @classmethod
    def skip(cls, reason: str = "") -> "Decision":
        return cls(DecisionAction.SKIP, None, reason)

    @property
    def is_proceed(self) -> bool:
        return self.action == DecisionAction.PROCEED


class AmbiguityResolver(ABC):
    def __init__(self, expected_name: Optional[str] = None, skip_others: bool = False):
        self.expected_name = expected_name
        self.skip_others = skip_others

    def resolve(self, deposit: EntryView, candidates: Sequence[EntryView]) -> Decision:
        if not candidates:
            raise ValueError(f"No candidates to resolve for deposit #{deposit.entry_id}")

        if self.expected_name is not None and deposit.counterparty_name != self.expected_name:
            if self.skip_others:
                return Decision.skip("counterparty")
            if not self.confirm_other(deposit):
                return Decision.skip("counterparty")

        if len(candidates) == 1:
            return Decision.proceed(candidates[0])
        return self.choose(deposit, list(candidates))

    @abstractmethod
    def confirm_other(self, deposit: EntryView) -> bool:
        """Whether to go on with a deposit from an unexpected counterparty."""

    @abstractmethod
    def choose(self, deposit: EntryView, candidates: list[EntryView]) -> Decision:
        """Pick among two or more candidates, or skip."""


class AutomatedPolicy(AmbiguityResolver):
    """Resolver that never asks anyone."""

    def __init__(
        self,
        expected_name: Optional[str] = None,
        skip_others: bool = True,
        on_ambiguity: AmbiguityPolicy = AmbiguityPolicy.SKIP,
    ):
        super().__init__(expected_name, skip_others)
        self.on_ambiguity = AmbiguityPolicy(on_ambiguity)

    def confirm_other(self, deposit: EntryView) -> bool:
        return True

    def choose(self, deposit: EntryView, candidates: list[EntryView]) -> Decision:
        if self.on_ambiguity == AmbiguityPolicy.SKIP:
            return Decision.skip("ambiguous")
        if self.on_ambiguity == AmbiguityPolicy.FAIL:
            raise AmbiguityUnresolvedError(deposit.entry_id)
        # min() keeps the first of equally close candidates
        nearest = min(candidates, key=lambda c: abs((c.date - deposit.date).days))
        return Decision.proceed(nearest)


class InteractivePrompt(AmbiguityResolver):
    """Resolver that asks an operator through `ask` and `write` callables."""

    def __init__(
        self,
        expected_name: Optional[str] = None,
        skip_others: bool = False,
        ask: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ):
        super().__init__(expected_name, skip_others)
        self.ask = ask
        self.write = write

    def confirm_other(self, deposit: EntryView) -> bool:
        answer = self.ask(
            f'Should we process this transaction: {deposit.entry_id} with description '
            f'"{deposit.description}" and name "{deposit.counterparty_name}"? '
        )
        return (answer or "").strip().lower() == "y"

    def choose(self, deposit: EntryView, candidates: list[EntryView]) -> Decision:
        answer = self.ask("Skip error? ")
        if (answer or "").strip().lower() == "y":
            return Decision.skip("ambiguous")

        self.write("")
        for candidate in candidates:
            self.write(
                f'{candidate.entry_id}: {candidate.date.isoformat()} "{candidate.description}" '
                f"({candidate.currency_code} {candidate.display_amount})"
            )
        answer = (self.ask(f"Pick a transaction for {deposit.entry_id}: ") or "").strip()
        if not answer.isdigit():
            raise AmbiguityUnresolvedError(deposit.entry_id)

        picked = next((c for c in candidates if c.entry_id == int(answer)), None)
        if picked is None:
            raise AmbiguityUnresolvedError(
                deposit.entry_id,
                f"Withdrawal #{answer} is not a candidate for deposit #{deposit.entry_id}",
            )
        logger.debug("Operator picked withdrawal #%s for deposit #%s", picked.entry_id, deposit.entry_id)
        return Decision.proceed(picked)
