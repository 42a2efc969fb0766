"""
Transfer Matching Package

Finds deposits and withdrawals recorded on different accounts that are really
one internal transfer, and merges each pair into a single transfer entry.
"""

from .coordinator import (
    Reconciler,
    ReconciliationError,
    InvalidInputError,
    RunAbortedError,
)
from .merge import MergeExecutor
from .resolver import (
    AmbiguityPolicy,
    AmbiguityResolver,
    AmbiguityUnresolvedError,
    AutomatedPolicy,
    Decision,
    DecisionAction,
    InteractivePrompt,
)
from .window import WindowMatcher

__all__ = [
    "Reconciler",
    "ReconciliationError",
    "InvalidInputError",
    "RunAbortedError",
    "MergeExecutor",
    "AmbiguityPolicy",
    "AmbiguityResolver",
    "AmbiguityUnresolvedError",
    "AutomatedPolicy",
    "Decision",
    "DecisionAction",
    "InteractivePrompt",
    "WindowMatcher",
]
