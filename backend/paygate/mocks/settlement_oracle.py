"""
Mock Settlement Oracle

Decides the outcome of settling a pending transaction. Settlement is
simulated: the default oracle completes ~90% of transactions at random.

Any object with a `decide(transaction) -> "completed" | "failed"` method
can stand in, so tests inject deterministic outcomes.
"""
import random
from typing import Iterable, List, Optional, Protocol

from ..models.transactions import SettlementOutcome, Transaction

DEFAULT_SUCCESS_RATE = 0.9


class SettlementOracle(Protocol):
    """Payment outcome strategy."""

    def decide(self, transaction: Transaction) -> SettlementOutcome:
        ...


class RandomSettlementOracle:
    """
    Pseudo-random outcome with P(completed) = success_rate.

    Mock Behavior:
    - One draw per call
    - Pass a seeded random.Random for reproducible sequences
    """

    def __init__(self, success_rate: float = DEFAULT_SUCCESS_RATE, rng: Optional[random.Random] = None):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    def decide(self, transaction: Transaction) -> SettlementOutcome:
        return "completed" if self._rng.random() < self.success_rate else "failed"


class FixedSettlementOracle:
    """
    Deterministic outcomes for tests.

    Mock Behavior:
    - Single outcome: returned on every call
    - Sequence: returned in order, last one repeats
    """

    def __init__(self, outcomes: Iterable[SettlementOutcome] = ("completed",)):
        self._outcomes: List[SettlementOutcome] = list(outcomes)
        if not self._outcomes:
            raise ValueError("At least one outcome is required")
        self.calls = 0

    def decide(self, transaction: Transaction) -> SettlementOutcome:
        outcome = self._outcomes[min(self.calls, len(self._outcomes) - 1)]
        self.calls += 1
        return outcome
