"""Ledger Protocol.

Defines the interface the value-transfer substrate must implement. This is a
Protocol (structural subtyping) so concrete ledgers don't need to inherit
from a base class — they just need to match the shape.

The domain layer never touches balances directly: it only asks the ledger
to move value and to report how much an account holds.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractContextManager


@runtime_checkable
class Ledger(Protocol):
    """Protocol that all value-transfer substrates must satisfy.

    Concrete implementations:
        - infrastructure/ledger.py  (InMemoryLedger, journaled, with receive hooks)
    """

    def balance_of(self, account: str) -> int:
        """Return the balance held by an account (0 for unknown accounts)."""
        ...

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        """Move value between accounts.

        The transfer either applies completely or raises; there is no
        partially applied transfer from the caller's perspective.

        Raises:
            InvalidAmountError: If amount is negative or not an integer.
            InsufficientFundsError: If the sender cannot cover the amount.
        """
        ...

    def atomic(self) -> AbstractContextManager[None]:
        """Return a scope whose transfers are all undone if it exits with an exception."""
        ...
