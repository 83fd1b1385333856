"""In-memory value-transfer substrate.

InMemoryLedger satisfies the domain Ledger protocol. It keeps integer
balances per account, applies each transfer completely or not at all, and
journals balances inside ``atomic()`` scopes so that a failing operation
leaves no trace. Scopes nest.

Receive hooks let a recipient run code while it is being paid, the way a
contract account's fallback would on-chain. A hook that raises aborts the
transfer (and the enclosing atomic scope).

Usage:
    ledger = InMemoryLedger({"buyer": 10})
    ledger.transfer("buyer", "escrow:1234", 1)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING

from p2p_escrow.domain.exceptions import InsufficientFundsError, InvalidAmountError
from p2p_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping

logger = get_logger(__name__)


class InMemoryLedger:
    """Journaled integer balances keyed by account name."""

    def __init__(self, balances: Mapping[str, int] | None = None) -> None:
        self._balances: dict[str, int] = {}
        self._hooks: dict[str, Callable[[str, int], None]] = {}
        for account, amount in (balances or {}).items():
            self._check_amount(amount)
            self._balances[account] = amount

    @property
    def balances(self) -> dict[str, int]:
        """Return a copy of every known account balance."""
        return dict(self._balances)

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def mint(self, account: str, amount: int) -> None:
        """Credit an account from outside the ledger (funding, faucets, tests)."""
        self._check_amount(amount)
        self._balances[account] = self.balance_of(account) + amount
        logger.debug("ledger.minted", account=account, amount=amount)

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        self._check_amount(amount)
        available = self.balance_of(sender)
        if available < amount:
            raise InsufficientFundsError(sender, amount, available)

        with self.atomic():
            self._balances[sender] = available - amount
            self._balances[recipient] = self.balance_of(recipient) + amount
            logger.debug("ledger.transfer", sender=sender, recipient=recipient, amount=amount)

            hook = self._hooks.get(recipient)
            if hook is not None:
                hook(sender, amount)

    def on_receive(self, account: str, hook: Callable[[str, int], None] | None) -> None:
        """Register (or clear, with None) a callback run when an account is paid."""
        if hook is None:
            self._hooks.pop(account, None)
        else:
            self._hooks[account] = hook

    @contextmanager
    def atomic(self) -> Iterator[None]:
        journal = dict(self._balances)
        try:
            yield
        except Exception:
            self._balances = journal
            logger.debug("ledger.rolled_back")
            raise

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmountError(amount)
