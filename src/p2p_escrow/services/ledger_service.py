"""Ledger Service — funds and inspects persisted substrate accounts.

The substrate itself is external to the escrow; this service is how
simulations and tests give parties a starting balance and read balances
back after an operation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from p2p_escrow.infrastructure.database.repositories import LedgerRepository
from p2p_escrow.infrastructure.ledger import InMemoryLedger
from p2p_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class LedgerService:
    """Credits and reads account balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._repo = LedgerRepository(session)

    async def fund_account(self, address: str, amount: int) -> int:
        """Credit an account and return its new balance."""
        balances = await self._repo.get_balances([address], for_update=True)
        ledger = InMemoryLedger(balances)
        ledger.mint(address, amount)
        await self._repo.set_balances(ledger.balances)

        balance = ledger.balance_of(address)
        logger.info("ledger.account_funded", address=address, amount=amount, balance=balance)
        return balance

    async def balance_of(self, address: str) -> int:
        balances = await self._repo.get_balances([address])
        return balances[address]

    async def balances(self, addresses: Iterable[str]) -> dict[str, int]:
        return await self._repo.get_balances(addresses)
