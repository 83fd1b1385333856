"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from p2p_escrow.infrastructure.database.orm_models import (
    EscrowEventRecord,
    EscrowRecord,
    LedgerAccount,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable, Mapping

    from sqlalchemy.ext.asyncio import AsyncSession

    from p2p_escrow.domain.escrow import DomainEvent


class EscrowRepository:
    """Data access for escrow instances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: EscrowRecord) -> EscrowRecord:
        """Insert a new escrow."""
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_id(
        self,
        escrow_id: uuid.UUID,
        for_update: bool = False,
    ) -> EscrowRecord | None:
        """Fetch an escrow by its UUID, optionally row-locking it."""
        stmt = select(EscrowRecord).where(EscrowRecord.id == escrow_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_party(self, identity: str) -> list[EscrowRecord]:
        """Fetch all escrows where the identity is buyer, seller or agent."""
        result = await self._session.execute(
            select(EscrowRecord)
            .where(
                or_(
                    EscrowRecord.buyer == identity,
                    EscrowRecord.seller == identity,
                    EscrowRecord.escrow_agent == identity,
                )
            )
            .order_by(EscrowRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def save(self, record: EscrowRecord) -> EscrowRecord:
        """Flush changes made to a record (call AFTER the domain accepted them)."""
        record.updated_at = datetime.now(UTC)
        await self._session.flush()
        return record


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_many(
        self,
        escrow_id: uuid.UUID,
        events: Iterable[DomainEvent],
    ) -> list[EscrowEventRecord]:
        """Append domain events after the escrow's last recorded one."""
        result = await self._session.execute(
            select(func.coalesce(func.max(EscrowEventRecord.sequence), 0)).where(
                EscrowEventRecord.escrow_id == escrow_id
            )
        )
        sequence = result.scalar_one()

        records = []
        for evt in events:
            sequence += 1
            records.append(
                EscrowEventRecord(
                    escrow_id=escrow_id,
                    sequence=sequence,
                    event_type=evt.event_type.value,
                    old_state=evt.old_state.value if evt.old_state else None,
                    new_state=evt.new_state.value,
                    actor=evt.actor,
                    metadata_json=evt.metadata or None,
                )
            )
        self._session.add_all(records)
        await self._session.flush()
        return records

    async def get_by_escrow(self, escrow_id: uuid.UUID) -> list[EscrowEventRecord]:
        """Fetch all events for an escrow in the order they happened."""
        result = await self._session.execute(
            select(EscrowEventRecord)
            .where(EscrowEventRecord.escrow_id == escrow_id)
            .order_by(EscrowEventRecord.sequence.asc())
        )
        return list(result.scalars().all())


class LedgerRepository:
    """Data access for substrate account balances."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_balances(
        self,
        addresses: Iterable[str],
        for_update: bool = False,
    ) -> dict[str, int]:
        """Return balances for the given addresses; unknown accounts hold 0."""
        wanted = set(addresses)
        stmt = select(LedgerAccount).where(LedgerAccount.address.in_(wanted))
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        balances = dict.fromkeys(wanted, 0)
        for account in result.scalars().all():
            balances[account.address] = account.balance
        return balances

    async def set_balances(self, balances: Mapping[str, int]) -> None:
        """Write balances, creating accounts that do not exist yet."""
        now = datetime.now(UTC)
        for address, balance in balances.items():
            account = await self._session.get(LedgerAccount, address)
            if account is None:
                self._session.add(LedgerAccount(address=address, balance=balance, updated_at=now))
            else:
                account.balance = balance
                account.updated_at = now
        await self._session.flush()
