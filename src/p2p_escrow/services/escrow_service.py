"""Escrow Service — runs escrow operations against persisted state.

This is the application layer that coordinates between:
    - Domain aggregate (Escrow, with its state machine guard)
    - Repositories (escrow rows, audit events, ledger balances)
    - The in-memory ledger used as the unit of work for balances

Each operation loads the escrow row (row-locked where the database supports
it) and the balances of every account it can touch, runs the domain
operation, then writes back the snapshot, the changed balances and the new
audit events. A rejected operation writes nothing. Committing is the
session owner's responsibility.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

from p2p_escrow.config import get_settings
from p2p_escrow.domain.enums import EscrowState
from p2p_escrow.domain.escrow import Escrow, EscrowSnapshot, Settlement
from p2p_escrow.domain.exceptions import EscrowError, EscrowNotFoundError
from p2p_escrow.domain.state_machine import EscrowStateMachine
from p2p_escrow.infrastructure.database.orm_models import EscrowRecord
from p2p_escrow.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    LedgerRepository,
)
from p2p_escrow.infrastructure.ledger import InMemoryLedger
from p2p_escrow.logging_config import bound_context, get_logger
from p2p_escrow.schemas.escrow import (
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    SettlementResponse,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from p2p_escrow.schemas.escrow import OpenEscrowRequest

logger = get_logger(__name__)

T = TypeVar("T")

# Fired by the escrow itself once both verification flags are set
INTERNAL_EVENTS = frozenset({"both_parties_verified"})


class EscrowService:
    """Manages the escrow lifecycle on top of the database."""

    def __init__(self, session: AsyncSession, clock: Callable[[], float] = time.time) -> None:
        self._session = session
        # Wall clock: deposit timestamps are persisted and must survive restarts.
        self._clock = clock
        self._escrow_repo = EscrowRepository(session)
        self._event_repo = EventRepository(session)
        self._ledger_repo = LedgerRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def open_escrow(self, request: OpenEscrowRequest) -> EscrowResponse:
        """Create a new escrow in AWAITING_VERIFICATION with the creator as agent."""
        window = request.payment_window_seconds
        if window is None:
            window = get_settings().escrow_payment_window_seconds

        escrow = Escrow.create(
            request.creator,
            request.buyer,
            request.seller,
            InMemoryLedger(),
            payment_window=window,
            clock=self._clock,
        )
        now = datetime.now(UTC)
        record = EscrowRecord(id=escrow.escrow_id, created_at=now, updated_at=now)
        self._apply_snapshot(record, escrow.snapshot())
        await self._escrow_repo.create(record)
        await self._event_repo.record_many(record.id, escrow.drain_events())

        logger.info(
            "escrow.opened",
            escrow_id=str(record.id),
            agent=request.creator,
            buyer=request.buyer,
            seller=request.seller,
            payment_window=window,
        )
        return EscrowResponse.model_validate(record)

    # ------------------------------------------------------------------
    # Verification & custody
    # ------------------------------------------------------------------

    async def buyer_verify(
        self, escrow_id: uuid.UUID, caller: str, value: int
    ) -> EscrowResponse:
        """Buyer verification transfer."""
        record, _ = await self._execute(
            escrow_id, caller, "buyer_verify", lambda e: e.buyer_verify(caller, value)
        )
        return EscrowResponse.model_validate(record)

    async def seller_verify(
        self, escrow_id: uuid.UUID, caller: str, value: int
    ) -> EscrowResponse:
        """Seller verification transfer."""
        record, _ = await self._execute(
            escrow_id, caller, "seller_verify", lambda e: e.seller_verify(caller, value)
        )
        return EscrowResponse.model_validate(record)

    async def seller_deposit(
        self, escrow_id: uuid.UUID, caller: str, value: int
    ) -> EscrowResponse:
        """Seller places the principal into custody."""
        record, _ = await self._execute(
            escrow_id, caller, "seller_deposit", lambda e: e.seller_deposit(caller, value)
        )
        return EscrowResponse.model_validate(record)

    async def confirm_payment_received(
        self, escrow_id: uuid.UUID, caller: str
    ) -> EscrowResponse:
        """Seller confirms the off-channel payment."""
        record, _ = await self._execute(
            escrow_id,
            caller,
            "confirm_payment_received",
            lambda e: e.confirm_payment_received(caller),
        )
        return EscrowResponse.model_validate(record)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def release_funds_to_buyer(
        self, escrow_id: uuid.UUID, caller: str
    ) -> SettlementResponse:
        """Agent releases the principal to the buyer."""
        record, settlement = await self._execute(
            escrow_id,
            caller,
            "release_funds_to_buyer",
            lambda e: e.release_funds_to_buyer(caller),
        )
        return self._settlement_response(record, settlement)

    async def refund_seller(self, escrow_id: uuid.UUID, caller: str) -> SettlementResponse:
        """Agent refunds the principal to the seller."""
        record, settlement = await self._execute(
            escrow_id, caller, "refund_seller", lambda e: e.refund_seller(caller)
        )
        return self._settlement_response(record, settlement)

    async def reclaim_expired_deposit(
        self, escrow_id: uuid.UUID, caller: str
    ) -> SettlementResponse:
        """Seller reclaims the deposit after the payment window elapsed."""
        record, settlement = await self._execute(
            escrow_id,
            caller,
            "reclaim_expired_deposit",
            lambda e: e.reclaim_expired_deposit(caller),
        )
        return self._settlement_response(record, settlement)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_escrow(self, escrow_id: uuid.UUID) -> EscrowResponse:
        """Get an escrow or raise."""
        record = await self._get_record_or_raise(escrow_id)
        return EscrowResponse.model_validate(record)

    async def get_status(self, escrow_id: uuid.UUID) -> EscrowStatusResponse:
        """Get escrow state, pooled balance and the events a caller can trigger next."""
        record = await self._get_record_or_raise(escrow_id)
        balances = await self._ledger_repo.get_balances([record.address])
        escrow = Escrow(self._to_snapshot(record), InMemoryLedger(balances), clock=self._clock)
        sm = EscrowStateMachine(current_status=record.state)
        allowed = [
            name
            for name in sm.get_allowed_events()
            if name not in INTERNAL_EVENTS
            and not (name == "payment_window_expired" and escrow.payment_deadline is None)
        ]
        return EscrowStatusResponse(
            escrow_id=record.id,
            state=record.state,
            amount=record.amount,
            balance=escrow.balance,
            funds_released=record.funds_released,
            payment_deadline=escrow.payment_deadline,
            allowed_events=allowed,
        )

    async def get_events(self, escrow_id: uuid.UUID) -> list[EscrowEventResponse]:
        """Get the audit trail in order."""
        await self._get_record_or_raise(escrow_id)
        events = await self._event_repo.get_by_escrow(escrow_id)
        return [EscrowEventResponse.model_validate(evt) for evt in events]

    async def list_for_party(self, identity: str) -> list[EscrowResponse]:
        """List escrows in which an identity takes part."""
        records = await self._escrow_repo.get_by_party(identity)
        return [EscrowResponse.model_validate(r) for r in records]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _execute(
        self,
        escrow_id: uuid.UUID,
        caller: str,
        operation: str,
        action: Callable[[Escrow], T],
    ) -> tuple[EscrowRecord, T]:
        """Run one domain operation as a unit of work.

        Raises whatever EscrowError the domain raised, after logging it;
        nothing is written in that case.
        """
        with bound_context(escrow_id=str(escrow_id), operation=operation):
            record = await self._get_record_or_raise(escrow_id, for_update=True)
            accounts = {record.address, record.buyer, record.seller, caller}
            balances = await self._ledger_repo.get_balances(accounts, for_update=True)
            ledger = InMemoryLedger(balances)
            escrow = Escrow(self._to_snapshot(record), ledger, clock=self._clock)

            try:
                result = action(escrow)
            except EscrowError as exc:
                logger.warning(
                    "escrow.rejected",
                    caller=caller,
                    state=record.state,
                    code=exc.code,
                    error=exc.message,
                )
                raise

            old_state = record.state
            self._apply_snapshot(record, escrow.snapshot())
            await self._escrow_repo.save(record)

            changed = {
                address: balance
                for address, balance in ledger.balances.items()
                if balances.get(address) != balance
            }
            if changed:
                await self._ledger_repo.set_balances(changed)
            await self._event_repo.record_many(record.id, escrow.drain_events())

            logger.info(
                "escrow.operation_applied",
                caller=caller,
                old_state=old_state,
                new_state=record.state,
                balance=ledger.balance_of(record.address),
            )
            return record, result

    async def _get_record_or_raise(
        self, escrow_id: uuid.UUID, for_update: bool = False
    ) -> EscrowRecord:
        record = await self._escrow_repo.get_by_id(escrow_id, for_update=for_update)
        if record is None:
            raise EscrowNotFoundError(str(escrow_id))
        return record

    @staticmethod
    def _to_snapshot(record: EscrowRecord) -> EscrowSnapshot:
        return EscrowSnapshot(
            escrow_id=record.id,
            buyer=record.buyer,
            seller=record.seller,
            escrow_agent=record.escrow_agent,
            address=record.address,
            amount=record.amount,
            seller_deposited=record.seller_deposited,
            buyer_verified=record.buyer_verified,
            seller_verified=record.seller_verified,
            inr_received=record.inr_received,
            funds_released=record.funds_released,
            state=EscrowState(record.state),
            payment_window=record.payment_window_seconds,
            deposited_at=record.deposited_at,
        )

    @staticmethod
    def _apply_snapshot(record: EscrowRecord, snapshot: EscrowSnapshot) -> None:
        record.buyer = snapshot.buyer
        record.seller = snapshot.seller
        record.escrow_agent = snapshot.escrow_agent
        record.address = snapshot.address
        record.amount = snapshot.amount
        record.seller_deposited = snapshot.seller_deposited
        record.buyer_verified = snapshot.buyer_verified
        record.seller_verified = snapshot.seller_verified
        record.inr_received = snapshot.inr_received
        record.funds_released = snapshot.funds_released
        record.state = snapshot.state.value
        record.payment_window_seconds = snapshot.payment_window
        record.deposited_at = snapshot.deposited_at

    @staticmethod
    def _settlement_response(
        record: EscrowRecord, settlement: Settlement
    ) -> SettlementResponse:
        return SettlementResponse(
            escrow_id=record.id,
            state=record.state,
            recipient=settlement.recipient,
            principal=settlement.principal,
            buyer_residual=settlement.buyer_residual,
            seller_residual=settlement.seller_residual,
        )
