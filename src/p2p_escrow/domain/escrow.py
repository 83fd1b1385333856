"""Escrow aggregate — the guarded lifecycle of one buyer/seller exchange.

An Escrow holds custody of value on a Ledger while a buyer and a seller go
through identity verification, the seller's deposit, the off-channel (INR)
payment leg, and the agent's final settlement. Every public operation:

    1. checks the caller's role, the current state and the operation's
       precondition, all before touching anything;
    2. applies its effects inside an atomic scope that also covers the
       ledger, so an exception half-way through restores every field,
       every balance and every pending audit event.

Settlement commits the guard state (funds_released, COMPLETE) before the
first outbound transfer, so a recipient that calls back into the escrow
while being paid sees a settled instance and is rejected.

Residual pooled balance (verification fees) is split at settlement: half of
what remains to the buyer, then everything that remains to the seller. The
split ignores who paid which fee.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from p2p_escrow.domain.enums import EscrowState, EventType, Role
from p2p_escrow.domain.exceptions import (
    AlreadySettledError,
    DepositMissingError,
    InvalidAmountError,
    InvalidStateError,
    PaymentNotConfirmedError,
    PaymentWindowOpenError,
    UnauthorizedCallerError,
    ZeroValueTransferError,
)
from p2p_escrow.domain.state_machine import validate_transition

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from p2p_escrow.domain.ledger_protocol import Ledger

SYSTEM_ACTOR = "SYSTEM"


def escrow_address(escrow_id: uuid.UUID) -> str:
    """Return the ledger account that holds an escrow's pooled balance."""
    return f"escrow:{escrow_id}"


@dataclass(frozen=True)
class EscrowSnapshot:
    """Complete persisted state of one escrow instance.

    Attributes:
        escrow_id: Identity of the instance.
        buyer / seller: Counterparty identities, fixed at creation.
        escrow_agent: The creator; sole caller allowed to settle.
        address: Ledger account holding the pooled balance.
        amount: Principal deposited by the seller (0 until deposit).
        payment_window: Seconds after deposit before the seller may reclaim.
        deposited_at: Clock reading taken at deposit.
    """

    escrow_id: uuid.UUID
    buyer: str
    seller: str
    escrow_agent: str
    address: str
    amount: int = 0
    seller_deposited: bool = False
    buyer_verified: bool = False
    seller_verified: bool = False
    inr_received: bool = False
    funds_released: bool = False
    state: EscrowState = EscrowState.AWAITING_VERIFICATION
    payment_window: float | None = None
    deposited_at: float | None = None


@dataclass(frozen=True)
class DomainEvent:
    """Audit record produced by an accepted operation."""

    event_type: EventType
    old_state: EscrowState | None
    new_state: EscrowState
    actor: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Settlement:
    """Outbound transfers made by a terminal transition."""

    recipient: str
    principal: int
    buyer_residual: int
    seller_residual: int

    def to_dict(self) -> dict:
        """Serialize for storage in the event metadata JSON column."""
        return {
            "recipient": self.recipient,
            "principal": self.principal,
            "buyer_residual": self.buyer_residual,
            "seller_residual": self.seller_residual,
        }


class Escrow:
    """One escrow instance bound to a ledger.

    Usage:
        escrow = Escrow.create("agent", "buyer", "seller", ledger)
        escrow.buyer_verify("buyer", 1)
        escrow.seller_verify("seller", 1)
        escrow.seller_deposit("seller", 100)
        escrow.confirm_payment_received("seller")
        settlement = escrow.release_funds_to_buyer("agent")

    An existing instance is rebuilt from storage with
    ``Escrow(snapshot, ledger)``.
    """

    def __init__(
        self,
        snapshot: EscrowSnapshot,
        ledger: Ledger,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._data = snapshot
        self._ledger = ledger
        self._clock = clock
        self._events: list[DomainEvent] = []

    @classmethod
    def create(
        cls,
        creator: str,
        buyer: str,
        seller: str,
        ledger: Ledger,
        *,
        payment_window: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        escrow_id: uuid.UUID | None = None,
    ) -> Escrow:
        """Create a new escrow with the creator bound as escrow agent."""
        escrow_id = escrow_id or uuid.uuid4()
        snapshot = EscrowSnapshot(
            escrow_id=escrow_id,
            buyer=buyer,
            seller=seller,
            escrow_agent=creator,
            address=escrow_address(escrow_id),
            payment_window=payment_window,
        )
        escrow = cls(snapshot, ledger, clock)
        escrow._record(
            EventType.ESCROW_CREATED,
            None,
            EscrowState.AWAITING_VERIFICATION,
            creator,
            {"buyer": buyer, "seller": seller},
        )
        return escrow

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def escrow_id(self) -> uuid.UUID:
        return self._data.escrow_id

    @property
    def address(self) -> str:
        return self._data.address

    @property
    def buyer(self) -> str:
        return self._data.buyer

    @property
    def seller(self) -> str:
        return self._data.seller

    @property
    def escrow_agent(self) -> str:
        return self._data.escrow_agent

    @property
    def amount(self) -> int:
        return self._data.amount

    @property
    def state(self) -> EscrowState:
        return self._data.state

    @property
    def buyer_verified(self) -> bool:
        return self._data.buyer_verified

    @property
    def seller_verified(self) -> bool:
        return self._data.seller_verified

    @property
    def seller_deposited(self) -> bool:
        return self._data.seller_deposited

    @property
    def inr_received(self) -> bool:
        return self._data.inr_received

    @property
    def funds_released(self) -> bool:
        return self._data.funds_released

    @property
    def balance(self) -> int:
        """Pooled value currently held by the escrow on the ledger."""
        return self._ledger.balance_of(self.address)

    @property
    def payment_deadline(self) -> float | None:
        """Clock reading after which the seller may reclaim the deposit."""
        if self._data.payment_window is None or self._data.deposited_at is None:
            return None
        return self._data.deposited_at + self._data.payment_window

    @property
    def is_closed(self) -> bool:
        return self.state == EscrowState.COMPLETE

    @property
    def pending_events(self) -> tuple[DomainEvent, ...]:
        return tuple(self._events)

    def snapshot(self) -> EscrowSnapshot:
        return self._data

    def drain_events(self) -> list[DomainEvent]:
        """Return and forget the audit events produced since the last drain."""
        events, self._events = self._events, []
        return events

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def buyer_verify(self, caller: str, value: int) -> None:
        """Buyer proves control of its account with a non-zero transfer."""
        self._verify(caller, value, Role.BUYER, "buyer_verify")

    def seller_verify(self, caller: str, value: int) -> None:
        """Seller proves control of its account with a non-zero transfer."""
        self._verify(caller, value, Role.SELLER, "seller_verify")

    def _verify(self, caller: str, value: int, role: Role, operation: str) -> None:
        self._require_caller(caller, role, operation)
        self._require_state(EscrowState.AWAITING_VERIFICATION, operation)
        self._require_value(value, operation)

        if role == Role.BUYER:
            flag, event_type = "buyer_verified", EventType.BUYER_VERIFIED
        else:
            flag, event_type = "seller_verified", EventType.SELLER_VERIFIED

        with self._atomic():
            self._ledger.transfer(caller, self.address, value)
            self._update(**{flag: True})
            self._record(event_type, self.state, self.state, caller, {"value": value})
            self._check_verification()

    def _check_verification(self) -> None:
        """Advance to AWAITING_DEPOSIT once both parties have verified.

        Idempotent: does nothing unless the escrow is still awaiting
        verification and both flags are set.
        """
        if self.state != EscrowState.AWAITING_VERIFICATION:
            return
        if not (self.buyer_verified and self.seller_verified):
            return
        next_state = self._next_state("both_parties_verified", "_check_verification")
        self._update(state=next_state)
        self._record(
            EventType.VERIFICATION_COMPLETED,
            EscrowState.AWAITING_VERIFICATION,
            next_state,
            SYSTEM_ACTOR,
        )

    # ------------------------------------------------------------------
    # Custody
    # ------------------------------------------------------------------

    def seller_deposit(self, caller: str, value: int) -> None:
        """Seller places the principal into custody."""
        operation = "seller_deposit"
        self._require_caller(caller, Role.SELLER, operation)
        self._require_state(EscrowState.AWAITING_DEPOSIT, operation)
        self._require_value(value, operation)
        next_state = self._next_state("seller_deposits", operation)

        with self._atomic():
            self._ledger.transfer(caller, self.address, value)
            old_state = self.state
            self._update(
                amount=value,
                seller_deposited=True,
                deposited_at=self._clock(),
                state=next_state,
            )
            self._record(
                EventType.SELLER_DEPOSITED, old_state, next_state, caller, {"amount": value}
            )

    def confirm_payment_received(self, caller: str) -> None:
        """Seller confirms the off-channel payment arrived."""
        operation = "confirm_payment_received"
        self._require_caller(caller, Role.SELLER, operation)
        self._require_state(EscrowState.AWAITING_PAYMENT, operation)
        next_state = self._next_state("payment_confirmed", operation)

        old_state = self.state
        self._update(inr_received=True, state=next_state)
        self._record(EventType.PAYMENT_CONFIRMED, old_state, next_state, caller)

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    def release_funds_to_buyer(self, caller: str) -> Settlement:
        """Agent pays the principal to the buyer and closes the escrow."""
        operation = "release_funds_to_buyer"
        self._require_caller(caller, Role.ESCROW_AGENT, operation)
        self._require_unsettled()
        self._require_state(EscrowState.AWAITING_CONFIRMATION, operation)
        if not self.inr_received:
            raise PaymentNotConfirmedError()
        return self._settle(
            caller, self.buyer, "funds_released", EventType.FUNDS_RELEASED, operation
        )

    def refund_seller(self, caller: str) -> Settlement:
        """Agent returns the principal to the seller and closes the escrow."""
        operation = "refund_seller"
        self._require_caller(caller, Role.ESCROW_AGENT, operation)
        self._require_unsettled()
        if self.state == EscrowState.COMPLETE:
            raise InvalidStateError(self.state.value, operation)
        if not self.seller_deposited:
            raise DepositMissingError()
        return self._settle(
            caller, self.seller, "seller_refunded", EventType.SELLER_REFUNDED, operation
        )

    def reclaim_expired_deposit(self, caller: str) -> Settlement:
        """Seller takes the deposit back once the payment window has elapsed."""
        operation = "reclaim_expired_deposit"
        self._require_caller(caller, Role.SELLER, operation)
        self._require_unsettled()
        self._require_state(EscrowState.AWAITING_PAYMENT, operation)
        deadline = self.payment_deadline
        if deadline is None or self._clock() < deadline:
            raise PaymentWindowOpenError(deadline)
        return self._settle(
            caller,
            self.seller,
            "payment_window_expired",
            EventType.PAYMENT_WINDOW_EXPIRED,
            operation,
        )

    def _settle(
        self,
        caller: str,
        recipient: str,
        event_name: str,
        event_type: EventType,
        operation: str,
    ) -> Settlement:
        next_state = self._next_state(event_name, operation)
        principal = self.amount

        with self._atomic():
            old_state = self.state
            # Guard state first: re-entrant calls during a transfer must see COMPLETE.
            self._update(funds_released=True, state=next_state)
            self._ledger.transfer(self.address, recipient, principal)
            buyer_residual, seller_residual = self._distribute_residual()
            settlement = Settlement(
                recipient=recipient,
                principal=principal,
                buyer_residual=buyer_residual,
                seller_residual=seller_residual,
            )
            self._record(event_type, old_state, next_state, caller, settlement.to_dict())
        return settlement

    def _distribute_residual(self) -> tuple[int, int]:
        """Pay out pooled verification fees: half to the buyer, the rest to the seller."""
        buyer_share = self.balance // 2
        if buyer_share:
            self._ledger.transfer(self.address, self.buyer, buyer_share)
        seller_share = self.balance
        if seller_share:
            self._ledger.transfer(self.address, self.seller, seller_share)
        return buyer_share, seller_share

    # ------------------------------------------------------------------
    # Guards & helpers
    # ------------------------------------------------------------------

    def _require_caller(self, caller: str, role: Role, operation: str) -> None:
        expected = {
            Role.BUYER: self.buyer,
            Role.SELLER: self.seller,
            Role.ESCROW_AGENT: self.escrow_agent,
        }[role]
        if caller != expected:
            raise UnauthorizedCallerError(caller, role.value, operation)

    def _require_state(self, required: EscrowState, operation: str) -> None:
        if self.state != required:
            raise InvalidStateError(self.state.value, operation)

    def _require_unsettled(self) -> None:
        if self.funds_released:
            raise AlreadySettledError()

    @staticmethod
    def _require_value(value: int, operation: str) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidAmountError(value)
        if value == 0:
            raise ZeroValueTransferError(operation)

    def _next_state(self, event_name: str, operation: str) -> EscrowState:
        try:
            return EscrowState(validate_transition(self.state.value, event_name))
        except TransitionNotAllowed as err:
            raise InvalidStateError(self.state.value, operation) from err

    def _update(self, **changes: Any) -> None:
        self._data = replace(self._data, **changes)

    def _record(
        self,
        event_type: EventType,
        old_state: EscrowState | None,
        new_state: EscrowState,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        self._events.append(
            DomainEvent(
                event_type=event_type,
                old_state=old_state,
                new_state=new_state,
                actor=actor,
                metadata=metadata or {},
            )
        )

    @contextmanager
    def _atomic(self) -> Iterator[None]:
        """Apply effects all-or-nothing across escrow fields, events and ledger."""
        saved = self._data
        pending = len(self._events)
        try:
            with self._ledger.atomic():
                yield
        except Exception:
            self._data = saved
            del self._events[pending:]
            raise
