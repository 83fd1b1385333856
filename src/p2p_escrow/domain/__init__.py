"""Domain layer — the escrow state machine with zero framework dependencies."""

from p2p_escrow.domain.enums import (
    EscrowState,
    EventType,
    Role,
)
from p2p_escrow.domain.escrow import (
    DomainEvent,
    Escrow,
    EscrowSnapshot,
    Settlement,
    escrow_address,
)
from p2p_escrow.domain.exceptions import (
    AlreadySettledError,
    DepositMissingError,
    EscrowError,
    EscrowNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidStateError,
    LedgerError,
    PaymentNotConfirmedError,
    PaymentWindowOpenError,
    UnauthorizedCallerError,
    ZeroValueTransferError,
)
from p2p_escrow.domain.ledger_protocol import Ledger
from p2p_escrow.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)

__all__ = [
    "EscrowState",
    "EventType",
    "Role",
    "DomainEvent",
    "Escrow",
    "EscrowSnapshot",
    "Settlement",
    "escrow_address",
    "AlreadySettledError",
    "DepositMissingError",
    "EscrowError",
    "EscrowNotFoundError",
    "InsufficientFundsError",
    "InvalidAmountError",
    "InvalidStateError",
    "LedgerError",
    "PaymentNotConfirmedError",
    "PaymentWindowOpenError",
    "UnauthorizedCallerError",
    "ZeroValueTransferError",
    "Ledger",
    "EscrowStateMachine",
    "validate_transition",
]
