"""Domain exceptions for the P2P escrow.

Every rejected operation surfaces exactly one of these. They are raised
before any mutation or value transfer, so a caller that catches one can rely
on the escrow and the ledger being untouched.
"""

from __future__ import annotations


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Guard Errors ---


class UnauthorizedCallerError(EscrowError):
    """Raised when the caller is not the role the operation requires."""

    def __init__(self, caller: str, required_role: str, operation: str) -> None:
        super().__init__(
            message=f"{operation} requires {required_role}; caller {caller!r} is not authorized",
            code="UNAUTHORIZED_CALLER",
        )
        self.caller = caller
        self.required_role = required_role
        self.operation = operation


class InvalidStateError(EscrowError):
    """Raised when an operation is invoked in a state that does not permit it.

    Example: seller_deposit while still AWAITING_VERIFICATION.
    """

    def __init__(self, current_state: str, operation: str) -> None:
        super().__init__(
            message=f"{operation} is not allowed in state {current_state}",
            code="INVALID_STATE",
        )
        self.current_state = current_state
        self.operation = operation


class ZeroValueTransferError(EscrowError):
    """Raised when a verification or deposit call carries no value."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            message=f"{operation} requires a non-zero value transfer",
            code="ZERO_VALUE_TRANSFER",
        )
        self.operation = operation


class PaymentNotConfirmedError(EscrowError):
    """Raised when release is attempted before the seller confirmed receipt."""

    def __init__(self) -> None:
        super().__init__(
            message="Seller has not confirmed receipt of the off-channel payment",
            code="PAYMENT_NOT_CONFIRMED",
        )


class AlreadySettledError(EscrowError):
    """Raised when a settlement is attempted after funds were already paid out."""

    def __init__(self) -> None:
        super().__init__(
            message="Escrow funds have already been settled",
            code="ALREADY_SETTLED",
        )


class DepositMissingError(EscrowError):
    """Raised when a refund is attempted before the seller deposited."""

    def __init__(self) -> None:
        super().__init__(
            message="Seller has not deposited any funds",
            code="DEPOSIT_MISSING",
        )


class PaymentWindowOpenError(EscrowError):
    """Raised when a deposit is reclaimed before the payment window elapsed."""

    def __init__(self, deadline: float | None) -> None:
        if deadline is None:
            message = "No payment window is configured for this escrow"
        else:
            message = f"Payment window is still open until {deadline}"
        super().__init__(message=message, code="PAYMENT_WINDOW_OPEN")
        self.deadline = deadline


# --- Lookup Errors ---


class EscrowNotFoundError(EscrowError):
    """Raised when an escrow id does not exist."""

    def __init__(self, escrow_id: str) -> None:
        super().__init__(
            message=f"Escrow not found: {escrow_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.escrow_id = escrow_id


# --- Ledger Errors ---


class LedgerError(EscrowError):
    """Raised when the value-transfer substrate refuses a transfer."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message=message, code=code)


class InsufficientFundsError(LedgerError):
    """Raised when the sending account cannot cover a transfer."""

    def __init__(self, account: str, required: int, available: int) -> None:
        super().__init__(
            message=f"Insufficient funds in {account}: required {required}, available {available}",
            code="INSUFFICIENT_FUNDS",
        )
        self.account = account
        self.required = required
        self.available = available


class InvalidAmountError(LedgerError):
    """Raised for negative or non-integer transfer amounts."""

    def __init__(self, amount: object) -> None:
        super().__init__(
            message=f"Transfer amount must be a non-negative integer, got {amount!r}",
            code="INVALID_AMOUNT",
        )
        self.amount = amount
