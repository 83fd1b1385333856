"""Domain enumerations for the P2P escrow.

These enums define the canonical states, roles and audit event types used
throughout the system. They are framework-agnostic (no SQLAlchemy imports).
"""

import enum


class EscrowState(enum.StrEnum):
    """Lifecycle states of an escrow instance.

    The happy path is strictly ordered; COMPLETE is terminal.
    See domain/state_machine.py for the transition table.
    """

    AWAITING_VERIFICATION = "AWAITING_VERIFICATION"
    AWAITING_DEPOSIT = "AWAITING_DEPOSIT"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    COMPLETE = "COMPLETE"


class Role(enum.StrEnum):
    """Parties that may invoke escrow operations."""

    BUYER = "BUYER"
    SELLER = "SELLER"
    ESCROW_AGENT = "ESCROW_AGENT"


class EventType(enum.StrEnum):
    """Types of audit events recorded for every accepted operation.

    Stored append-only in the escrow_events table.
    """

    # Setup
    ESCROW_CREATED = "ESCROW_CREATED"

    # Verification phase
    BUYER_VERIFIED = "BUYER_VERIFIED"
    SELLER_VERIFIED = "SELLER_VERIFIED"
    VERIFICATION_COMPLETED = "VERIFICATION_COMPLETED"

    # Custody
    SELLER_DEPOSITED = "SELLER_DEPOSITED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"

    # Settlement
    FUNDS_RELEASED = "FUNDS_RELEASED"
    SELLER_REFUNDED = "SELLER_REFUNDED"
    PAYMENT_WINDOW_EXPIRED = "PAYMENT_WINDOW_EXPIRED"
