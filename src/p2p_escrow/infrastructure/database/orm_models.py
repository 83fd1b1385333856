"""SQLAlchemy 2.0 ORM models for the P2P escrow.

Three tables:
    1. escrows          — One row per escrow instance (identities, flags, state).
    2. escrow_events    — Append-only audit log of every accepted operation.
    3. ledger_accounts  — Balances of the value-transfer substrate.

Design decisions:
    - UUIDs as primary keys for escrows and events.
    - Integer amounts (BigInteger): value is an unsigned count of base units.
    - Portable column types (Uuid, JSON) so PostgreSQL and SQLite both work.
    - CHECK constraints on state and on non-negative amounts/balances.
    - escrow_events carries a per-escrow sequence number; ordering never
      depends on timestamp resolution.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. escrows
# ---------------------------------------------------------------------------
class EscrowRecord(Base):
    """Persisted state of one escrow instance."""

    __tablename__ = "escrows"

    # --- Primary Key ---
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Participants ---
    buyer: Mapped[str] = mapped_column(String(128), nullable=False)
    seller: Mapped[str] = mapped_column(String(128), nullable=False)
    escrow_agent: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Creator identity; sole caller allowed to settle",
    )
    address: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Ledger account holding the pooled balance",
    )

    # --- Custody ---
    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Principal deposited by the seller (0 until deposit)",
    )

    # --- Monotonic flags ---
    seller_deposited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    buyer_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seller_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    inr_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    funds_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- State (Enum-guarded) ---
    state: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="AWAITING_VERIFICATION",
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    # --- Payment timeout ---
    payment_window_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    deposited_at: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
        comment="Epoch seconds at deposit; base of the payment deadline",
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "state IN ('AWAITING_VERIFICATION', 'AWAITING_DEPOSIT', "
            "'AWAITING_PAYMENT', 'AWAITING_CONFIRMATION', 'COMPLETE')",
            name="ck_escrow_valid_state",
        ),
        CheckConstraint("amount >= 0", name="ck_escrow_non_negative_amount"),
        Index("idx_escrow_state", "state"),
        Index("idx_escrow_buyer", "buyer"),
        Index("idx_escrow_seller", "seller"),
    )

    def __repr__(self) -> str:
        return f"<EscrowRecord id={self.id} state={self.state} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 2. escrow_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class EscrowEventRecord(Base):
    """Immutable audit record of an accepted escrow operation.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "escrow_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    escrow_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escrows.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position of the event within its escrow's history (1-based)",
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_state: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_state: Mapped[str] = mapped_column(String(32), nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        default=None,
        comment="Operation context: transferred value, settlement payouts",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("escrow_id", "sequence", name="uq_event_escrow_sequence"),
        Index("idx_event_escrow", "escrow_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowEventRecord escrow={self.escrow_id} #{self.sequence} "
            f"type={self.event_type} {self.old_state}->{self.new_state}>"
        )


# ---------------------------------------------------------------------------
# 3. ledger_accounts
# ---------------------------------------------------------------------------
class LedgerAccount(Base):
    """Balance of one account on the value-transfer substrate."""

    __tablename__ = "ledger_accounts"

    address: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_ledger_non_negative_balance"),)

    def __repr__(self) -> str:
        return f"<LedgerAccount {self.address} balance={self.balance}>"
