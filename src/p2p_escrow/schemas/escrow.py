"""Pydantic schemas for the escrow service boundary.

These schemas define the request/response shapes handed to and returned by
EscrowService. They are separate from the ORM models to keep the service's
callers independent of the database layer.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OpenEscrowRequest(BaseModel):
    """Request for creating a new escrow; the creator becomes the escrow agent."""

    creator: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Identity of the escrow agent creating the instance",
    )
    buyer: str = Field(..., min_length=1, max_length=128)
    seller: str = Field(..., min_length=1, max_length=128)
    payment_window_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Seconds after deposit before the seller may reclaim it; "
        "defaults to the configured escrow_payment_window_seconds",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class EscrowResponse(BaseModel):
    """Response schema for an escrow instance."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    address: str
    buyer: str
    seller: str
    escrow_agent: str
    amount: int
    state: str
    seller_deposited: bool
    buyer_verified: bool
    seller_verified: bool
    inr_received: bool
    funds_released: bool
    payment_window_seconds: float | None
    deposited_at: float | None
    created_at: datetime
    updated_at: datetime


class EscrowEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    escrow_id: uuid.UUID
    sequence: int
    event_type: str
    old_state: str | None
    new_state: str
    actor: str
    metadata: dict | None = Field(default=None, alias="metadata_json")
    created_at: datetime


class EscrowStatusResponse(BaseModel):
    """Lightweight status check response."""

    escrow_id: uuid.UUID
    state: str
    amount: int
    balance: int = Field(description="Pooled value currently held by the escrow")
    funds_released: bool
    payment_deadline: float | None
    allowed_events: list[str] = Field(
        description="State machine events a caller can trigger from the current state"
    )


class SettlementResponse(BaseModel):
    """Outbound transfers made by a settlement operation."""

    escrow_id: uuid.UUID
    state: str
    recipient: str
    principal: int
    buyer_residual: int
    seller_residual: int
