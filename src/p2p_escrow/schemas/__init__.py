"""Pydantic service schemas."""

from p2p_escrow.schemas.escrow import (
    EscrowEventResponse,
    EscrowResponse,
    EscrowStatusResponse,
    OpenEscrowRequest,
    SettlementResponse,
)

__all__ = [
    "EscrowEventResponse",
    "EscrowResponse",
    "EscrowStatusResponse",
    "OpenEscrowRequest",
    "SettlementResponse",
]
