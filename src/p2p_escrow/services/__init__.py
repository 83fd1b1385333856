"""Application services — use case orchestration."""

from p2p_escrow.services.escrow_service import EscrowService
from p2p_escrow.services.ledger_service import LedgerService

__all__ = ["EscrowService", "LedgerService"]
