"""Database infrastructure — engine, ORM models, and repositories."""

from p2p_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    init_db,
)
from p2p_escrow.infrastructure.database.orm_models import (
    Base,
    EscrowEventRecord,
    EscrowRecord,
    LedgerAccount,
)
from p2p_escrow.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    LedgerRepository,
)

__all__ = [
    "Base",
    "EscrowRecord",
    "EscrowEventRecord",
    "LedgerAccount",
    "EscrowRepository",
    "EventRepository",
    "LedgerRepository",
    "build_engine",
    "build_session_factory",
    "init_db",
    "close_db",
]
