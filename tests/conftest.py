"""Shared test fixtures for the P2P escrow test suite.

Provides:
    - Party identities and a funded in-memory ledger
    - Escrows advanced to each lifecycle stage
    - An in-memory SQLite session for service tests (pytest-asyncio)
"""

from __future__ import annotations

import uuid

import pytest
import pytest_asyncio

from p2p_escrow.domain.escrow import Escrow
from p2p_escrow.infrastructure.database.engine import build_engine, build_session_factory
from p2p_escrow.infrastructure.database.orm_models import Base
from p2p_escrow.infrastructure.ledger import InMemoryLedger

AGENT = "agent"
BUYER = "buyer"
SELLER = "seller"
STRANGER = "mallory"

STARTING_BALANCE = 1_000
FEE = 1
DEPOSIT = 100


class FakeClock:
    """Manually advanced clock for payment-window tests."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Return a ledger where every party holds STARTING_BALANCE."""
    return InMemoryLedger(
        {BUYER: STARTING_BALANCE, SELLER: STARTING_BALANCE, STRANGER: STARTING_BALANCE}
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def escrow_id() -> uuid.UUID:
    """Return a deterministic UUID for testing."""
    return uuid.UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def escrow(ledger: InMemoryLedger, clock: FakeClock, escrow_id: uuid.UUID) -> Escrow:
    """A freshly created escrow with a 60-second payment window."""
    return Escrow.create(
        AGENT, BUYER, SELLER, ledger, payment_window=60, clock=clock, escrow_id=escrow_id
    )


@pytest.fixture
def verified_escrow(escrow: Escrow) -> Escrow:
    escrow.buyer_verify(BUYER, FEE)
    escrow.seller_verify(SELLER, FEE)
    return escrow


@pytest.fixture
def deposited_escrow(verified_escrow: Escrow) -> Escrow:
    verified_escrow.seller_deposit(SELLER, DEPOSIT)
    return verified_escrow


@pytest.fixture
def confirmed_escrow(deposited_escrow: Escrow) -> Escrow:
    deposited_escrow.confirm_payment_received(SELLER)
    return deposited_escrow


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session():
    """Yield a session bound to a fresh in-memory SQLite database."""
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = build_session_factory(engine)
    async with factory() as session:
        yield session

    await engine.dispose()
