#!/usr/bin/env python3
"""P2P Escrow — End-to-End Simulation.

Runs the settlement protocol with BuyerBot, SellerBot and AgentBot parties
against the persisted service layer:

    Scenario A: Happy Path
        - Both parties verify, seller deposits, seller confirms payment
        - Agent releases -> buyer receives the principal, fees split back

    Scenario B: Refund
        - Seller deposits, payment never arrives
        - Agent refunds -> seller recovers the principal

    Scenario C: Wrong Caller
        - Buyer tries to confirm the payment on the seller's behalf -> rejected

    Scenario D: Double Release
        - Agent releases twice -> second call rejected, no value moves

    Scenario E: Premature Release
        - Agent releases before the seller confirmed payment -> rejected

    Scenario F: Payment Window Expiry
        - Payment never arrives within the window -> seller reclaims the deposit

Usage:
    # Option A: PostgreSQL (DATABASE_URL from .env):
    python simulation.py

    # Option B: Without a database server (SQLite in-memory):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario A
"""

from __future__ import annotations

import argparse
import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from p2p_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from p2p_escrow.config import get_settings  # noqa: E402
from p2p_escrow.domain.exceptions import EscrowError  # noqa: E402
from p2p_escrow.schemas.escrow import OpenEscrowRequest  # noqa: E402
from p2p_escrow.services.escrow_service import EscrowService  # noqa: E402
from p2p_escrow.services.ledger_service import LedgerService  # noqa: E402

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None


class FastForwardClock:
    """Wall clock that can be pushed forward to simulate a long wait."""

    def __init__(self) -> None:
        self._offset = 0.0

    def __call__(self) -> float:
        return time.time() + self._offset

    def advance(self, seconds: float) -> None:
        self._offset += seconds


clock = FastForwardClock()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from p2p_escrow.infrastructure.database.engine import (
            build_engine,
            build_session_factory,
        )
        from p2p_escrow.infrastructure.database.orm_models import Base

        _sqlite_engine = build_engine("sqlite+aiosqlite:///:memory:")
        _sqlite_session_factory = build_session_factory(_sqlite_engine)
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from p2p_escrow.infrastructure.database.engine import init_db
        await init_db()


async def get_session():
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from p2p_escrow.infrastructure.database.engine import _get_session_factory
    factory = _get_session_factory()
    return factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from p2p_escrow.infrastructure.database.engine import close_db
        await close_db()


# ---------------------------------------------------------------------------
# Bot Parties
# ---------------------------------------------------------------------------
@dataclass
class Party:
    """A simulated participant holding a ledger account."""

    name: str
    icon = "⚪"
    role = "PARTY"

    async def fund(self, session: Any, amount: int) -> None:
        await LedgerService(session).fund_account(self.name, amount)
        await session.commit()

    async def balance(self, session: Any) -> int:
        return await LedgerService(session).balance_of(self.name)

    async def attempt(self, session: Any, label: str, call: Any) -> Any:
        """Run a service call, commit on success, roll back and report on rejection."""
        try:
            result = await call
        except EscrowError as exc:
            await session.rollback()
            logger.info(f"{self.icon} {self.role}: {label} REJECTED ❌", code=exc.code)
            print(f"  ❌ {label} rejected: [{exc.code}] {exc.message}")
            return None
        await session.commit()
        logger.info(f"{self.icon} {self.role}: {label} ✅")
        return result


@dataclass
class BuyerBot(Party):
    """Buyer: verifies and waits for the principal."""

    name: str = "buyer"
    icon = "🔵"
    role = "BUYER"

    async def verify(self, session: Any, escrow_id: uuid.UUID, fee: int) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(session, "Verified", svc.buyer_verify(escrow_id, self.name, fee))

    async def confirm_payment(self, session: Any, escrow_id: uuid.UUID) -> Any:
        """Buyers are not allowed to do this; used to show the caller guard."""
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Payment confirmation", svc.confirm_payment_received(escrow_id, self.name)
        )


@dataclass
class SellerBot(Party):
    """Seller: verifies, deposits the principal and confirms the off-channel payment."""

    name: str = "seller"
    icon = "🟢"
    role = "SELLER"

    async def verify(self, session: Any, escrow_id: uuid.UUID, fee: int) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Verified", svc.seller_verify(escrow_id, self.name, fee)
        )

    async def deposit(self, session: Any, escrow_id: uuid.UUID, amount: int) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Deposited", svc.seller_deposit(escrow_id, self.name, amount)
        )

    async def confirm_payment(self, session: Any, escrow_id: uuid.UUID) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Payment confirmed", svc.confirm_payment_received(escrow_id, self.name)
        )

    async def reclaim(self, session: Any, escrow_id: uuid.UUID) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Deposit reclaimed", svc.reclaim_expired_deposit(escrow_id, self.name)
        )


@dataclass
class AgentBot(Party):
    """Escrow agent: opens escrows and decides how they settle."""

    name: str = "agent"
    icon = "🟣"
    role = "AGENT"

    async def open_escrow(
        self,
        session: Any,
        buyer: BuyerBot,
        seller: SellerBot,
        payment_window: float | None = None,
    ) -> uuid.UUID:
        svc = EscrowService(session, clock=clock)
        escrow = await svc.open_escrow(
            OpenEscrowRequest(
                creator=self.name,
                buyer=buyer.name,
                seller=seller.name,
                payment_window_seconds=payment_window,
            )
        )
        await session.commit()
        logger.info("🟣 AGENT: Escrow opened", escrow_id=str(escrow.id))
        return escrow.id

    async def release(self, session: Any, escrow_id: uuid.UUID) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Funds released", svc.release_funds_to_buyer(escrow_id, self.name)
        )

    async def refund(self, session: Any, escrow_id: uuid.UUID) -> Any:
        svc = EscrowService(session, clock=clock)
        return await self.attempt(
            session, "Seller refunded", svc.refund_seller(escrow_id, self.name)
        )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_settlement(settlement: Any) -> None:
    if settlement is None:
        return
    print(f"  💸 Principal {settlement.principal} -> {settlement.recipient}")
    print(
        f"  💸 Residual: buyer {settlement.buyer_residual}, "
        f"seller {settlement.seller_residual}"
    )


async def print_balances(session: Any, *parties: Party) -> None:
    for party in parties:
        print(f"  💰 {party.name}: {await party.balance(session)}")


async def print_audit_trail(session: Any, escrow_id: uuid.UUID) -> None:
    """Print the full audit trail for an escrow."""
    svc = EscrowService(session, clock=clock)
    events = await svc.get_events(escrow_id)
    print("\n  📜 Audit Trail:")
    for evt in events:
        old = evt.old_state or "—"
        print(f"    {evt.sequence}. [{evt.event_type}] {old} → {evt.new_state} (by {evt.actor})")
    print()


async def setup_parties(session: Any) -> tuple[BuyerBot, SellerBot, AgentBot]:
    """Create the three parties and fund buyer and seller."""
    settings = get_settings()
    run = uuid.uuid4().hex[:6]
    buyer = BuyerBot(name=f"buyer-{run}")
    seller = SellerBot(name=f"seller-{run}")
    agent = AgentBot(name=f"agent-{run}")
    await buyer.fund(session, settings.simulation_starting_balance)
    await seller.fund(session, settings.simulation_starting_balance)
    return buyer, seller, agent


async def verify_and_deposit(
    session: Any, buyer: BuyerBot, seller: SellerBot, escrow_id: uuid.UUID
) -> None:
    settings = get_settings()
    section("Both parties verify")
    await buyer.verify(session, escrow_id, settings.simulation_verification_fee)
    await seller.verify(session, escrow_id, settings.simulation_verification_fee)

    section("Seller deposits the principal")
    await seller.deposit(session, escrow_id, settings.simulation_deposit)


# ===========================================================================
# Scenarios
# ===========================================================================
async def scenario_a_happy_path() -> None:
    """Payment confirmed, agent releases to the buyer."""
    banner("SCENARIO A: Happy Path — Release to Buyer")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller)
        await verify_and_deposit(session, buyer, seller, escrow_id)

        section("Seller confirms the off-channel payment")
        await seller.confirm_payment(session, escrow_id)

        section("Agent releases funds")
        print_settlement(await agent.release(session, escrow_id))

        section("Final Balances")
        await print_balances(session, buyer, seller)
        await print_audit_trail(session, escrow_id)


async def scenario_b_refund() -> None:
    """Payment never confirmed, agent refunds the seller."""
    banner("SCENARIO B: Refund to Seller")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller)
        await verify_and_deposit(session, buyer, seller, escrow_id)

        section("Agent refunds the seller")
        print_settlement(await agent.refund(session, escrow_id))

        section("Final Balances")
        await print_balances(session, buyer, seller)
        await print_audit_trail(session, escrow_id)


async def scenario_c_wrong_caller() -> None:
    """Buyer tries an operation reserved for the seller."""
    banner("SCENARIO C: Wrong Caller")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller)
        await verify_and_deposit(session, buyer, seller, escrow_id)

        section("Buyer attempts to confirm payment")
        await buyer.confirm_payment(session, escrow_id)

        status = await EscrowService(session, clock=clock).get_status(escrow_id)
        print(f"\n  🛡️  Escrow state unchanged: {status.state}")


async def scenario_d_double_release() -> None:
    """Agent releases twice; the second release moves nothing."""
    banner("SCENARIO D: Double Release")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller)
        await verify_and_deposit(session, buyer, seller, escrow_id)
        await seller.confirm_payment(session, escrow_id)

        section("Agent releases funds")
        print_settlement(await agent.release(session, escrow_id))

        section("Agent releases again")
        await agent.release(session, escrow_id)

        section("Final Balances")
        await print_balances(session, buyer, seller)


async def scenario_e_premature_release() -> None:
    """Agent releases before the seller confirmed payment."""
    banner("SCENARIO E: Premature Release")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller)
        await verify_and_deposit(session, buyer, seller, escrow_id)

        section("Agent releases without payment confirmation")
        await agent.release(session, escrow_id)

        status = await EscrowService(session, clock=clock).get_status(escrow_id)
        print(f"\n  🛡️  Escrow state: {status.state}, pooled balance: {status.balance}")


async def scenario_f_payment_window() -> None:
    """Seller reclaims the deposit after the payment window closes."""
    banner("SCENARIO F: Payment Window Expiry")

    session = await get_session()
    async with session:
        buyer, seller, agent = await setup_parties(session)
        escrow_id = await agent.open_escrow(session, buyer, seller, payment_window=3600)
        await verify_and_deposit(session, buyer, seller, escrow_id)

        section("Seller tries to reclaim immediately")
        await seller.reclaim(session, escrow_id)

        section("One hour passes without payment")
        clock.advance(3601)
        print_settlement(await seller.reclaim(session, escrow_id))

        section("Final Balances")
        await print_balances(session, buyer, seller)
        await print_audit_trail(session, escrow_id)


SCENARIOS = {
    "A": scenario_a_happy_path,
    "B": scenario_b_refund,
    "C": scenario_c_wrong_caller,
    "D": scenario_d_double_release,
    "E": scenario_e_premature_release,
    "F": scenario_f_payment_window,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🤝" * 35)
        print("  P2P ESCROW — SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "PostgreSQL"
        print(f"  Database: {db_type}")
        print("🤝" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(name: str, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if name not in SCENARIOS:
            print(f"Unknown scenario {name}. Available: {', '.join(SCENARIOS)}")
            return
        await SCENARIOS[name]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="P2P Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=str.upper,
        default="",
        help="Run a specific scenario (A-F). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no database server needed).",
    )
    args = parser.parse_args()

    if not args.scenario:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
