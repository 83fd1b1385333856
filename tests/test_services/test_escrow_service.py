"""Tests for EscrowService against an in-memory SQLite database."""

from __future__ import annotations

import uuid

import pytest

from conftest import AGENT, BUYER, DEPOSIT, FEE, SELLER, STARTING_BALANCE, STRANGER, FakeClock
from p2p_escrow.domain.enums import EscrowState, EventType
from p2p_escrow.domain.exceptions import (
    AlreadySettledError,
    EscrowNotFoundError,
    InsufficientFundsError,
    InvalidStateError,
    PaymentWindowOpenError,
    UnauthorizedCallerError,
)
from p2p_escrow.schemas.escrow import OpenEscrowRequest
from p2p_escrow.services.escrow_service import EscrowService
from p2p_escrow.services.ledger_service import LedgerService


@pytest.fixture
def service_clock() -> FakeClock:
    return FakeClock(now=1_700_000_000.0)


@pytest.fixture
async def service(session, service_clock: FakeClock) -> EscrowService:
    ledger = LedgerService(session)
    for party in (BUYER, SELLER, STRANGER):
        await ledger.fund_account(party, STARTING_BALANCE)
    return EscrowService(session, clock=service_clock)


@pytest.fixture
async def opened(service: EscrowService):
    return await service.open_escrow(
        OpenEscrowRequest(creator=AGENT, buyer=BUYER, seller=SELLER, payment_window_seconds=60)
    )


async def _deposit(service: EscrowService, escrow_id: uuid.UUID) -> None:
    await service.buyer_verify(escrow_id, BUYER, FEE)
    await service.seller_verify(escrow_id, SELLER, FEE)
    await service.seller_deposit(escrow_id, SELLER, DEPOSIT)


class TestOpenEscrow:
    async def test_open(self, opened) -> None:
        assert opened.state == EscrowState.AWAITING_VERIFICATION
        assert opened.escrow_agent == AGENT
        assert opened.address == f"escrow:{opened.id}"
        assert opened.payment_window_seconds == 60
        assert opened.amount == 0

    async def test_created_event_persisted(self, service: EscrowService, opened) -> None:
        events = await service.get_events(opened.id)
        assert [e.event_type for e in events] == [EventType.ESCROW_CREATED]
        assert events[0].sequence == 1

    async def test_listed_for_each_party(self, service: EscrowService, opened) -> None:
        for identity in (AGENT, BUYER, SELLER):
            listed = await service.list_for_party(identity)
            assert [e.id for e in listed] == [opened.id]
        assert await service.list_for_party(STRANGER) == []


class TestLifecycle:
    async def test_happy_path(self, service: EscrowService, session, opened) -> None:
        await _deposit(service, opened.id)
        confirmed = await service.confirm_payment_received(opened.id, SELLER)
        assert confirmed.state == EscrowState.AWAITING_CONFIRMATION

        settlement = await service.release_funds_to_buyer(opened.id, AGENT)

        assert settlement.state == EscrowState.COMPLETE
        assert settlement.recipient == BUYER
        assert (settlement.principal, settlement.buyer_residual, settlement.seller_residual) == (
            DEPOSIT, FEE, FEE,
        )
        balances = await LedgerService(session).balances([BUYER, SELLER, opened.address])
        assert balances == {
            BUYER: STARTING_BALANCE + DEPOSIT,
            SELLER: STARTING_BALANCE - DEPOSIT,
            opened.address: 0,
        }

    async def test_refund(self, service: EscrowService, session, opened) -> None:
        await _deposit(service, opened.id)
        settlement = await service.refund_seller(opened.id, AGENT)
        assert settlement.recipient == SELLER
        assert await LedgerService(session).balance_of(SELLER) == STARTING_BALANCE

    async def test_audit_trail_order(self, service: EscrowService, opened) -> None:
        await _deposit(service, opened.id)
        await service.confirm_payment_received(opened.id, SELLER)
        await service.release_funds_to_buyer(opened.id, AGENT)

        events = await service.get_events(opened.id)

        assert [e.event_type for e in events] == [
            EventType.ESCROW_CREATED,
            EventType.BUYER_VERIFIED,
            EventType.SELLER_VERIFIED,
            EventType.VERIFICATION_COMPLETED,
            EventType.SELLER_DEPOSITED,
            EventType.PAYMENT_CONFIRMED,
            EventType.FUNDS_RELEASED,
        ]
        assert [e.sequence for e in events] == list(range(1, 8))
        assert events[-1].metadata["recipient"] == BUYER


class TestRejections:
    async def test_unknown_escrow(self, service: EscrowService) -> None:
        with pytest.raises(EscrowNotFoundError):
            await service.buyer_verify(uuid.uuid4(), BUYER, FEE)

    async def test_wrong_caller_writes_nothing(self, service: EscrowService, session, opened) -> None:
        with pytest.raises(UnauthorizedCallerError):
            await service.buyer_verify(opened.id, STRANGER, FEE)

        escrow = await service.get_escrow(opened.id)
        assert not escrow.buyer_verified
        assert await LedgerService(session).balance_of(STRANGER) == STARTING_BALANCE
        assert len(await service.get_events(opened.id)) == 1

    async def test_premature_release(self, service: EscrowService, opened) -> None:
        await _deposit(service, opened.id)
        with pytest.raises(InvalidStateError):
            await service.release_funds_to_buyer(opened.id, AGENT)
        status = await service.get_status(opened.id)
        assert status.state == EscrowState.AWAITING_PAYMENT

    async def test_double_release(self, service: EscrowService, session, opened) -> None:
        await _deposit(service, opened.id)
        await service.confirm_payment_received(opened.id, SELLER)
        await service.release_funds_to_buyer(opened.id, AGENT)

        with pytest.raises(AlreadySettledError):
            await service.release_funds_to_buyer(opened.id, AGENT)
        assert await LedgerService(session).balance_of(BUYER) == STARTING_BALANCE + DEPOSIT

    async def test_deposit_exceeding_balance(self, service: EscrowService, opened) -> None:
        await service.buyer_verify(opened.id, BUYER, FEE)
        await service.seller_verify(opened.id, SELLER, FEE)
        with pytest.raises(InsufficientFundsError):
            await service.seller_deposit(opened.id, SELLER, STARTING_BALANCE * 2)

        escrow = await service.get_escrow(opened.id)
        assert escrow.state == EscrowState.AWAITING_DEPOSIT
        assert escrow.amount == 0


class TestStatus:
    async def test_status_after_deposit(
        self, service: EscrowService, service_clock: FakeClock, opened
    ) -> None:
        await _deposit(service, opened.id)
        status = await service.get_status(opened.id)
        assert status.balance == DEPOSIT + 2 * FEE
        assert status.amount == DEPOSIT
        assert status.payment_deadline == service_clock.now + 60
        assert set(status.allowed_events) == {
            "payment_confirmed",
            "seller_refunded",
            "payment_window_expired",
        }

    async def test_verification_event_is_not_offered(self, service: EscrowService, opened) -> None:
        status = await service.get_status(opened.id)
        assert status.state == EscrowState.AWAITING_VERIFICATION
        assert status.allowed_events == []

    async def test_expiry_not_offered_without_window(self, service: EscrowService) -> None:
        opened = await service.open_escrow(
            OpenEscrowRequest(creator=AGENT, buyer=BUYER, seller=SELLER)
        )
        await _deposit(service, opened.id)
        status = await service.get_status(opened.id)
        assert status.payment_deadline is None
        assert set(status.allowed_events) == {"payment_confirmed", "seller_refunded"}

    async def test_status_when_complete(self, service: EscrowService, opened) -> None:
        await _deposit(service, opened.id)
        await service.refund_seller(opened.id, AGENT)
        status = await service.get_status(opened.id)
        assert status.funds_released
        assert status.balance == 0
        assert status.allowed_events == []


class TestPaymentWindow:
    async def test_reclaim_after_window(
        self, service: EscrowService, service_clock: FakeClock, session, opened
    ) -> None:
        await _deposit(service, opened.id)

        with pytest.raises(PaymentWindowOpenError):
            await service.reclaim_expired_deposit(opened.id, SELLER)

        service_clock.advance(61)
        settlement = await service.reclaim_expired_deposit(opened.id, SELLER)

        assert settlement.recipient == SELLER
        assert settlement.state == EscrowState.COMPLETE
        assert await LedgerService(session).balance_of(SELLER) == STARTING_BALANCE
        events = await service.get_events(opened.id)
        assert events[-1].event_type == EventType.PAYMENT_WINDOW_EXPIRED

    async def test_configured_default_window(
        self, service: EscrowService, monkeypatch
    ) -> None:
        from p2p_escrow.config import get_settings

        monkeypatch.setenv("ESCROW_PAYMENT_WINDOW_SECONDS", "30")
        get_settings.cache_clear()
        try:
            opened = await service.open_escrow(
                OpenEscrowRequest(creator=AGENT, buyer=BUYER, seller=SELLER)
            )
        finally:
            get_settings.cache_clear()
        assert opened.payment_window_seconds == 30
