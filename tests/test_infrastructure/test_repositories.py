"""Tests for the async repositories against in-memory SQLite."""

from __future__ import annotations

import pytest

from conftest import AGENT, BUYER, SELLER, STRANGER
from p2p_escrow.domain.enums import EscrowState, EventType
from p2p_escrow.domain.escrow import DomainEvent
from p2p_escrow.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    LedgerRepository,
)
from p2p_escrow.schemas.escrow import OpenEscrowRequest
from p2p_escrow.services.escrow_service import EscrowService


@pytest.fixture
async def opened(session):
    return await EscrowService(session).open_escrow(
        OpenEscrowRequest(creator=AGENT, buyer=BUYER, seller=SELLER)
    )


class TestEscrowRepository:
    async def test_get_by_id(self, session, opened) -> None:
        repo = EscrowRepository(session)
        record = await repo.get_by_id(opened.id, for_update=True)
        assert record is not None
        assert record.state == EscrowState.AWAITING_VERIFICATION

    async def test_get_by_party(self, session, opened) -> None:
        repo = EscrowRepository(session)
        assert [r.id for r in await repo.get_by_party(SELLER)] == [opened.id]
        assert await repo.get_by_party(STRANGER) == []


class TestEventRepository:
    async def test_sequence_continues(self, session, opened) -> None:
        repo = EventRepository(session)
        event = DomainEvent(
            event_type=EventType.BUYER_VERIFIED,
            old_state=EscrowState.AWAITING_VERIFICATION,
            new_state=EscrowState.AWAITING_VERIFICATION,
            actor=BUYER,
            metadata={"value": 1},
        )
        await repo.record_many(opened.id, [event])

        events = await repo.get_by_escrow(opened.id)

        assert [(e.sequence, e.event_type) for e in events] == [
            (1, EventType.ESCROW_CREATED),
            (2, EventType.BUYER_VERIFIED),
        ]
        assert events[1].metadata_json == {"value": 1}


class TestLedgerRepository:
    async def test_unknown_accounts_read_zero(self, session) -> None:
        balances = await LedgerRepository(session).get_balances(["nobody"])
        assert balances == {"nobody": 0}

    async def test_set_balances_upserts(self, session) -> None:
        repo = LedgerRepository(session)
        await repo.set_balances({BUYER: 10})
        await repo.set_balances({BUYER: 7, SELLER: 3})
        assert await repo.get_balances([BUYER, SELLER]) == {BUYER: 7, SELLER: 3}
