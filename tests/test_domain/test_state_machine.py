"""Tests for the EscrowStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience function validate_transition works.
    4. Both settlement paths reach COMPLETE and stop there.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from p2p_escrow.domain.state_machine import (
    EscrowStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Test the full lifecycle: AWAITING_VERIFICATION -> COMPLETE via release."""

    def test_full_lifecycle(self) -> None:
        sm = EscrowStateMachine()
        assert sm.status == "AWAITING_VERIFICATION"

        sm.both_parties_verified()
        assert sm.status == "AWAITING_DEPOSIT"

        sm.seller_deposits()
        assert sm.status == "AWAITING_PAYMENT"

        sm.payment_confirmed()
        assert sm.status == "AWAITING_CONFIRMATION"

        sm.funds_released()
        assert sm.status == "COMPLETE"


class TestRefundPath:
    def test_refund_before_confirmation(self) -> None:
        sm = EscrowStateMachine("AWAITING_PAYMENT")
        sm.seller_refunded()
        assert sm.status == "COMPLETE"

    def test_refund_after_confirmation(self) -> None:
        sm = EscrowStateMachine("AWAITING_CONFIRMATION")
        sm.seller_refunded()
        assert sm.status == "COMPLETE"


class TestTimeoutPath:
    def test_payment_window_expired(self) -> None:
        sm = EscrowStateMachine("AWAITING_PAYMENT")
        sm.payment_window_expired()
        assert sm.status == "COMPLETE"

    def test_no_timeout_after_confirmation(self) -> None:
        sm = EscrowStateMachine("AWAITING_CONFIRMATION")
        with pytest.raises(TransitionNotAllowed):
            sm.payment_window_expired()


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_verification_to_complete(self) -> None:
        sm = EscrowStateMachine("AWAITING_VERIFICATION")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_release_before_confirmation(self) -> None:
        sm = EscrowStateMachine("AWAITING_PAYMENT")
        with pytest.raises(TransitionNotAllowed):
            sm.funds_released()

    def test_deposit_skips_verification(self) -> None:
        sm = EscrowStateMachine("AWAITING_VERIFICATION")
        with pytest.raises(TransitionNotAllowed):
            sm.seller_deposits()

    def test_refund_before_deposit(self) -> None:
        sm = EscrowStateMachine("AWAITING_DEPOSIT")
        with pytest.raises(TransitionNotAllowed):
            sm.seller_refunded()

    def test_complete_is_final(self) -> None:
        sm = EscrowStateMachine("COMPLETE")
        assert sm.get_allowed_events() == []


class TestAllowedEvents:
    def test_verification_allowed(self) -> None:
        sm = EscrowStateMachine("AWAITING_VERIFICATION")
        assert sm.get_allowed_events() == ["both_parties_verified"]

    def test_payment_allowed(self) -> None:
        sm = EscrowStateMachine("AWAITING_PAYMENT")
        allowed = sm.get_allowed_events()
        assert set(allowed) == {
            "payment_confirmed",
            "seller_refunded",
            "payment_window_expired",
        }

    def test_confirmation_allowed(self) -> None:
        sm = EscrowStateMachine("AWAITING_CONFIRMATION")
        assert set(sm.get_allowed_events()) == {"funds_released", "seller_refunded"}


class TestValidateTransitionFunction:
    def test_valid_transition(self) -> None:
        assert validate_transition("AWAITING_DEPOSIT", "seller_deposits") == "AWAITING_PAYMENT"

    def test_illegal_transition(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("COMPLETE", "seller_refunded")

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("AWAITING_PAYMENT", "nonexistent_event")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            EscrowStateMachine("INVALID_STATUS")
