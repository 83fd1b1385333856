"""Escrow State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain
level. The Escrow aggregate checks callers and flags itself; this guard is
the last word on whether the lifecycle may move from one state to another,
so an illegal jump (e.g. AWAITING_VERIFICATION -> COMPLETE) raises
TransitionNotAllowed no matter what the caller did.

Transition table:
    AWAITING_VERIFICATION -> AWAITING_DEPOSIT       (both_parties_verified)
    AWAITING_DEPOSIT      -> AWAITING_PAYMENT       (seller_deposits)
    AWAITING_PAYMENT      -> AWAITING_CONFIRMATION  (payment_confirmed)
    AWAITING_CONFIRMATION -> COMPLETE               (funds_released)
    AWAITING_PAYMENT      -> COMPLETE               (seller_refunded)
    AWAITING_CONFIRMATION -> COMPLETE               (seller_refunded)
    AWAITING_PAYMENT      -> COMPLETE               (payment_window_expired)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class EscrowStateMachine(StateMachine):
    """State machine that guards escrow lifecycle transitions.

    Usage:
        sm = EscrowStateMachine(current_status="AWAITING_PAYMENT")
        sm.payment_confirmed()  # transitions to AWAITING_CONFIRMATION
        sm.status               # "AWAITING_CONFIRMATION"
    """

    # --- States ---
    AWAITING_VERIFICATION = State("AWAITING_VERIFICATION", initial=True)
    AWAITING_DEPOSIT = State("AWAITING_DEPOSIT")
    AWAITING_PAYMENT = State("AWAITING_PAYMENT")
    AWAITING_CONFIRMATION = State("AWAITING_CONFIRMATION")
    COMPLETE = State("COMPLETE", final=True)

    # --- Events / Transitions ---

    # Identity check
    both_parties_verified = AWAITING_VERIFICATION.to(AWAITING_DEPOSIT)

    # Custody
    seller_deposits = AWAITING_DEPOSIT.to(AWAITING_PAYMENT)

    # Off-channel payment leg
    payment_confirmed = AWAITING_PAYMENT.to(AWAITING_CONFIRMATION)

    # Settlement
    funds_released = AWAITING_CONFIRMATION.to(COMPLETE)
    seller_refunded = AWAITING_PAYMENT.to(COMPLETE) | AWAITING_CONFIRMATION.to(COMPLETE)
    payment_window_expired = AWAITING_PAYMENT.to(COMPLETE)

    def __init__(self, current_status: str = "AWAITING_VERIFICATION") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current EscrowState value (e.g., "AWAITING_PAYMENT").
                           Must match one of the State value strings exactly.
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches EscrowState enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns
    the resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = EscrowStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
