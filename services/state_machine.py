"""
Reservation lifecycle table. Pure predicates, no I/O.

HOLD -> CONFIRMED | EXPIRED | CANCELED
CONFIRMED -> COMPLETED | CANCELED
EXPIRED -> CONFIRMED   (late payment only, and only if the slot is still free)
"""
from services.errors import InvalidTransition

HOLD = "HOLD"
CONFIRMED = "CONFIRMED"
CANCELED = "CANCELED"
COMPLETED = "COMPLETED"
EXPIRED = "EXPIRED"

ALL_STATUSES = (HOLD, CONFIRMED, CANCELED, COMPLETED, EXPIRED)
INITIAL_STATUS = HOLD
TERMINAL_STATUSES = frozenset({CANCELED, COMPLETED})

TRANSITIONS = {
    HOLD: frozenset({CONFIRMED, EXPIRED, CANCELED}),
    CONFIRMED: frozenset({COMPLETED, CANCELED}),
    EXPIRED: frozenset({CONFIRMED}),
    CANCELED: frozenset(),
    COMPLETED: frozenset(),
}


class PaymentIntentStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    LATE_SUCCESS_CONFLICT = "LATE_SUCCESS_CONFLICT"

    TERMINAL = frozenset({SUCCESS, FAILED, LATE_SUCCESS_CONFLICT})


class PaymentStage:
    NOT_PAID = "NOT_PAID"
    ADVANCE_PAID = "ADVANCE_PAID"
    PARTIAL_OFFLINE = "PARTIAL_OFFLINE"
    FULL_PAID_OFFLINE = "FULL_PAID_OFFLINE"


class RefundStatus:
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    PROCESSING = "PROCESSING"
    REFUNDED = "REFUNDED"
    REJECTED = "REJECTED"

    FLOW = {
        REQUESTED: frozenset({APPROVED, REJECTED}),
        APPROVED: frozenset({PROCESSING, REJECTED}),
        PROCESSING: frozenset({REFUNDED}),
        REFUNDED: frozenset(),
        REJECTED: frozenset(),
    }


def is_valid_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


def validate_transition(from_status: str, to_status: str) -> None:
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransition(from_status, to_status)


def next_states(status: str) -> frozenset:
    return TRANSITIONS.get(status, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_be_canceled(status: str) -> bool:
    return is_valid_transition(status, CANCELED)


def can_be_confirmed(status: str) -> bool:
    return is_valid_transition(status, CONFIRMED)


def can_receive_offline_payment(status: str) -> bool:
    return status in (CONFIRMED, COMPLETED)
