from datetime import datetime

from models.reservation import Reservation
from services.state_machine import validate_transition


def apply_transition(reservation_id: int, from_status: str, to_status: str, **values) -> bool:
    """
    Compare-and-set status change inside the caller's transaction.

    Validates the move against the lifecycle table, then issues
    UPDATE ... WHERE id = :id AND status = :from_status. Returns False when
    another worker changed the row first; the caller re-reads and decides.
    The exclusivity rule is enforced by the same statement, so a move into
    HOLD/CONFIRMED may raise IntegrityError.
    """
    validate_transition(from_status, to_status)

    values["status"] = to_status
    values.setdefault("updated_at", datetime.utcnow())

    rows = (
        Reservation.query
        .filter(Reservation.id == reservation_id, Reservation.status == from_status)
        .update(values, synchronize_session="fetch")
    )
    return rows == 1
