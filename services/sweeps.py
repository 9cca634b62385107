import logging
from datetime import datetime

from models.reservation import Reservation
from services.state_machine import CONFIRMED, HOLD

logger = logging.getLogger(__name__)


def expire_due_holds(hold_manager, now: datetime = None, limit: int = 500) -> int:
    now = now or datetime.utcnow()
    due = (
        Reservation.live()
        .filter(Reservation.status == HOLD, Reservation.hold_expires_at <= now)
        .order_by(Reservation.hold_expires_at.asc())
        .limit(limit)
        .with_entities(Reservation.id)
        .all()
    )
    expired = sum(1 for (rid,) in due if hold_manager.expire_hold(rid, now=now))
    if expired:
        logger.info("holds_expired", extra={"count": expired})
    return expired


def complete_finished(hold_manager, now: datetime = None, limit: int = 500) -> int:
    now = now or datetime.utcnow()
    done = (
        Reservation.live()
        .filter(Reservation.status == CONFIRMED, Reservation.end_at <= now)
        .order_by(Reservation.end_at.asc())
        .limit(limit)
        .with_entities(Reservation.id)
        .all()
    )
    completed = sum(1 for (rid,) in done if hold_manager.complete_reservation(rid, now=now))
    if completed:
        logger.info("reservations_completed", extra={"count": completed})
    return completed
