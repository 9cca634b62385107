"""
Owner settlement ledger. Each entry references one reservation and carries a
signed amount; a reservation has at most one credit and one reversal.
"""
import logging
from datetime import datetime

from sqlalchemy import func, text
from sqlalchemy.exc import IntegrityError

from models import db
from models.ledger_entry import LedgerEntry

logger = logging.getLogger(__name__)

BOOKING_CREDIT = "BOOKING_CREDIT"
BOOKING_REVERSAL = "BOOKING_REVERSAL"


def owner_balance(owner_user_id: int) -> int:
    latest = (
        LedgerEntry.query
        .filter_by(owner_user_id=owner_user_id)
        .order_by(LedgerEntry.id.desc())
        .first()
    )
    return latest.running_balance if latest else 0


def lock_owner(owner_user_id: int, session=None) -> None:
    """
    Serialise ledger writers of one owner until the transaction ends, so each
    entry's running balance builds on the previous one. SQLite already admits
    one writer at a time.
    """
    session = session or db.session
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
        {"key": f"ledger:{owner_user_id}"},
    )


def _append(owner_user_id: int, reservation, entry_type: str, amount: int, description: str):
    lock_owner(owner_user_id)
    existing = LedgerEntry.query.filter_by(reservation_id=reservation.id, entry_type=entry_type).first()
    if existing:
        # end the transaction so the owner lock is not held
        db.session.commit()
        return existing

    now = datetime.utcnow()
    entry = LedgerEntry(
        owner_user_id=owner_user_id,
        reservation_id=reservation.id,
        entry_type=entry_type,
        amount=amount,
        running_balance=owner_balance(owner_user_id) + amount,
        description=description,
        period_month=now.strftime("%Y-%m"),
        created_at=now,
    )
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        # a concurrent writer recorded the same entry first
        db.session.rollback()
        return LedgerEntry.query.filter_by(reservation_id=reservation.id, entry_type=entry_type).first()

    logger.info(
        "ledger_entry_recorded",
        extra={"reservation_id": reservation.id, "entry_type": entry_type, "amount": amount},
    )
    return entry


def record_booking_credit(reservation):
    """Credit the owner's share of the advance for a confirmed reservation."""
    return _append(
        reservation.owner_user_id,
        reservation,
        BOOKING_CREDIT,
        reservation.owner_advance_credit,
        f"Advance credit for {reservation.reservation_number}",
    )


def reverse_booking_credit(reservation):
    """Equal and opposite debit of an earlier credit. No-op when none was granted."""
    credit = LedgerEntry.query.filter_by(reservation_id=reservation.id, entry_type=BOOKING_CREDIT).first()
    if credit is None:
        return None
    return _append(
        credit.owner_user_id,
        reservation,
        BOOKING_REVERSAL,
        -credit.amount,
        f"Reversal for cancelled {reservation.reservation_number}",
    )


def settlement_summary(owner_user_id: int, period_month: str) -> dict:
    rows = (
        db.session.query(LedgerEntry.entry_type, func.count(LedgerEntry.id), func.coalesce(func.sum(LedgerEntry.amount), 0))
        .filter(LedgerEntry.owner_user_id == owner_user_id, LedgerEntry.period_month == period_month)
        .group_by(LedgerEntry.entry_type)
        .all()
    )
    totals = {entry_type: {"count": count, "amount": int(amount)} for entry_type, count, amount in rows}
    net = sum(v["amount"] for v in totals.values())
    return {
        "owner_user_id": owner_user_id,
        "period_month": period_month,
        "entries": totals,
        "net": net,
        "balance": owner_balance(owner_user_id),
    }
