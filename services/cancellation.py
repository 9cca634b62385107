"""
Cancellation and refund policy.

Tiers by hours until start (advance A, processing fee F):
  > 24      FULL        ceil(A)       - F, not below zero
  6 .. 24   PARTIAL_50  floor(A * .5) - F, not below zero
  < 6       NONE        0, the whole advance is retained
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime

from models import db
from models.payment import PaymentIntent
from models.refund import Refund
from models.reservation import Reservation
from services import ledger
from services.errors import CancellationNotAllowed, NotFound, RefundStateError
from services.events import record_event
from services.money import (
    PROCESSING_FEE,
    TIER_FULL,
    TIER_NONE,
    TIER_PARTIAL_50,
    refund_for_tier,
)
from services.state_machine import CANCELED, PaymentIntentStatus, RefundStatus, can_be_canceled
from services.transitions import apply_transition

logger = logging.getLogger(__name__)

FULL_REFUND_HOURS = 24
PARTIAL_REFUND_HOURS = 6


@dataclass
class CancellationQuote:
    can_cancel: bool
    tier: str
    refundable_amount: int
    platform_fee_retained: int
    hours_until_start: float
    advance_paid: int = 0
    reason: str = None

    def to_dict(self) -> dict:
        out = asdict(self)
        out["hours_until_start"] = round(self.hours_until_start, 2)
        return out


@dataclass
class CancelResult:
    reservation_id: int
    tier: str
    refund_amount: int
    platform_fee_retained: int
    refund_id: int = None

    def to_dict(self) -> dict:
        return asdict(self)


def tier_for(hours_until_start: float) -> str:
    if hours_until_start > FULL_REFUND_HOURS:
        return TIER_FULL
    if hours_until_start >= PARTIAL_REFUND_HOURS:
        return TIER_PARTIAL_50
    return TIER_NONE


def paid_intent(reservation):
    return (
        PaymentIntent.query
        .filter_by(reservation_id=reservation.id, status=PaymentIntentStatus.SUCCESS)
        .order_by(PaymentIntent.id.desc())
        .first()
    )


def evaluate(reservation, now: datetime = None, processing_fee: int = PROCESSING_FEE,
             advance_paid: int = None) -> CancellationQuote:
    """
    advance_paid defaults to the reservation's advance when a successful
    payment exists for it, else 0 (an unpaid hold refunds nothing).
    """
    now = now or datetime.utcnow()
    hours = (reservation.start_at - now).total_seconds() / 3600
    tier = tier_for(hours)

    if advance_paid is None:
        advance_paid = reservation.advance_amount if paid_intent(reservation) else 0

    if not can_be_canceled(reservation.status):
        return CancellationQuote(False, tier, 0, 0, hours, advance_paid, f"Reservation is {reservation.status}")
    if hours < 0:
        return CancellationQuote(False, tier, 0, 0, hours, advance_paid, "Reservation has already started")

    refund, retained = refund_for_tier(advance_paid, tier, processing_fee)
    return CancellationQuote(True, tier, refund, retained, hours, advance_paid)


class CancellationService:
    def __init__(self, dispatcher, slot_lock=None, processing_fee: int = PROCESSING_FEE):
        self.dispatcher = dispatcher
        self.slot_lock = slot_lock
        self.processing_fee = processing_fee

    def quote(self, reservation_id: int, now: datetime = None) -> CancellationQuote:
        reservation = Reservation.live().filter_by(id=reservation_id).first()
        if not reservation:
            raise NotFound("Reservation not found", details={"reservation_id": reservation_id})
        return evaluate(reservation, now, self.processing_fee)

    def cancel(self, reservation_id: int, actor_id: int, reason: str = None, now: datetime = None) -> CancelResult:
        now = now or datetime.utcnow()
        reservation = Reservation.live().filter_by(id=reservation_id).first()
        if not reservation:
            raise NotFound("Reservation not found", details={"reservation_id": reservation_id})

        intent = paid_intent(reservation)
        quote = evaluate(
            reservation, now, self.processing_fee,
            advance_paid=reservation.advance_amount if intent else 0,
        )
        if not quote.can_cancel:
            raise CancellationNotAllowed(
                quote.reason,
                details={"reservation_id": reservation_id, "status": reservation.status},
            )

        from_status = reservation.status
        moved = apply_transition(
            reservation.id, from_status, CANCELED,
            canceled_at=now,
            canceled_by=actor_id,
            cancellation_reason=reason,
        )
        if not moved:
            db.session.rollback()
            raise CancellationNotAllowed(
                "Reservation changed while cancelling, try again",
                details={"reservation_id": reservation_id},
            )

        PaymentIntent.query.filter(
            PaymentIntent.reservation_id == reservation.id,
            PaymentIntent.status == PaymentIntentStatus.PENDING,
        ).update({"status": PaymentIntentStatus.EXPIRED, "updated_at": now}, synchronize_session="fetch")

        refund = None
        if intent is not None:
            refund = Refund(
                reservation_id=reservation.id,
                payment_intent_id=intent.id,
                refund_amount=quote.refundable_amount,
                platform_fee_retained=quote.platform_fee_retained,
                original_advance=quote.advance_paid,
                tier=quote.tier,
                status=RefundStatus.REQUESTED,
                reason=reason,
                created_at=now,
            )
            db.session.add(refund)

        record_event(
            reservation.id, "canceled", from_status, CANCELED,
            metadata={
                "reason": reason,
                "tier": quote.tier,
                "refund_amount": quote.refundable_amount,
                "hours_until_start": round(quote.hours_until_start, 2),
            },
            created_by=actor_id,
        )
        db.session.commit()

        logger.info(
            "reservation_canceled",
            extra={"reservation_id": reservation.id, "tier": quote.tier, "refund": quote.refundable_amount},
        )
        self._after_cancel(reservation, quote.refundable_amount)

        return CancelResult(
            reservation_id=reservation.id,
            tier=quote.tier,
            refund_amount=quote.refundable_amount,
            platform_fee_retained=quote.platform_fee_retained,
            refund_id=refund.id if refund else None,
        )

    def _after_cancel(self, reservation, refund_amount: int) -> None:
        try:
            ledger.reverse_booking_credit(reservation)
        except Exception:
            db.session.rollback()
            logger.exception("ledger_reversal_failed", extra={"reservation_id": reservation.id})

        if self.slot_lock is not None:
            key = self.slot_lock.key(reservation.conflict_group_id, reservation.start_at, reservation.end_at)
            self.slot_lock.release(key, reservation.id)

        self.dispatcher.publish("canceled", reservation, refund_amount=refund_amount)

    # ---------- refund administration ----------

    def _move_refund(self, refund_id: int, to_status: str, **values) -> Refund:
        refund = Refund.query.get(refund_id)
        if not refund:
            raise NotFound("Refund not found", details={"refund_id": refund_id})
        if to_status not in RefundStatus.FLOW.get(refund.status, ()):
            raise RefundStateError(
                f"Refund cannot move from {refund.status} to {to_status}",
                details={"refund_id": refund_id, "from": refund.status, "to": to_status},
            )

        values["status"] = to_status
        rows = (
            Refund.query
            .filter(Refund.id == refund_id, Refund.status == refund.status)
            .update(values, synchronize_session="fetch")
        )
        if rows != 1:
            db.session.rollback()
            raise RefundStateError("Refund changed concurrently", details={"refund_id": refund_id})
        db.session.commit()
        return Refund.query.get(refund_id)

    def approve_refund(self, refund_id: int, actor_id: int) -> Refund:
        return self._move_refund(refund_id, RefundStatus.APPROVED, decided_by=actor_id, approved_at=datetime.utcnow())

    def start_refund(self, refund_id: int) -> Refund:
        return self._move_refund(refund_id, RefundStatus.PROCESSING)

    def mark_refunded(self, refund_id: int, reference_id: str) -> Refund:
        return self._move_refund(
            refund_id, RefundStatus.REFUNDED, reference_id=reference_id, processed_at=datetime.utcnow()
        )

    def reject_refund(self, refund_id: int, actor_id: int, reason: str) -> Refund:
        return self._move_refund(refund_id, RefundStatus.REJECTED, decided_by=actor_id, reason=reason)
