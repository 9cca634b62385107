import logging
from datetime import datetime

from models import db
from models.payment import PaymentIntent
from services.errors import NotFound, PaymentNotPayable, VerificationFailed
from services.gateway import GatewayError
from services.state_machine import HOLD, PaymentIntentStatus

logger = logging.getLogger(__name__)


class PaymentService:
    """Starts hosted-checkout sessions and answers status polls."""

    def __init__(self, gateway, urls: dict):
        self.gateway = gateway
        self.urls = urls

    def _intent(self, intent_id: int) -> PaymentIntent:
        intent = PaymentIntent.query.get(intent_id)
        if not intent:
            raise NotFound("Payment intent not found", details={"payment_intent_id": intent_id})
        return intent

    def initiate_payment(self, intent_id: int, buyer_id: int = None, now: datetime = None) -> dict:
        now = now or datetime.utcnow()
        intent = self._intent(intent_id)
        reservation = intent.reservation
        if buyer_id is not None and reservation.player_user_id != buyer_id:
            raise NotFound("Payment intent not found", details={"payment_intent_id": intent_id})

        if intent.status != PaymentIntentStatus.PENDING or reservation.status != HOLD:
            raise PaymentNotPayable(
                "This booking can no longer be paid",
                details={"intent_status": intent.status, "reservation_status": reservation.status},
            )
        if reservation.hold_expires_at and reservation.hold_expires_at <= now:
            raise PaymentNotPayable("The hold has expired", details={"reservation_id": reservation.id})

        if not intent.gateway_url:
            try:
                session = self.gateway.create_session(intent, reservation, self.urls)
            except GatewayError as exc:
                logger.error("gateway_session_failed", extra={"intent_id": intent.id, "error": str(exc)})
                raise VerificationFailed("Payment gateway unavailable", details={"reason": str(exc)})
            intent.session_key = session["session_key"]
            intent.gateway_url = session["gateway_url"]
            db.session.commit()

        return {
            "payment_intent_id": intent.id,
            "tran_id": intent.gateway_tran_id,
            "amount": intent.amount,
            "currency": intent.currency,
            "gateway_url": intent.gateway_url,
            "expires_at": reservation.hold_expires_at.isoformat() if reservation.hold_expires_at else None,
        }

    def payment_status(self, intent_id: int, buyer_id: int = None) -> dict:
        intent = self._intent(intent_id)
        reservation = intent.reservation
        if buyer_id is not None and reservation.player_user_id != buyer_id:
            raise NotFound("Payment intent not found", details={"payment_intent_id": intent_id})
        return {
            "payment_intent_id": intent.id,
            "status": intent.status,
            "reservation_id": reservation.id,
            "reservation_number": reservation.reservation_number,
            "reservation_status": reservation.status,
            "is_confirmed": reservation.status == "CONFIRMED",
        }
