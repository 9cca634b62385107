import logging

from models.user import User
from utils.emailer import send_booking_email

logger = logging.getLogger(__name__)

_SUBJECTS = {
    "created": "Slot held: {number}",
    "confirmed": "Booking confirmed: {number}",
    "late_payment_accepted": "Booking confirmed: {number}",
    "late_payment_conflict": "Payment received but slot unavailable: {number}",
    "canceled": "Booking cancelled: {number}",
    "expired": "Hold expired: {number}",
    "completed": "Thanks for playing: {number}",
    "payment_failed": "Payment failed: {number}",
}

_BODIES = {
    "created": "Your slot starting {start} is held until {hold_expires_at}. Pay the advance of {advance} to confirm.",
    "confirmed": "Your booking for {start} is confirmed. Advance paid: {advance}. Due at the venue: {remaining}.",
    "late_payment_accepted": "Your payment arrived after the hold expired, but the slot was still free. "
                             "Your booking for {start} is confirmed.",
    "late_payment_conflict": "Your payment arrived after the hold expired and the slot for {start} was taken. "
                             "A full refund of {refund_amount} has been approved.",
    "canceled": "Your booking for {start} was cancelled. Refund: {refund_amount}.",
    "expired": "Your hold for {start} expired before payment arrived.",
    "completed": "Your booking for {start} is complete.",
    "payment_failed": "The payment for your booking on {start} did not go through.",
}


def render(event: str, reservation, context: dict) -> tuple:
    values = {
        "number": reservation.reservation_number,
        "start": reservation.start_at.isoformat(),
        "hold_expires_at": reservation.hold_expires_at.isoformat() if reservation.hold_expires_at else "-",
        "advance": reservation.advance_amount,
        "remaining": reservation.remaining_amount,
        "refund_amount": context.get("refund_amount", 0),
    }
    subject = _SUBJECTS.get(event, "Booking update: {number}").format(**values)
    body = _BODIES.get(event, "Booking {number} changed: " + event).format(**values)
    return subject, body


class LogNotifier:
    """Writes notifications to the application log (local dev, tests)."""

    def notify(self, event: str, reservation, context: dict = None) -> bool:
        subject, _ = render(event, reservation, context or {})
        logger.info(
            "notification",
            extra={"event": event, "reservation_id": reservation.id, "subject": subject},
        )
        return True


class EmailNotifier:
    """Mails the booking contact. Replies go to the facility owner."""

    def notify(self, event: str, reservation, context: dict = None) -> bool:
        subject, body = render(event, reservation, context or {})
        owner = User.query.get(reservation.owner_user_id) if reservation.owner_user_id else None
        ok, err = send_booking_email(reservation, subject, body, reply_to=owner.email if owner else None)
        if not ok:
            logger.warning(
                "notification_email_failed",
                extra={"event": event, "reservation_id": reservation.id, "error": err},
            )
        return ok


def build_notifier(provider: str):
    if provider == "email":
        return EmailNotifier()
    return LogNotifier()
