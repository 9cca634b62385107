import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

from flask import current_app

logger = logging.getLogger(__name__)


def booking_message(reservation, subject: str, body: str, reply_to: str = None) -> EmailMessage:
    """
    One mail about one reservation. Every mail for a booking carries the same
    X-Reservation header so mail clients and support can thread them.
    """
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or current_app.config.get("SMTP_USERNAME")

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = reservation.contact_email
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(idstring=reservation.reservation_number)
    msg["X-Reservation"] = reservation.reservation_number
    if reply_to:
        # players reply straight to the facility
        msg["Reply-To"] = reply_to
    msg.set_content(body)
    return msg


def send_booking_email(reservation, subject: str, body: str, reply_to: str = None):
    """Returns (ok, error). SMTP problems are reported, not raised."""
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    use_tls = current_app.config.get("SMTP_USE_TLS", True)

    if not host:
        return False, "Email not configured"
    if not reservation.contact_email:
        return False, "No recipient"

    msg = booking_message(reservation, subject, body, reply_to=reply_to)
    if not msg["From"]:
        return False, "Email not configured"

    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning(
            "email_send_failed",
            extra={"reservation_number": reservation.reservation_number, "error": str(exc)},
        )
        return False, str(exc)
