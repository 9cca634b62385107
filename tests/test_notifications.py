import smtplib
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from models.reservation import Reservation
from services.events import EventDispatcher
from services.notifications import EmailNotifier, LogNotifier, build_notifier, render
from utils.emailer import booking_message, send_booking_email

from conftest import NOW, at


def _reservation(held) -> Reservation:
    return Reservation.query.get(held.reservation_id)


def _contact_hold(services, world):
    held = services.holds.create_hold(
        world.player_id, world.play_area_id, world.profile_id, at(16), 60,
        contact={"name": "Rafi Player", "email": "player@example.com"},
        now=NOW,
    )
    return _reservation(held)


def test_render_fills_booking_values(world, hold) -> None:
    r = _reservation(hold(16))
    subject, body = render("created", r, {})
    assert subject == f"Slot held: {r.reservation_number}"
    assert at(16).isoformat() in body
    assert "advance of 100" in body


def test_render_unknown_event_falls_back(world, hold) -> None:
    r = _reservation(hold(16))
    subject, body = render("rescheduled", r, {})
    assert subject.startswith("Booking update:")
    assert body.endswith("rescheduled")


def test_render_refund_amount(world, hold) -> None:
    r = _reservation(hold(16))
    _, body = render("late_payment_conflict", r, {"refund_amount": 100})
    assert "full refund of 100" in body


def test_build_notifier() -> None:
    assert isinstance(build_notifier("email"), EmailNotifier)
    assert isinstance(build_notifier("log"), LogNotifier)
    assert isinstance(build_notifier("carrier-pigeon"), LogNotifier)


def test_dispatcher_drops_notifier_failures(world, hold, caplog) -> None:
    r = _reservation(hold(16))
    broken = MagicMock()
    broken.notify.side_effect = RuntimeError("smtp down")

    EventDispatcher(broken).publish("confirmed", r, refund_amount=0)

    broken.notify.assert_called_once_with("confirmed", r, {"refund_amount": 0})
    assert "event_dispatch_failed" in caplog.text


class TestBookingEmail:
    def test_message_headers(self, app, services, world) -> None:
        app.config["SMTP_FROM_EMAIL"] = "bookings@slotkeeper.test"
        r = _contact_hold(services, world)

        msg = booking_message(r, "Booking confirmed", "see you there", reply_to="owner@example.com")
        assert msg["To"] == "player@example.com"
        assert msg["X-Reservation"] == r.reservation_number
        assert msg["Reply-To"] == "owner@example.com"
        assert r.reservation_number in msg["Message-ID"]

    def test_not_configured(self, app, world, hold) -> None:
        r = _reservation(hold(16))
        assert send_booking_email(r, "s", "b") == (False, "Email not configured")

    def test_smtp_failure_is_reported(self, app, services, world) -> None:
        app.config.update(SMTP_HOST="smtp.test", SMTP_FROM_EMAIL="bookings@slotkeeper.test")
        r = _contact_hold(services, world)

        with patch("utils.emailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
            ok, err = send_booking_email(r, "s", "b")

        assert not ok
        assert "busy" in err

    def test_email_notifier_replies_to_owner(self, app, services, world) -> None:
        app.config.update(SMTP_HOST="smtp.test", SMTP_FROM_EMAIL="bookings@slotkeeper.test", SMTP_USE_TLS=False)
        r = _contact_hold(services, world)

        with patch("utils.emailer.smtplib.SMTP") as smtp:
            assert EmailNotifier().notify("confirmed", r, {})

        server = smtp.return_value.__enter__.return_value
        sent = server.send_message.call_args[0][0]
        assert sent["Reply-To"] == "owner@example.com"
        assert sent["Subject"] == f"Booking confirmed: {r.reservation_number}"
        server.starttls.assert_not_called()


class TestCli:
    def test_expire_holds_command(self, app, world, hold) -> None:
        hold(16, now=datetime.utcnow() - timedelta(hours=1))
        result = app.test_cli_runner().invoke(args=["expire-holds"])
        assert result.exit_code == 0
        assert "1 hold(s) expired" in result.output

    def test_complete_bookings_command(self, app, world) -> None:
        result = app.test_cli_runner().invoke(args=["complete-bookings", "--limit", "10"])
        assert result.exit_code == 0
        assert "0 booking(s) completed" in result.output
