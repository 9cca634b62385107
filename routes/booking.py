from flask import Blueprint, request, jsonify, g

from models.play_area import PlayArea
from models.reservation import Reservation
from services import get_services
from services.errors import NotFound, SlotConflict
from utils.auth_context import is_buyer, is_facility_owner, login_required
from utils.audit import log_event
from utils.timeparse import parse_iso_utc

booking_bp = Blueprint("booking", __name__)


def _reservation_json(r: Reservation) -> dict:
    intent = r.latest_intent()
    return {
        "id": r.id,
        "reservation_number": r.reservation_number,
        "status": r.status,
        "payment_stage": r.payment_stage,
        "play_area_id": r.play_area_id,
        "start_at": r.start_at.isoformat(),
        "end_at": r.end_at.isoformat(),
        "blocked_end_at": r.blocked_end_at.isoformat(),
        "duration_minutes": r.duration_minutes,
        "total_amount": r.total_amount,
        "advance_amount": r.advance_amount,
        "remaining_amount": r.remaining_amount,
        "offline_amount_collected": r.offline_amount_collected,
        "is_peak_pricing": r.is_peak_pricing,
        "hold_expires_at": r.hold_expires_at.isoformat() if r.hold_expires_at else None,
        "payment_intent": {"id": intent.id, "status": intent.status} if intent else None,
        "created_at": r.created_at.isoformat(),
    }


def _own_reservation(reservation_id: int, allow_owner: bool = True) -> Reservation:
    """Buyer, or the facility owner when allow_owner is set."""
    r = Reservation.live().filter_by(id=reservation_id).first()
    if not r:
        raise NotFound("Booking not found", details={"reservation_id": reservation_id})
    if is_buyer(r) or (allow_owner and is_facility_owner(r)):
        return r
    raise NotFound("Booking not found", details={"reservation_id": reservation_id})


# ---------- PLAYERS: place a hold (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/holds")
@login_required
def create_hold():
    data = request.get_json(silent=True) or {}
    play_area_id = data.get("play_area_id")
    pricing_profile_id = data.get("pricing_profile_id")
    duration = data.get("duration_minutes")
    if not play_area_id or not pricing_profile_id or not duration or not data.get("start_at"):
        return jsonify(error="play_area_id, pricing_profile_id, start_at, duration_minutes are required"), 400

    try:
        start_at = parse_iso_utc(data["start_at"])
        duration = int(duration)
    except (TypeError, ValueError):
        return jsonify(error="Invalid start_at or duration. Use ISO e.g. 2026-01-20T12:00:00Z"), 400

    contact = {
        "name": data.get("contact_name") or g.user.full_name,
        "phone": data.get("contact_phone") or g.user.phone_number,
        "email": data.get("contact_email") or g.user.email,
        "notes": (data.get("notes") or "").strip() or None,
    }

    try:
        result = get_services().holds.create_hold(
            g.user.id, int(play_area_id), int(pricing_profile_id), start_at, duration, contact
        )
    except SlotConflict as exc:
        log_event("HOLD_CONFLICT", user_id=g.user.id, entity="play_area", entity_id=play_area_id, metadata=exc.details)
        raise

    log_event("HOLD_CREATE", user_id=g.user.id, entity="reservation", entity_id=result.reservation_id,
              metadata={"start_at": start_at.isoformat(), "duration_minutes": duration})
    return jsonify(result.to_dict()), 201


# ---------- PLAYERS: cancellation quote + cancel ----------
@booking_bp.get("/bookings/<int:reservation_id>/cancellation-quote")
@login_required
def cancellation_quote(reservation_id: int):
    r = _own_reservation(reservation_id)
    quote = get_services().cancellations.quote(r.id)
    return jsonify(quote.to_dict()), 200


@booking_bp.post("/bookings/<int:reservation_id>/cancel")
@login_required
def cancel_booking(reservation_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    r = _own_reservation(reservation_id)
    result = get_services().cancellations.cancel(r.id, g.user.id, reason)

    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="reservation", entity_id=r.id,
              metadata={"reason": reason, "tier": result.tier, "refund_amount": result.refund_amount})
    return jsonify(result.to_dict()), 200


# ---------- PLAYERS: view my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    status = request.args.get("status")
    q = Reservation.live().filter_by(player_user_id=g.user.id)
    if status:
        q = q.filter_by(status=status.upper())

    rows = q.order_by(Reservation.start_at.desc()).limit(200).all()
    return jsonify([_reservation_json(r) for r in rows]), 200


@booking_bp.get("/bookings/<int:reservation_id>")
@login_required
def get_booking(reservation_id: int):
    return jsonify(_reservation_json(_own_reservation(reservation_id))), 200


# ---------- OWNER: collect the balance at the venue ----------
@booking_bp.post("/bookings/<int:reservation_id>/offline-payments")
@login_required
def record_offline_payment(reservation_id: int):
    data = request.get_json(silent=True) or {}
    r = Reservation.live().filter_by(id=reservation_id).first()
    if not r or not is_facility_owner(r):
        return jsonify(error="Booking not found"), 404

    try:
        amount = int(data.get("amount"))
    except (TypeError, ValueError):
        return jsonify(error="amount must be an integer"), 400

    r = get_services().holds.record_offline_payment(
        r.id, g.user.id, amount, method=(data.get("method") or "CASH").upper(), notes=data.get("notes")
    )
    log_event("OFFLINE_PAYMENT", user_id=g.user.id, entity="reservation", entity_id=r.id, metadata={"amount": amount})
    return jsonify(_reservation_json(r)), 200


# ---------- PLAYERS: play areas of a facility ----------
@booking_bp.get("/facilities/<int:facility_id>/play-areas")
def list_play_areas(facility_id: int):
    areas = PlayArea.query.filter_by(facility_id=facility_id, is_active=True, deleted_at=None).all()
    return jsonify([
        {
            "id": a.id,
            "name": a.name,
            "pricing_profiles": [
                {
                    "id": p.id,
                    "sport": p.sport,
                    "allowed_durations": p.allowed_durations,
                    "duration_prices": p.duration_prices,
                    "peak_duration_prices": p.peak_duration_prices,
                    "buffer_minutes": p.buffer_minutes,
                }
                for p in a.pricing_profiles if p.is_active
            ],
        }
        for a in areas
    ]), 200
