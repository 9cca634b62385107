from datetime import date, timedelta

from flask import Blueprint, request, jsonify

from models.play_area import PlayArea
from services import availability
from utils.timeparse import parse_iso_utc

availability_bp = Blueprint("availability", __name__, url_prefix="/availability")


def _play_area_or_404(play_area_id):
    area = PlayArea.query.get(play_area_id) if play_area_id else None
    if not area or not area.is_active or area.deleted_at is not None:
        return None
    return area


@availability_bp.get("/grid")
def grid():
    # ?play_area_id=&pricing_profile_id=&date=YYYY-MM-DD
    area = _play_area_or_404(request.args.get("play_area_id", type=int))
    profile_id = request.args.get("pricing_profile_id", type=int)
    if not area or not profile_id:
        return jsonify(error="play_area_id and pricing_profile_id are required"), 400

    try:
        day = date.fromisoformat(request.args.get("date") or "")
    except ValueError:
        return jsonify(error="Invalid date. Use YYYY-MM-DD"), 400

    result = availability.compute_grid(area.conflict_group_id, profile_id, day)
    return jsonify(result.to_dict()), 200


@availability_bp.get("/check")
def check():
    # ?play_area_id=&start_at=&duration_minutes=&buffer_minutes=
    area = _play_area_or_404(request.args.get("play_area_id", type=int))
    duration = request.args.get("duration_minutes", type=int)
    buffer_minutes = request.args.get("buffer_minutes", default=0, type=int)
    if not area or not duration:
        return jsonify(error="play_area_id and duration_minutes are required"), 400

    try:
        start_at = parse_iso_utc(request.args.get("start_at"))
    except ValueError:
        return jsonify(error="Invalid start_at"), 400

    blocked_end = start_at + timedelta(minutes=duration + buffer_minutes)
    free = availability.is_slot_free(area.conflict_group_id, start_at, blocked_end)
    return jsonify(free=free, start_at=start_at.isoformat(), blocked_end_at=blocked_end.isoformat()), 200


@availability_bp.get("/facilities/<int:facility_id>/now")
def available_now(facility_id: int):
    hours = request.args.get("hours", type=int)
    return jsonify(facility_id=facility_id, available=availability.facility_available_now(facility_id, hours)), 200
