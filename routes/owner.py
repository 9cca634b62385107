from datetime import datetime

from flask import Blueprint, request, jsonify, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.exclusion import is_overlap_violation
from models.facility import Facility
from models.manual_block import ManualBlock, BLOCK_TYPES
from models.play_area import PlayArea
from models.refund import Refund
from models.reservation import Reservation
from services import get_services, ledger
from services.errors import NotFound, SlotConflict
from utils.auth_context import login_required
from utils.audit import log_event
from utils.timeparse import parse_iso_utc

owner_bp = Blueprint("owner", __name__, url_prefix="/owner")


def _owned_area(play_area_id) -> PlayArea:
    area = PlayArea.query.get(play_area_id) if play_area_id else None
    if not area or area.deleted_at is not None or area.facility.owner_user_id != g.user.id:
        raise NotFound("Play area not found", details={"play_area_id": play_area_id})
    return area


def _block_json(b: ManualBlock) -> dict:
    return {
        "id": b.id,
        "facility_id": b.facility_id,
        "conflict_group_id": b.conflict_group_id,
        "start_at": b.start_at.isoformat(),
        "end_at": b.end_at.isoformat(),
        "block_type": b.block_type,
        "reason": b.reason,
    }


# ---------- OWNER: manual blocks ----------
@owner_bp.post("/blocks")
@login_required
def create_block():
    data = request.get_json(silent=True) or {}
    area = _owned_area(data.get("play_area_id"))

    block_type = (data.get("block_type") or "MAINTENANCE").upper()
    if block_type not in BLOCK_TYPES:
        return jsonify(error=f"block_type must be one of {', '.join(BLOCK_TYPES)}"), 400

    try:
        start_at = parse_iso_utc(data.get("start_at"))
        end_at = parse_iso_utc(data.get("end_at"))
    except (TypeError, ValueError):
        return jsonify(error="Invalid start_at/end_at. Use ISO e.g. 2026-01-20T12:00:00Z"), 400
    if end_at <= start_at:
        return jsonify(error="end_at must be after start_at"), 400

    block = ManualBlock(
        facility_id=area.facility_id,
        conflict_group_id=area.conflict_group_id,
        start_at=start_at,
        end_at=end_at,
        block_type=block_type,
        reason=(data.get("reason") or "").strip() or None,
        created_by=g.user.id,
    )
    db.session.add(block)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if is_overlap_violation(exc):
            # overlaps a hold, a booking or another block
            raise SlotConflict(area.conflict_group_id, start_at, end_at) from exc
        raise

    log_event("BLOCK_CREATE", user_id=g.user.id, entity="manual_block", entity_id=block.id,
              metadata={"block_type": block_type})
    return jsonify(_block_json(block)), 201


@owner_bp.get("/blocks")
@login_required
def list_blocks():
    area = _owned_area(request.args.get("play_area_id", type=int))
    rows = ManualBlock.active(area.conflict_group_id).order_by(ManualBlock.start_at.asc()).all()
    return jsonify([_block_json(b) for b in rows]), 200


@owner_bp.delete("/blocks/<int:block_id>")
@login_required
def delete_block(block_id: int):
    block = ManualBlock.query.get(block_id)
    facility = Facility.query.get(block.facility_id) if block else None
    if not block or block.deleted_at is not None or facility.owner_user_id != g.user.id:
        return jsonify(error="Block not found"), 404

    block.deleted_at = datetime.utcnow()
    db.session.commit()

    log_event("BLOCK_DELETE", user_id=g.user.id, entity="manual_block", entity_id=block.id)
    return jsonify(message="Block removed"), 200


# ---------- OWNER: settlement ----------
@owner_bp.get("/ledger")
@login_required
def ledger_summary():
    period = request.args.get("period") or datetime.utcnow().strftime("%Y-%m")
    return jsonify(ledger.settlement_summary(g.user.id, period)), 200


# ---------- OWNER: refunds on their facilities ----------
def _owned_refund(refund_id: int) -> Refund:
    refund = Refund.query.get(refund_id)
    reservation = Reservation.query.get(refund.reservation_id) if refund else None
    if not refund or reservation.owner_user_id != g.user.id:
        raise NotFound("Refund not found", details={"refund_id": refund_id})
    return refund


def _refund_json(r: Refund) -> dict:
    return {
        "id": r.id,
        "reservation_id": r.reservation_id,
        "refund_amount": r.refund_amount,
        "platform_fee_retained": r.platform_fee_retained,
        "tier": r.tier,
        "status": r.status,
        "reference_id": r.reference_id,
    }


@owner_bp.post("/refunds/<int:refund_id>/<action>")
@login_required
def refund_action(refund_id: int, action: str):
    data = request.get_json(silent=True) or {}
    _owned_refund(refund_id)
    svc = get_services().cancellations

    if action == "approve":
        refund = svc.approve_refund(refund_id, g.user.id)
    elif action == "process":
        refund = svc.start_refund(refund_id)
    elif action == "complete":
        if not data.get("reference_id"):
            return jsonify(error="reference_id required"), 400
        refund = svc.mark_refunded(refund_id, data["reference_id"])
    elif action == "reject":
        refund = svc.reject_refund(refund_id, g.user.id, (data.get("reason") or "").strip() or None)
    else:
        return jsonify(error="Unknown action"), 404

    log_event("REFUND_" + action.upper(), user_id=g.user.id, entity="refund", entity_id=refund_id)
    return jsonify(_refund_json(refund)), 200
