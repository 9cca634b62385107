from flask import Blueprint, jsonify, g

from services import get_services
from utils.auth_context import login_required
from utils.audit import log_event

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/<int:intent_id>/initiate")
@login_required
def initiate(intent_id: int):
    out = get_services().payments.initiate_payment(intent_id, buyer_id=g.user.id)
    log_event("PAYMENT_INITIATE", user_id=g.user.id, entity="payment_intent", entity_id=intent_id)
    return jsonify(out), 200


@payments_bp.get("/<int:intent_id>/status")
@login_required
def status(intent_id: int):
    return jsonify(get_services().payments.payment_status(intent_id, buyer_id=g.user.id)), 200
