from flask import Blueprint, request, jsonify

from services import get_services
from services.errors import DomainError
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")


@webhook_bp.post("/payment")
def payment_webhook():
    # the gateway posts form fields; JSON is accepted for replays
    payload = request.form.to_dict() if request.form else (request.get_json(silent=True) or {})

    try:
        result = get_services().reconciler.process_webhook_delivery(payload)
    except DomainError as exc:
        log_event("WEBHOOK_REJECTED", entity="payment", entity_id=payload.get("tran_id"),
                  metadata={"code": exc.code, "details": exc.details})
        raise

    if result.code == "IN_PROGRESS":
        # let the gateway retry once the first delivery has finished
        return jsonify(result.to_dict()), 409

    log_event("WEBHOOK_PROCESSED", entity="reservation", entity_id=result.reservation_id,
              metadata={"code": result.code, "accepted": result.accepted, "tran_id": payload.get("tran_id")})
    return jsonify(result.to_dict()), 200
