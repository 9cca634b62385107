from flask import Blueprint, jsonify
from sqlalchemy import text

from models import db
from services import get_services

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    db.session.execute(text("SELECT 1"))
    return jsonify(status="ok", slot_lock=get_services().slot_lock.enabled), 200
