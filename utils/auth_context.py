from functools import wraps
from flask import g, jsonify
from security.session import get_session_from_request
from models.user import User

def load_current_user():
    sess = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        return
    g.session = sess
    g.user = User.query.get(sess.user_id)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required", code="AuthenticationRequired", details={}), 401
        return fn(*args, **kwargs)
    return wrapper

def is_buyer(reservation) -> bool:
    user = getattr(g, "user", None)
    return user is not None and reservation.player_user_id == user.id

def is_facility_owner(reservation) -> bool:
    # owners act on bookings at their own facilities only
    user = getattr(g, "user", None)
    return user is not None and reservation.owner_user_id == user.id
