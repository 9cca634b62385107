from datetime import datetime, timedelta
from flask import current_app

from models import db
from models.booking_rate_limit import BookingRateLimit


def check_and_increment_booking_rate(user_id: int, now: datetime = None) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Sliding window counter per buyer: the previous window's count is weighted
    by how much of it still overlaps the sliding window.
    """
    now = now or datetime.utcnow()

    window_seconds = current_app.config.get("BOOKING_RATE_WINDOW_SECONDS", 60)
    max_requests = current_app.config.get("BOOKING_RATE_MAX_REQUESTS", 10)
    window = timedelta(seconds=window_seconds)

    row = BookingRateLimit.query.filter_by(user_id=user_id).first()
    if not row:
        row = BookingRateLimit(user_id=user_id, window_start=now, count=0, previous_count=0)
        db.session.add(row)

    elapsed = now - row.window_start
    if elapsed >= window * 2:
        row.window_start = now
        row.previous_count = 0
        row.count = 0
    elif elapsed >= window:
        row.window_start = row.window_start + window
        row.previous_count = row.count
        row.count = 0

    window_end = row.window_start + window
    overlap = 1 - (now - row.window_start) / window
    weighted = row.previous_count * overlap + row.count

    if weighted + 1 > max_requests:
        db.session.commit()
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    row.count += 1
    db.session.commit()
    return True, 0
