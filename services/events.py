import logging

from models import db
from models.booking_event import BookingEvent

logger = logging.getLogger(__name__)


def record_event(reservation_id: int, event: str, from_status: str = None, to_status: str = None,
                 metadata: dict = None, created_by: int = None) -> BookingEvent:
    """Append a lifecycle event in the current transaction."""
    row = BookingEvent(
        reservation_id=reservation_id,
        event=event,
        from_status=from_status,
        to_status=to_status,
        metadata_json=metadata or None,
        created_by=created_by,
    )
    db.session.add(row)
    return row


class EventDispatcher:
    """
    Forwards committed lifecycle events to the notifier.
    Delivery problems are logged and dropped.
    """

    def __init__(self, notifier):
        self.notifier = notifier

    def publish(self, event: str, reservation, **context) -> None:
        try:
            self.notifier.notify(event, reservation, context)
        except Exception:
            logger.exception(
                "event_dispatch_failed",
                extra={"event": event, "reservation_id": getattr(reservation, "id", None)},
            )
