from datetime import datetime, timezone


def parse_iso_utc(value: str) -> datetime:
    """
    ISO 8601 -> naive UTC. Values without an offset are taken as UTC.
    Raises ValueError on bad input.
    """
    if not value:
        raise ValueError("empty datetime")
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
