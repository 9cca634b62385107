"""
Database-backed idempotency keys.

A claim is a unique-constrained insert: of two workers racing on the same key
exactly one insert commits, the other sees IntegrityError and reads the
winner's row. A claim left IN_PROGRESS by a crashed worker can be taken over
once it is older than stale_after_seconds.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from models import db
from models.idempotency_key import IdempotencyKey

logger = logging.getLogger(__name__)

IN_PROGRESS = "IN_PROGRESS"
DONE = "DONE"


@dataclass
class Claim:
    key: str
    acquired: bool
    result: dict = None

    @property
    def in_progress(self) -> bool:
        return not self.acquired and self.result is None


class IdempotencyStore:
    def __init__(self, scope: str = "payment", stale_after_seconds: int = 300):
        self.scope = scope
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def make_key(self, *parts) -> str:
        raw = ":".join([self.scope] + [str(p) for p in parts])
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def claim(self, key: str) -> Claim:
        db.session.add(IdempotencyKey(key=key, scope=self.scope, status=IN_PROGRESS))
        try:
            db.session.commit()
            return Claim(key=key, acquired=True)
        except IntegrityError:
            db.session.rollback()

        existing = IdempotencyKey.query.filter_by(key=key).first()
        if existing is None:
            # released between our insert and this read
            return self.claim(key)
        if existing.status == DONE:
            return Claim(key=key, acquired=False, result=existing.result)
        if self._take_over_stale(key):
            return Claim(key=key, acquired=True)
        return Claim(key=key, acquired=False)

    def _take_over_stale(self, key: str) -> bool:
        now = datetime.utcnow()
        rows = (
            IdempotencyKey.query
            .filter(
                IdempotencyKey.key == key,
                IdempotencyKey.status == IN_PROGRESS,
                IdempotencyKey.created_at < now - self.stale_after,
            )
            .update({"created_at": now}, synchronize_session=False)
        )
        db.session.commit()
        if rows:
            logger.warning("idempotency_claim_taken_over", extra={"key": key})
        return rows == 1

    def record(self, key: str, result: dict, commit: bool = True) -> None:
        """Store the outcome. With commit=False it joins the caller's transaction."""
        IdempotencyKey.query.filter_by(key=key).update(
            {"status": DONE, "result": result, "completed_at": datetime.utcnow()},
            synchronize_session=False,
        )
        if commit:
            db.session.commit()

    def release(self, key: str) -> None:
        """Drop an unfinished claim so a retried delivery can run again."""
        IdempotencyKey.query.filter_by(key=key, status=IN_PROGRESS).delete(synchronize_session=False)
        db.session.commit()

    def lookup(self, key: str):
        row = IdempotencyKey.query.filter_by(key=key).first()
        return row.result if row and row.status == DONE else None
