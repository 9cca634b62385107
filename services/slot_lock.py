"""
Best-effort Redis lease on a (conflict group, start, end) key.

Only used to fail fast under contention. Redis being absent or unreachable is
logged and treated as "acquired": exclusivity is decided by the database.
"""
import json
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

# delete only if the stored owner still matches
_RELEASE_IF_OWNER = """
local current = redis.call('get', KEYS[1])
if not current then return 0 end
local ok, data = pcall(cjson.decode, current)
if ok and tostring(data['reservation_id']) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class SlotLock:
    def __init__(self, redis_client=None, ttl_seconds: int = 600, prefix: str = "lock:slot"):
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def key(self, conflict_group_id: str, start_at: datetime, end_at: datetime) -> str:
        return f"{self.prefix}:{conflict_group_id}:{start_at.isoformat()}:{end_at.isoformat()}"

    def _value(self, owner: str, user_id) -> str:
        return json.dumps({
            "reservation_id": str(owner),
            "user_id": user_id,
            "acquired_at": datetime.utcnow().isoformat(),
        })

    def acquire(self, key: str, owner: str, user_id=None, ttl_seconds: int = None) -> bool:
        if not self.enabled:
            return True
        try:
            return bool(self._redis.set(key, self._value(owner, user_id), nx=True, ex=ttl_seconds or self.ttl_seconds))
        except Exception as exc:
            logger.warning(
                "slot_lock_acquire_failed",
                extra={"key": key, "error": str(exc), "error_type": type(exc).__name__},
            )
            return True

    def release(self, key: str, owner: str) -> bool:
        if not self.enabled:
            return False
        try:
            return bool(self._redis.eval(_RELEASE_IF_OWNER, 1, key, str(owner)))
        except Exception as exc:
            logger.warning(
                "slot_lock_release_failed",
                extra={"key": key, "owner": str(owner), "error": str(exc), "error_type": type(exc).__name__},
            )
            return False

    def extend(self, key: str, owner: str, ttl_seconds: int) -> bool:
        holder = self.holder(key)
        if not holder or holder.get("reservation_id") != str(owner):
            return False
        try:
            return bool(self._redis.expire(key, ttl_seconds))
        except Exception as exc:
            logger.warning("slot_lock_extend_failed", extra={"key": key, "error": str(exc)})
            return False

    def holder(self, key: str):
        if not self.enabled:
            return None
        try:
            raw = self._redis.get(key)
        except Exception as exc:
            logger.warning("slot_lock_lookup_failed", extra={"key": key, "error": str(exc)})
            return None
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError:
            return None
