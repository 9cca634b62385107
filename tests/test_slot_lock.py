import json
from datetime import datetime
from unittest.mock import MagicMock

from redis.exceptions import ConnectionError as RedisConnectionError

from services.slot_lock import SlotLock

START = datetime(2030, 1, 8, 10, 0)
END = datetime(2030, 1, 8, 11, 0)


def test_key_layout() -> None:
    lock = SlotLock(None, prefix="lock:slot")
    assert lock.key("cg-1", START, END) == "lock:slot:cg-1:2030-01-08T10:00:00:2030-01-08T11:00:00"


def test_disabled_lock_always_acquires() -> None:
    lock = SlotLock(None)
    assert not lock.enabled
    assert lock.acquire("k", "owner")
    assert not lock.release("k", "owner")
    assert lock.holder("k") is None


def test_acquire_sets_with_nx_and_ttl() -> None:
    redis = MagicMock()
    redis.set.return_value = True
    lock = SlotLock(redis, ttl_seconds=600)

    assert lock.acquire("k", 42, user_id=7)

    args, kwargs = redis.set.call_args
    assert args[0] == "k"
    value = json.loads(args[1])
    assert value["reservation_id"] == "42"
    assert value["user_id"] == 7
    assert kwargs == {"nx": True, "ex": 600}


def test_acquire_reports_contention() -> None:
    redis = MagicMock()
    redis.set.return_value = None
    assert not SlotLock(redis).acquire("k", 1)


def test_redis_outage_degrades_to_acquired(caplog) -> None:
    redis = MagicMock()
    redis.set.side_effect = RedisConnectionError("connection refused")
    lock = SlotLock(redis)

    with caplog.at_level("WARNING"):
        assert lock.acquire("k", 1)
    assert "slot_lock_acquire_failed" in caplog.text


def test_release_checks_owner_in_script() -> None:
    redis = MagicMock()
    redis.eval.return_value = 0
    lock = SlotLock(redis)

    assert not lock.release("k", 99)
    script, numkeys, key, owner = redis.eval.call_args[0]
    assert "reservation_id" in script
    assert (numkeys, key, owner) == (1, "k", "99")


def test_release_swallows_redis_errors() -> None:
    redis = MagicMock()
    redis.eval.side_effect = RedisConnectionError("gone")
    assert not SlotLock(redis).release("k", 1)


def test_extend_only_for_holder() -> None:
    redis = MagicMock()
    redis.get.return_value = json.dumps({"reservation_id": "5", "user_id": 1})
    redis.expire.return_value = True
    lock = SlotLock(redis)

    assert lock.extend("k", 5, 300)
    redis.expire.assert_called_once_with("k", 300)
    assert not lock.extend("k", 6, 300)


def test_holder_handles_bytes_and_garbage() -> None:
    redis = MagicMock()
    lock = SlotLock(redis)

    redis.get.return_value = b'{"reservation_id": "5"}'
    assert lock.holder("k") == {"reservation_id": "5"}
    redis.get.return_value = "not json"
    assert lock.holder("k") is None


def test_unreachable_redis_disables_lock(caplog) -> None:
    from unittest.mock import patch

    from services import _connect_redis

    client = MagicMock()
    client.ping.side_effect = RedisConnectionError("refused")
    with patch("services.Redis.from_url", return_value=client), caplog.at_level("WARNING", logger="services"):
        assert _connect_redis("redis://nowhere:6379/0") is None

    record = next(r for r in caplog.records if r.getMessage() == "slot_lock_redis_unavailable")
    assert record.error == "refused"
