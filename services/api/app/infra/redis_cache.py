import json
from typing import Any, Callable

from app.infra.redis_client import get_sync_redis


def get_or_set_json_sync(key: str, ttl_sec: int, compute_func: Callable[[], Any]) -> tuple[Any, bool]:
    """Return (value, cache_hit). Computes and stores the value on a miss."""
    r = get_sync_redis()
    raw = r.get(key)
    if raw:
        return json.loads(raw), True

    val = compute_func()
    r.set(key, json.dumps(val), ex=ttl_sec)
    return val, False
