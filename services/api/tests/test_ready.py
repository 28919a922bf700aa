from unittest.mock import AsyncMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError


def test_ready_reports_redis(client):
    resp = client.get("/api/ready")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "redis_ok": True}


def test_ready_survives_redis_outage(client):
    broken = AsyncMock()
    broken.ping.side_effect = RedisConnectionError("refused")
    with patch("app.routers.ready.get_redis", AsyncMock(return_value=broken)):
        resp = client.get("/api/ready")
    assert resp.status_code == 200
    assert resp.json()["redis_ok"] is False
