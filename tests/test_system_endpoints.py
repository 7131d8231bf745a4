"""
tests.test_system_endpoints
~~~~~~~~~~~~~~~~~~~~~~~~~~~

只读状态接口测试：/health、/api/stats、/api/rooms 以及 prod 环境下的隐藏行为。
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.rate_limit import limiter
from app.core.settings import settings
from app.main import app


@pytest.fixture()
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


class TestSystemEndpoints:
    """测试状态报告接口。"""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["profile"] == settings.PROFILE
        assert body["stats"] == {
            "activeIdentityCount": 0,
            "roomCount": 0,
            "activeSessionCount": 0,
            "connectedSockets": 0,
        }

    def test_stats_and_rooms_reflect_joins(self, client: TestClient) -> None:
        """加入房间后计数与房间列表同步更新；离开后房间仍被保留。"""
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"event": "joinRoom", "data": {"displayName": "alice", "room": "general"}})
            for _ in range(3):
                ws.receive_json()

            stats = client.get("/api/stats").json()
            assert stats["code"] == 200
            assert stats["data"]["activeIdentityCount"] == 1
            assert stats["data"]["connectedSockets"] == 1

            rooms = client.get("/api/rooms").json()["data"]
            assert [room["name"] for room in rooms] == ["general"]
            assert rooms[0]["memberCount"] == 1

            ws.send_json({"event": "leaveRoom", "data": {}})
            assert ws.receive_json()["event"] == "leftRoom"

        rooms = client.get("/api/rooms").json()["data"]
        assert rooms[0]["memberCount"] == 0

    def test_prod_hides_stats(self, client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
        """prod 环境不暴露计数。"""
        monkeypatch.setattr(settings, "ENVIRONMENT", "prod")

        assert "stats" not in client.get("/health").json()
        assert client.get("/api/stats").status_code == 404
        assert client.get("/api/rooms").status_code == 404

    def test_health_is_rate_limited(self, client: TestClient) -> None:
        """超出端点装饰器声明的额度后返回 429。"""
        limiter.reset()
        try:
            statuses = [client.get("/health").status_code for _ in range(101)]
        finally:
            limiter.reset()

        assert statuses[:100] == [200] * 100
        assert statuses[100] == 429
