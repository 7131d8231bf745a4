"""
tests.test_chat_ws
~~~~~~~~~~~~~~~~~~

WebSocket 端点集成测试 —— 通过 FastAPI ``TestClient`` 走完整的
应用生命周期（ChatSystem 启动 / 停止）与事件协议。
"""
from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.main import app


def _join(ws: Any, name: str, room: str = "general") -> None:
    ws.send_json({"event": "joinRoom", "data": {"displayName": name, "room": room}})


def _names(event: dict) -> list[str]:
    return [user["displayName"] for user in event["data"]["users"]]


@pytest.fixture()
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


class TestChatWebSocket:
    """测试 /ws/chat 事件协议。"""

    def test_join_send_leave_flow(self, client: TestClient) -> None:
        """两人加入、发言、一人离开的完整流程。"""
        with client.websocket_connect("/ws/chat") as j1:
            _join(j1, "J1")
            welcome = j1.receive_json()
            assert welcome["event"] == "message"
            assert welcome["data"]["kind"] == "system"
            assert j1.receive_json() == {"event": "roomHistory", "data": {"messages": []}}
            assert _names(j1.receive_json()) == ["J1"]

            with client.websocket_connect("/ws/chat") as j2:
                _join(j2, "J2")
                assert j2.receive_json()["event"] == "message"
                assert j2.receive_json()["event"] == "roomHistory"
                assert _names(j2.receive_json()) == ["J1", "J2"]

                joined = j1.receive_json()
                assert joined["data"]["body"] == "J2 has joined the chat"
                assert _names(j1.receive_json()) == ["J1", "J2"]

                j1.send_json({"event": "sendMessage", "data": {"body": "hello"}})
                for ws in (j1, j2):
                    message = ws.receive_json()
                    assert message["event"] == "message"
                    assert message["data"]["body"] == "hello"
                    assert message["data"]["kind"] == "user"
                    assert message["data"]["senderDisplayName"] == "J1"

                j2.send_json({"event": "leaveRoom", "data": {}})
                assert j2.receive_json() == {"event": "leftRoom", "data": {}}

                left = j1.receive_json()
                assert left["data"]["body"] == "J2 has left the chat"
                assert _names(j1.receive_json()) == ["J1"]

            stats = client.get("/api/stats").json()["data"]
            assert stats["activeIdentityCount"] == 1
            assert stats["roomCount"] == 1

    def test_disconnect_notifies_room(self, client: TestClient) -> None:
        """连接关闭后，房间内其他人收到离开通知与新的在线列表。"""
        with client.websocket_connect("/ws/chat") as j1:
            _join(j1, "J1")
            for _ in range(3):
                j1.receive_json()

            with client.websocket_connect("/ws/chat") as j2:
                _join(j2, "J2")
                for _ in range(3):
                    j2.receive_json()
                for _ in range(2):
                    j1.receive_json()

            left = j1.receive_json()
            assert left["data"]["body"] == "J2 has left the chat"
            assert _names(j1.receive_json()) == ["J1"]

    def test_send_before_join(self, client: TestClient) -> None:
        """加入前发送消息收到 error，连接保持可用。"""
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"event": "sendMessage", "data": {"body": "hello"}})
            assert ws.receive_json() == {"event": "error", "data": {"message": "User not found"}}

            _join(ws, "J1")
            assert ws.receive_json()["event"] == "message"

    def test_malformed_frame(self, client: TestClient) -> None:
        """非法帧只回复 error，不断开连接。"""
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_text("not json")
            assert ws.receive_json() == {"event": "error", "data": {"message": "Malformed event"}}

            ws.send_json({"event": "joinRoom", "data": {"displayName": "x", "room": "general"}})
            error = ws.receive_json()
            assert error["event"] == "error"
            assert "Display name" in error["data"]["message"]

    def test_send_message_rate_limited(self, client: TestClient) -> None:
        """极速连续发送时，第二条被限流拦截。"""
        with client.websocket_connect("/ws/chat") as ws:
            _join(ws, "J1")
            for _ in range(3):
                ws.receive_json()

            ws.send_json({"event": "sendMessage", "data": {"body": "one"}})
            ws.send_json({"event": "sendMessage", "data": {"body": "two"}})

            received = [ws.receive_json(), ws.receive_json()]
            events = sorted(event["event"] for event in received)
            assert events == ["error", "message"]
            message = next(event for event in received if event["event"] == "message")
            assert message["data"]["body"] == "one"
