"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用记录型传输替代真实 WebSocket，
使聊天核心的单元测试不需要网络即可运行。
"""
from __future__ import annotations

import os

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from app.schemas.chat_events import OutboundEvent  # noqa: E402
from app.services.connection_registry import ConnectionRegistry  # noqa: E402
from app.services.dispatcher import BroadcastDispatcher  # noqa: E402
from app.services.presence import PresenceTracker  # noqa: E402
from app.services.room_store import RoomStore  # noqa: E402


class RecordingTransport:
    """记录每个会话收到的出站事件，代替 ``ConnectionHub``。"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, OutboundEvent]] = []

    def send(self, session: str, event: OutboundEvent) -> None:
        self.sent.append((session, event))

    def events_for(self, session: str, name: str | None = None) -> list[OutboundEvent]:
        """某个会话收到的事件（可按事件名过滤）。"""
        return [
            event for target, event in self.sent
            if target == session and (name is None or event.event == name)
        ]

    def last(self, session: str, name: str) -> OutboundEvent:
        """某个会话最近收到的指定事件。"""
        events = self.events_for(session, name)
        assert events, f"{session} 没有收到 {name} 事件"
        return events[-1]

    def clear(self) -> None:
        self.sent.clear()

    @staticmethod
    def names(event: OutboundEvent) -> list[str]:
        """从 onlineUsers / typing 事件中取出昵称列表。"""
        return [user["displayName"] for user in event.data["users"]]


@pytest.fixture()
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture()
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def make_dispatcher(transport: RecordingTransport, registry: ConnectionRegistry):
    """按需构造调度器（可指定房间容量与输入超时）。"""
    created: list[BroadcastDispatcher] = []

    def _make(capacity: int = 100, typing_timeout: float = 2.0) -> BroadcastDispatcher:
        dispatcher = BroadcastDispatcher(
            registry=registry,
            rooms=RoomStore(registry, capacity=capacity),
            presence=PresenceTracker(timeout=typing_timeout),
            transport=transport,
            message_max_length=500,
        )
        created.append(dispatcher)
        return dispatcher

    yield _make

    for dispatcher in created:
        dispatcher.presence.close()
