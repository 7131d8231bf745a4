"""
tests.test_room_store
~~~~~~~~~~~~~~~~~~~~~

RoomStore 单元测试：懒创建、有界 FIFO 日志、成员解析。
"""
from __future__ import annotations

import pytest

from app.core.settings import settings
from app.schemas.chat_events import ChatMessage
from app.services.connection_registry import ConnectionRegistry
from app.services.room_store import RoomStore


def _msg(body: str) -> ChatMessage:
    return ChatMessage(sender_display_name="alice", body=body)


class TestRoomStore:
    """测试房间成员与消息日志。"""

    def test_join_creates_room_lazily(self, registry: ConnectionRegistry) -> None:
        """首次加入创建房间，空日志。"""
        store = RoomStore(registry, capacity=10)
        identity = registry.register_identity("s1", "alice", "general")

        assert store.get("general") is None
        room = store.join(identity)

        assert store.get("general") is room
        assert identity.id in room.members
        assert store.history("general") == []
        assert store.room_count == 1

    def test_empty_room_is_retained(self, registry: ConnectionRegistry) -> None:
        """最后一个成员离开后房间依然保留。"""
        store = RoomStore(registry, capacity=10)
        identity = registry.register_identity("s1", "alice", "general")
        store.join(identity)

        store.leave(identity)
        store.leave(identity)

        assert store.get("general") is not None
        assert store.members_resolved("general") == []
        assert store.room_count == 1

    def test_capacity_evicts_oldest_first(self, registry: ConnectionRegistry) -> None:
        """超出容量时只淘汰最旧的消息，其余顺序不变。"""
        store = RoomStore(registry, capacity=3)
        store.join(registry.register_identity("s1", "alice", "general"))

        for body in ["a", "b", "c", "d", "e"]:
            store.append_message("general", _msg(body))
            assert len(store.history("general")) <= 3

        assert [m.body for m in store.history("general")] == ["c", "d", "e"]

    def test_append_to_missing_room_is_noop(self, registry: ConnectionRegistry) -> None:
        """向不存在的房间追加消息不创建房间。"""
        store = RoomStore(registry, capacity=3)

        store.append_message("nowhere", _msg("hi"))

        assert store.get("nowhere") is None
        assert store.history("nowhere") == []

    def test_history_is_a_copy(self, registry: ConnectionRegistry) -> None:
        """修改返回的历史不影响房间日志。"""
        store = RoomStore(registry, capacity=3)
        store.join(registry.register_identity("s1", "alice", "general"))
        store.append_message("general", _msg("a"))

        store.history("general").clear()

        assert len(store.history("general")) == 1

    def test_members_resolved_skips_dangling_ids(self, registry: ConnectionRegistry) -> None:
        """无法解析的成员 id 会被静默跳过，其余按加入顺序返回。"""
        store = RoomStore(registry, capacity=3)
        alice = registry.register_identity("s1", "alice", "general")
        bob = registry.register_identity("s2", "bob", "general")
        store.join(alice)
        store.join(bob)

        registry.remove("s1")

        assert store.members_resolved("general") == [bob]

    def test_rooms_are_independent(self, registry: ConnectionRegistry) -> None:
        """不同房间的成员与日志互不影响。"""
        store = RoomStore(registry, capacity=3)
        store.join(registry.register_identity("s1", "alice", "general"))
        store.join(registry.register_identity("s2", "bob", "random"))
        store.append_message("general", _msg("hi"))

        assert store.history("random") == []
        assert [i.display_name for i in store.members_resolved("random")] == ["bob"]
        infos = {info.name: info for info in store.list_rooms()}
        assert infos["general"].message_count == 1
        assert infos["random"].member_count == 1

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_invalid_capacity_rejected(self, registry: ConnectionRegistry, capacity: int) -> None:
        """容量必须为正数，显式传入 0 也不会退回默认值。"""
        with pytest.raises(ValueError):
            RoomStore(registry, capacity=capacity)

    def test_default_capacity_from_settings(self, registry: ConnectionRegistry) -> None:
        """未指定容量时按配置推断。"""
        store = RoomStore(registry)

        assert store.capacity == settings.effective_history_capacity
