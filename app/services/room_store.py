"""
app.services.room_store
~~~~~~~~~~~~~~~~~~~~~~~

房间存储 —— 维护每个房间的成员集合与有界消息日志。

房间在第一次有人加入时懒创建，成员清空后依然保留（不做自动回收）。
消息日志只保留最近 ``capacity`` 条用户消息，超出时从最旧的一端淘汰。
"""
from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

from app.core.logging import get_logger
from app.core.settings import settings
from app.schemas.chat_events import ChatMessage, Identity, RoomInfoData
from app.services.connection_registry import ConnectionRegistry

logger = get_logger(__name__)


class Room:
    """一个聊天房间。

    Attributes:
        name: 房间名。
        members: 成员身份 id，按加入顺序排列（dict 充当有序集合）。
        messages: 有界消息日志，``maxlen`` 即容量。
        created_at: 创建时间。
    """

    def __init__(self, name: str, capacity: int) -> None:
        self.name = name
        self.members: dict[str, None] = {}
        self.messages: deque[ChatMessage] = deque(maxlen=capacity)
        self.created_at: datetime = datetime.now(timezone.utc)

    @property
    def capacity(self) -> int:
        """消息日志容量。"""
        return self.messages.maxlen or 0

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            name=self.name,
            member_count=len(self.members),
            message_count=len(self.messages),
            created_at=self.created_at,
        )


class RoomStore:
    """全部房间的成员与消息存储。

    Attributes:
        registry: 用于把成员 id 解析为身份的注册表。
        capacity: 每个房间保留的最大消息条数。
    """

    def __init__(self, registry: ConnectionRegistry, capacity: int | None = None) -> None:
        self.registry = registry
        self.capacity: int = settings.effective_history_capacity if capacity is None else capacity
        if self.capacity < 1:
            raise ValueError(f"房间消息容量必须为正数: {self.capacity}")
        self._rooms: dict[str, Room] = {}

    def join(self, identity: Identity) -> Room:
        """把身份加入其所属房间（房间不存在则创建）。"""
        room = self._rooms.get(identity.room_name)
        if room is None:
            room = Room(identity.room_name, self.capacity)
            self._rooms[identity.room_name] = room
            logger.info("房间已创建 | room=%s | capacity=%d", room.name, self.capacity)
        room.members[identity.id] = None
        return room

    def leave(self, identity: Identity) -> None:
        """把身份移出其所属房间（幂等，空房间保留）。"""
        room = self._rooms.get(identity.room_name)
        if room is not None:
            room.members.pop(identity.id, None)

    def append_message(self, room_name: str, message: ChatMessage) -> None:
        """向房间日志追加一条消息，超出容量时淘汰最旧的消息。

        房间不存在时什么也不做。
        """
        room = self._rooms.get(room_name)
        if room is None:
            logger.warning("向不存在的房间追加消息，已忽略 | room=%s", room_name)
            return
        # deque(maxlen) 在追加时自动从左端淘汰
        room.messages.append(message)

    def history(self, room_name: str) -> list[ChatMessage]:
        """按时间正序返回房间保留的消息，房间不存在时返回空列表。"""
        room = self._rooms.get(room_name)
        if room is None:
            return []
        return list(room.messages)

    def members_resolved(self, room_name: str) -> list[Identity]:
        """返回房间内所有仍然有效的成员身份（按加入顺序）。"""
        room = self._rooms.get(room_name)
        if room is None:
            return []
        resolved: list[Identity] = []
        for identity_id in room.members:
            identity = self.registry.get(identity_id)
            if identity is not None:
                resolved.append(identity)
        return resolved

    def get(self, room_name: str) -> Room | None:
        """按名称获取房间。"""
        return self._rooms.get(room_name)

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]

    @property
    def room_count(self) -> int:
        """已创建的房间数（含空房间）。"""
        return len(self._rooms)
