"""
app.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~

聊天系统 —— 进程级装配根，持有三个存储、连接中心与调度器。

在 FastAPI lifespan 中创建并挂载到 ``app.state.chat_system``，
``start()`` / ``stop()`` 分别在 worker 启动 / 关闭时各调用一次。
"""
from __future__ import annotations

from app.core.logging import get_logger
from app.core.settings import Settings, settings as default_settings
from app.schemas.chat_events import RoomInfoData, StatsData
from app.services.connection_hub import ConnectionHub
from app.services.connection_registry import ConnectionRegistry, NameRule
from app.services.dispatcher import BroadcastDispatcher
from app.services.presence import PresenceTracker
from app.services.room_store import RoomStore

logger = get_logger(__name__)


class ChatSystem:
    """聊天系统（每个进程一个）。

    - ``start()`` / ``stop()`` → 调度协程生命周期
    - ``stats()``              → 只读计数快照
    - ``list_rooms()``         → 房间摘要列表

    Attributes:
        registry: 会话 ↔ 身份注册表。
        rooms: 房间存储。
        presence: 输入状态跟踪器。
        hub: WebSocket 连接中心（调度器的出站端口）。
        dispatcher: 单写者调度器。
    """

    def __init__(self, config: Settings | None = None) -> None:
        cfg: Settings = config or default_settings
        self.registry = ConnectionRegistry(
            display_name_rule=NameRule(
                "Display name",
                cfg.DISPLAY_NAME_MIN_LENGTH,
                cfg.DISPLAY_NAME_MAX_LENGTH,
                cfg.NAME_PATTERN,
            ),
            room_name_rule=NameRule(
                "Room name",
                cfg.ROOM_NAME_MIN_LENGTH,
                cfg.ROOM_NAME_MAX_LENGTH,
                cfg.NAME_PATTERN,
            ),
        )
        self.rooms = RoomStore(self.registry, capacity=cfg.effective_history_capacity)
        self.presence = PresenceTracker(timeout=cfg.typing_timeout_seconds)
        self.hub = ConnectionHub(
            outbox_size=cfg.OUTBOX_MAX_SIZE,
            max_per_host=cfg.MAX_CONNECTIONS_PER_IP,
        )
        self.dispatcher = BroadcastDispatcher(
            registry=self.registry,
            rooms=self.rooms,
            presence=self.presence,
            transport=self.hub,
            message_max_length=cfg.MESSAGE_MAX_LENGTH,
        )

    def start(self) -> None:
        """启动调度协程。"""
        self.dispatcher.start()
        logger.info(
            "聊天系统已启动 | capacity=%d | typing_timeout=%.1fs",
            self.rooms.capacity,
            self.presence.timeout,
        )

    async def stop(self) -> None:
        """停止调度协程。"""
        await self.dispatcher.stop()
        logger.info("聊天系统已停止")

    def stats(self) -> StatsData:
        """返回当前计数快照。"""
        return StatsData(
            active_identity_count=self.registry.identity_count,
            room_count=self.rooms.room_count,
            active_session_count=self.registry.session_count,
            connected_sockets=self.hub.online_count,
        )

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有房间的摘要信息。"""
        return self.rooms.list_rooms()
