"""
app.services.dispatcher
~~~~~~~~~~~~~~~~~~~~~~~

广播调度器 —— 聊天核心的单写者执行上下文。

所有入站事件（包括“输入超时”这种内部事件）都进入同一个 ``asyncio.Queue``，
由唯一的调度协程逐个处理。每个处理函数都是同步的、中途不 ``await``：
对注册表 / 房间 / 输入状态的修改，以及由此产生的全部出站投递，都在一次
处理中完成，其他事件无法插入其间。因此三个存储都不需要加锁。

路由规则:
  - ``joinRoom``    → 欢迎通知给本人；加入通知给房间其他人；历史给本人；在线列表给全房间
  - ``sendMessage`` → 消息给全房间（含发送者），并写入房间日志
  - ``typing``      → 输入列表给房间内除状态变化者之外的所有人
  - ``leaveRoom``   → 离开通知与在线列表给房间；``leftRoom`` 确认给本人
  - ``disconnect``  → 同 ``leaveRoom``，但没有确认（连接已断开）
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, Union

from app.core.exceptions import ChatError, InternalError, NotFoundError, ValidationError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.settings import settings
from app.schemas.chat_events import ChatMessage, Identity, OutboundEvent
from app.services.connection_registry import ConnectionRegistry
from app.services.presence import PresenceTracker
from app.services.room_store import RoomStore

logger = get_logger(__name__)


class Transport(Protocol):
    """出站投递端口：把事件交给某个会话，不等待写出完成。"""

    def send(self, session: str, event: OutboundEvent) -> None: ...


# ── 入站事件 ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JoinRoom:
    session: str
    display_name: str
    room: str


@dataclass(frozen=True)
class SendMessage:
    session: str
    body: str


@dataclass(frozen=True)
class SetTyping:
    session: str
    is_typing: bool


@dataclass(frozen=True)
class LeaveRoom:
    session: str


@dataclass(frozen=True)
class Disconnect:
    session: str


@dataclass(frozen=True)
class TypingExpired:
    """输入状态定时器到期（内部事件）。"""

    identity_id: str
    room_name: str
    generation: int


InboundEvent = Union[JoinRoom, SendMessage, SetTyping, LeaveRoom, Disconnect, TypingExpired]


class BroadcastDispatcher:
    """入站事件的唯一处理者。

    - ``submit()``   → 把事件放入单写者队列（任何协程 / 定时器都可以调用）
    - ``dispatch()`` → 同步处理一个事件（仅由调度协程或测试直接调用）
    - ``start()`` / ``stop()`` / ``drain()`` → 调度协程的生命周期

    Attributes:
        registry: 会话 ↔ 身份注册表。
        rooms: 房间存储。
        presence: 输入状态跟踪器，其到期回调会被接管为 ``submit``。
        transport: 出站投递端口。
        message_max_length: 单条消息最大长度。
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        rooms: RoomStore,
        presence: PresenceTracker,
        transport: Transport,
        message_max_length: int | None = None,
    ) -> None:
        self.registry = registry
        self.rooms = rooms
        self.presence = presence
        self.transport = transport
        self.message_max_length: int = (
            settings.MESSAGE_MAX_LENGTH if message_max_length is None else message_max_length
        )
        self.presence.on_expire = self._on_typing_expired

        self._inbox: asyncio.Queue[InboundEvent] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._handlers = {
            JoinRoom: self._handle_join,
            SendMessage: self._handle_send_message,
            SetTyping: self._handle_typing,
            LeaveRoom: self._handle_leave,
            Disconnect: self._handle_disconnect,
            TypingExpired: self._handle_typing_expired,
        }

    # ── 生命周期 ──────────────────────────────────────────────────────

    def start(self) -> None:
        """启动调度协程。必须在事件循环内调用。"""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="chat-dispatcher",
            )

    async def stop(self) -> None:
        """停止调度协程并取消所有输入状态定时器。"""
        self.presence.close()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def drain(self) -> None:
        """等待队列中已提交的事件全部处理完毕。"""
        await self._inbox.join()

    def submit(self, event: InboundEvent) -> None:
        """把事件放入单写者队列。"""
        self._inbox.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._inbox.get()
            try:
                self.dispatch(event)
            finally:
                self._inbox.task_done()

    # ── 事件处理边界 ──────────────────────────────────────────────────

    def dispatch(self, event: InboundEvent) -> None:
        """同步处理一个事件。

        业务异常转换为发给出错连接的 ``error`` 事件；其他异常记录日志后转换为
        通用的 ``error`` 事件。任何异常都不会向上抛出、终止调度协程。
        """
        session = getattr(event, "session", None)
        token = request_id_ctx_var.set(session or "dispatcher")
        try:
            self._handlers[type(event)](event)
        except ChatError as e:
            logger.info("事件被拒绝 | event=%s | %s", type(event).__name__, e.message)
            self._reply_error(event, e)
        except Exception as e:
            logger.error("事件处理异常: %s | event=%s", e, type(event).__name__, exc_info=True)
            self._reply_error(event, InternalError())
        finally:
            request_id_ctx_var.reset(token)

    def _reply_error(self, event: InboundEvent, error: ChatError) -> None:
        # 断线与内部事件没有可以回复的连接
        if isinstance(event, (Disconnect, TypingExpired)):
            return
        self.transport.send(event.session, OutboundEvent.error(error.message))

    # ── 处理函数 ──────────────────────────────────────────────────────

    def _handle_join(self, event: JoinRoom) -> None:
        if self.registry.lookup(event.session) is not None:
            raise ValidationError("Already joined a room")

        identity = self.registry.register_identity(event.session, event.display_name, event.room)
        room = identity.room_name
        self.rooms.join(identity)

        self.transport.send(
            event.session,
            OutboundEvent.message(ChatMessage.system(f"Welcome to {room}, {identity.display_name}!")),
        )
        self._broadcast(
            room,
            OutboundEvent.message(ChatMessage.system(f"{identity.display_name} has joined the chat")),
            exclude=identity.id,
        )
        self.transport.send(event.session, OutboundEvent.room_history(self.rooms.history(room)))
        self._broadcast(room, OutboundEvent.online_users(self.rooms.members_resolved(room)))
        logger.info("%s 加入房间 | room=%s", identity.display_name, room)

    def _handle_send_message(self, event: SendMessage) -> None:
        identity = self._require_identity(event.session)
        body = event.body.strip()
        if not body:
            raise ValidationError("Message cannot be empty")
        if len(body) > self.message_max_length:
            raise ValidationError(f"Message must be at most {self.message_max_length} characters")

        message = ChatMessage(sender_display_name=identity.display_name, body=body)
        self.rooms.append_message(identity.room_name, message)
        self._broadcast(identity.room_name, OutboundEvent.message(message))
        logger.debug("新消息 | room=%s | %s", identity.room_name, body[:50])

    def _handle_typing(self, event: SetTyping) -> None:
        identity = self._require_identity(event.session)
        self.presence.set_typing(identity.id, identity.room_name, event.is_typing)
        self._broadcast_typing(identity.room_name, exclude=identity.id)

    def _handle_typing_expired(self, event: TypingExpired) -> None:
        if not self.presence.expire(event.identity_id, event.room_name, event.generation):
            return
        logger.debug("输入状态超时 | room=%s | identity=%s", event.room_name, event.identity_id)
        self._broadcast_typing(event.room_name, exclude=event.identity_id)

    def _handle_leave(self, event: LeaveRoom) -> None:
        identity = self._require_identity(event.session)
        self._cleanup(identity)
        self.transport.send(event.session, OutboundEvent.left_room())
        logger.info("%s 离开房间 | room=%s", identity.display_name, identity.room_name)

    def _handle_disconnect(self, event: Disconnect) -> None:
        identity = self.registry.lookup(event.session)
        if identity is None:
            return
        self._cleanup(identity)
        logger.info("%s 断开连接 | room=%s", identity.display_name, identity.room_name)

    # ── 内部工具 ──────────────────────────────────────────────────────

    def _require_identity(self, session: str) -> Identity:
        identity = self.registry.lookup(session)
        if identity is None:
            raise NotFoundError("User not found")
        return identity

    def _cleanup(self, identity: Identity) -> None:
        """离开 / 断线共用的清理与通知，所有步骤均幂等。"""
        room = identity.room_name
        was_typing = self.presence.clear(identity.id, room)
        self.rooms.leave(identity)
        self.registry.remove(identity.session_ref)

        self._broadcast(
            room,
            OutboundEvent.message(ChatMessage.system(f"{identity.display_name} has left the chat")),
            exclude=identity.id,
        )
        self._broadcast(room, OutboundEvent.online_users(self.rooms.members_resolved(room)))
        if was_typing:
            self._broadcast_typing(room, exclude=identity.id)

    def _broadcast(self, room_name: str, event: OutboundEvent, exclude: str | None = None) -> None:
        """把事件投递给房间内的所有成员（可排除一个身份）。"""
        for member in self.rooms.members_resolved(room_name):
            if member.id != exclude:
                self.transport.send(member.session_ref, event)

    def _broadcast_typing(self, room_name: str, exclude: str | None = None) -> None:
        typing_ids = self.presence.current_typing(room_name)
        members = self.rooms.members_resolved(room_name)
        typing = [member for member in members if member.id in typing_ids]
        self._broadcast(room_name, OutboundEvent.typing(typing), exclude=exclude)

    def _on_typing_expired(self, identity_id: str, room_name: str, generation: int) -> None:
        self.submit(TypingExpired(identity_id, room_name, generation))
