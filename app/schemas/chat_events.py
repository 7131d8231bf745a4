"""
app.schemas.chat_events
~~~~~~~~~~~~~~~~~~~~~~~

聊天事件协议相关的 Pydantic 模型。

WebSocket 上的每一帧都是一个 JSON 信封::

    {"event": "sendMessage", "data": {"body": "hello"}}

``data`` 中的字段统一使用 camelCase；服务端内部使用 snake_case，
由 ``alias_generator`` 负责两者的转换。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageKind = Literal["user", "system"]

# 系统通知使用的发送者昵称
SYSTEM_SENDER: str = "System"


def utc_now_iso() -> str:
    """返回当前 UTC 时间的 ISO-8601 字符串。"""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """生成一个新的 UUID4 字符串。"""
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """对外字段使用 camelCase 的基础模型。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """序列化为可直接发给客户端的 JSON 兼容字典。"""
        return self.model_dump(by_alias=True, mode="json")


# ── 领域数据 ──────────────────────────────────────────────────────────

class ChatMessage(CamelModel):
    """一条聊天消息。

    只有 ``kind == "user"`` 的消息会进入房间的历史记录；
    ``system`` 通知（欢迎 / 加入 / 离开）只广播、不保留。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="消息唯一标识")
    sender_display_name: str = Field(..., description="发送者昵称")
    body: str = Field(..., description="消息正文")
    timestamp: str = Field(default_factory=utc_now_iso, description="发送时间（ISO 格式）")
    kind: MessageKind = Field(default="user", description="消息类型：user / system")

    @classmethod
    def system(cls, body: str) -> ChatMessage:
        """快捷构造一条系统通知。"""
        return cls(sender_display_name=SYSTEM_SENDER, body=body, kind="system")


class Identity(CamelModel):
    """一个已加入房间的参与者身份。

    ``session_ref`` 是传输层会话标识，仅服务端内部使用，不会序列化给客户端。
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id, description="身份唯一标识（每次加入重新生成）")
    display_name: str = Field(..., description="昵称")
    room_name: str = Field(..., alias="room", description="所在房间名")
    session_ref: str = Field(..., exclude=True, description="传输层会话标识")
    joined_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="加入时间",
    )


# ── 入站载荷 ──────────────────────────────────────────────────────────

class JoinRoomPayload(CamelModel):
    """``joinRoom`` 事件载荷。兼容旧客户端的 ``username`` 字段。"""

    display_name: str = Field(
        ...,
        validation_alias=AliasChoices("displayName", "display_name", "username"),
    )
    room: str = Field(...)


class SendMessagePayload(CamelModel):
    """``sendMessage`` 事件载荷。兼容旧客户端的 ``message`` 字段。"""

    body: str = Field(..., validation_alias=AliasChoices("body", "message"))


class TypingPayload(CamelModel):
    """``typing`` 事件载荷。"""

    is_typing: bool = Field(...)


class LeaveRoomPayload(CamelModel):
    """``leaveRoom`` 事件载荷（无字段）。"""


INBOUND_PAYLOADS: dict[str, type[CamelModel]] = {
    "joinRoom": JoinRoomPayload,
    "sendMessage": SendMessagePayload,
    "typing": TypingPayload,
    "leaveRoom": LeaveRoomPayload,
}


class InboundFrame(BaseModel):
    """客户端发来的原始信封。"""

    event: str = Field(..., description="事件名")
    data: dict[str, Any] = Field(default_factory=dict, description="事件载荷")


# ── 出站事件 ──────────────────────────────────────────────────────────

class OutboundEvent(BaseModel):
    """发往某个连接的出站事件。

    ``data`` 在构造时已经是 JSON 兼容的结构，同一个事件对象可以安全地
    投递给房间内的多个连接。
    """

    model_config = ConfigDict(frozen=True)

    event: str = Field(..., description="事件名")
    data: dict[str, Any] = Field(default_factory=dict, description="事件载荷")

    @classmethod
    def message(cls, message: ChatMessage) -> OutboundEvent:
        return cls(event="message", data=message.to_wire())

    @classmethod
    def room_history(cls, messages: list[ChatMessage]) -> OutboundEvent:
        return cls(event="roomHistory", data={"messages": [m.to_wire() for m in messages]})

    @classmethod
    def online_users(cls, identities: list[Identity]) -> OutboundEvent:
        return cls(event="onlineUsers", data={"users": [i.to_wire() for i in identities]})

    @classmethod
    def typing(cls, identities: list[Identity]) -> OutboundEvent:
        return cls(event="typing", data={"users": [i.to_wire() for i in identities]})

    @classmethod
    def left_room(cls) -> OutboundEvent:
        return cls(event="leftRoom")

    @classmethod
    def error(cls, message: str) -> OutboundEvent:
        return cls(event="error", data={"message": message})


# ── 只读统计 ──────────────────────────────────────────────────────────

class StatsData(CamelModel):
    """聊天核心的计数快照。"""

    active_identity_count: int = Field(..., description="当前已加入房间的身份数")
    room_count: int = Field(..., description="已创建的房间数（含空房间）")
    active_session_count: int = Field(..., description="已绑定身份的会话数")
    connected_sockets: int = Field(..., description="当前打开的 WebSocket 连接数")


class RoomInfoData(CamelModel):
    """房间摘要信息。"""

    name: str = Field(..., description="房间名")
    member_count: int = Field(..., description="当前成员数")
    message_count: int = Field(..., description="保留的消息条数")
    created_at: datetime = Field(..., description="创建时间")
