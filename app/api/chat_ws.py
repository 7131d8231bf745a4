"""
app.api.chat_ws
~~~~~~~~~~~~~~~

WebSocket 实时聊天接口 —— 事件协议的传输适配层。

提供 ``/ws/chat`` 端点。每条连接拥有两个并发流程:
  - 接收循环：解析客户端帧、经过限流与校验闸门后提交给调度器
  - 发送循环：``ConnectionHub.pump()`` 把发件箱中的事件写回客户端

消息协议（JSON 文本帧）::

    {"event": "joinRoom",    "data": {"displayName": "alice", "room": "general"}}
    {"event": "sendMessage", "data": {"body": "hello"}}
    {"event": "typing",      "data": {"isTyping": true}}
    {"event": "leaveRoom",   "data": {}}
"""
from __future__ import annotations

import asyncio
import contextlib
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from app.core.exceptions import ValidationError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.sanitize import sanitize_text
from app.core.settings import settings
from app.schemas.chat_events import (
    INBOUND_PAYLOADS,
    InboundFrame,
    JoinRoomPayload,
    OutboundEvent,
    SendMessagePayload,
    TypingPayload,
)
from app.services.chat_system import ChatSystem
from app.services.dispatcher import (
    Disconnect,
    InboundEvent,
    JoinRoom,
    LeaveRoom,
    SendMessage,
    SetTyping,
)

logger = get_logger(__name__)

router: APIRouter = APIRouter()


def parse_frame(session: str, raw: str) -> InboundEvent:
    """把一帧原始文本解析为调度器事件。

    Args:
        session: 发送该帧的会话标识。
        raw: WebSocket 文本帧内容。

    Returns:
        对应的入站事件。

    Raises:
        ValidationError: 帧不是合法 JSON、事件名未知或载荷不符合结构。
    """
    try:
        frame = InboundFrame.model_validate_json(raw)
    except PayloadError:
        raise ValidationError("Malformed event") from None

    payload_model = INBOUND_PAYLOADS.get(frame.event)
    if payload_model is None:
        raise ValidationError(f"Unknown event: {frame.event}")
    try:
        payload = payload_model.model_validate(frame.data)
    except PayloadError:
        raise ValidationError(f"Invalid payload for {frame.event}") from None

    # 加固档位：文本进入核心前先清洗
    clean = sanitize_text if settings.is_hardened else str

    if isinstance(payload, JoinRoomPayload):
        return JoinRoom(session, clean(payload.display_name), clean(payload.room))
    if isinstance(payload, SendMessagePayload):
        return SendMessage(session, clean(payload.body))
    if isinstance(payload, TypingPayload):
        return SetTyping(session, payload.is_typing)
    return LeaveRoom(session)


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    连接建立时分配会话标识（同时作为日志中的连接标识）；断开时向调度器
    提交 ``Disconnect`` 事件，由调度器完成幂等的清理与广播。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    session = f"ws-{uuid.uuid4().hex[:8]}"
    token = request_id_ctx_var.set(session)

    try:
        system: ChatSystem = websocket.app.state.chat_system

        # 同一 IP 的并发连接数闸门
        host = websocket.client.host if websocket.client else None
        if not system.hub.reserve(host):
            await websocket.accept()
            await websocket.send_text(OutboundEvent.error("Connection limit exceeded").model_dump_json())
            await websocket.close(code=1008)
            logger.warning("连接数超限，拒绝连接 | host=%s", host)
            return

        try:
            await system.hub.connect(session, websocket)
        except Exception:
            # 握手失败，名额尚未随连接登记，需要单独归还
            system.hub.release(host)
            raise
        logger.info("新连接 | host=%s | 在线: %d", host, system.hub.online_count)

        ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
        pump_task = asyncio.create_task(system.hub.pump(session))

        try:
            while True:
                raw: str = await websocket.receive_text()
                try:
                    event = parse_frame(session, raw)
                except ValidationError as e:
                    system.hub.send(session, OutboundEvent.error(e.message))
                    continue

                if isinstance(event, SendMessage) and not ws_limiter.is_allowed(session):
                    system.hub.send(session, OutboundEvent.error("Too many messages, please slow down."))
                    continue

                system.dispatcher.submit(event)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("WebSocket 接收异常: %s", e, exc_info=True)
        finally:
            system.dispatcher.submit(Disconnect(session))
            system.hub.disconnect(session)
            pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump_task
            ws_limiter.remove_client(session)
            logger.info("连接断开 | 在线: %d", system.hub.online_count)

    finally:
        request_id_ctx_var.reset(token)
