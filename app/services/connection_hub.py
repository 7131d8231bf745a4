"""
app.services.connection_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 维护全部在线连接，提供“把事件 E 投递给连接 C”的能力。

投递是“发出即忘”的：``send()`` 只把事件放进目标连接的有界发件箱，
由该连接自己的写协程（``pump()``）异步写出。慢客户端的发件箱满了只会
丢弃发给它自己的事件，不会阻塞调度器或其他连接。
"""
from __future__ import annotations

import asyncio

from fastapi import WebSocket

from app.core.logging import get_logger
from app.core.settings import settings
from app.schemas.chat_events import OutboundEvent

logger = get_logger(__name__)


class _Connection:
    """一条在线连接及其发件箱。"""

    __slots__ = ("websocket", "outbox", "client_host")

    def __init__(self, websocket: WebSocket, outbox_size: int) -> None:
        self.websocket = websocket
        self.outbox: asyncio.Queue[OutboundEvent] = asyncio.Queue(maxsize=outbox_size)
        self.client_host: str | None = websocket.client.host if websocket.client else None


class ConnectionHub:
    """WebSocket 连接中心。

    连接数按客户端 IP 计数：握手前先用 ``reserve()`` 占一个名额，
    ``disconnect()`` 时归还。

    Attributes:
        outbox_size: 每个连接发件箱的最大长度。
        max_per_host: 同一客户端 IP 允许的最大并发连接数。
    """

    def __init__(self, outbox_size: int | None = None, max_per_host: int | None = None) -> None:
        self.outbox_size: int = settings.OUTBOX_MAX_SIZE if outbox_size is None else outbox_size
        self.max_per_host: int = (
            settings.MAX_CONNECTIONS_PER_IP if max_per_host is None else max_per_host
        )
        self._connections: dict[str, _Connection] = {}
        self._per_host: dict[str, int] = {}

    def reserve(self, host: str | None) -> bool:
        """为某个客户端 IP 占用一个连接名额。

        检查与计数之间没有 ``await``，并发握手不会同时通过检查。
        无法识别 IP 的连接不计数。

        Returns:
            是否占到名额；``False`` 时调用方应拒绝该连接。
        """
        if host is None:
            return True
        count = self._per_host.get(host, 0)
        if count >= self.max_per_host:
            return False
        self._per_host[host] = count + 1
        return True

    def release(self, host: str | None) -> None:
        """归还 ``reserve()`` 占用的名额。"""
        if host is None:
            return
        remaining = self._per_host.get(host, 0) - 1
        if remaining <= 0:
            self._per_host.pop(host, None)
        else:
            self._per_host[host] = remaining

    async def connect(self, session: str, websocket: WebSocket) -> None:
        """接受新连接并登记到在线集合。调用前必须已经 ``reserve()`` 过名额。"""
        await websocket.accept()
        self._connections[session] = _Connection(websocket, self.outbox_size)

    def disconnect(self, session: str) -> None:
        """从在线集合移除连接并归还名额（幂等）。发件箱中尚未写出的事件被丢弃。"""
        connection = self._connections.pop(session, None)
        if connection is not None:
            self.release(connection.client_host)

    def send(self, session: str, event: OutboundEvent) -> None:
        """把事件放入目标连接的发件箱（不阻塞）。"""
        connection = self._connections.get(session)
        if connection is None:
            logger.debug("目标连接已离线，丢弃事件 | session=%s | event=%s", session, event.event)
            return
        try:
            connection.outbox.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("发件箱已满，丢弃事件 | session=%s | event=%s", session, event.event)

    async def pump(self, session: str) -> None:
        """持续把发件箱中的事件写到 WebSocket，直到连接被移除或写失败。"""
        connection = self._connections.get(session)
        if connection is None:
            return
        while session in self._connections:
            event = await connection.outbox.get()
            try:
                await connection.websocket.send_text(event.model_dump_json())
            except Exception as e:
                logger.warning("写出事件失败，停止该连接的发送 | session=%s | %s", session, e)
                return

    def connections_from(self, host: str) -> int:
        """某个客户端 IP 当前的在线连接数。"""
        return self._per_host.get(host, 0)

    @property
    def online_count(self) -> int:
        """当前在线连接数。"""
        return len(self._connections)
