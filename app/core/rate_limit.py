"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

HTTP 接口与 WebSocket 事件的限流配置。

这里的限流属于聊天核心之前的“放行 / 拒绝”闸门：被拒绝的事件直接回复
``error``，不会进入调度器。
"""
import time
from typing import Dict

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流；规则由各端点的 @limiter.limit 装饰器指定
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的 WebSocket 发消息限流器。

    记录每个会话上一次被放行的 ``sendMessage`` 时间，间隔不足则拒绝。
    """

    def __init__(self, interval_seconds: float = 0.5):
        self.interval_seconds = interval_seconds
        self._last_message_time: Dict[str, float] = {}

    def is_allowed(self, session: str) -> bool:
        """检查会话是否允许发送消息。

        Args:
            session: 会话标识。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        now = time.monotonic()
        last_time = self._last_message_time.get(session)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_message_time[session] = now
            return True
        return False

    def remove_client(self, session: str) -> None:
        """清理断开连接的会话记录。"""
        self._last_message_time.pop(session, None)
