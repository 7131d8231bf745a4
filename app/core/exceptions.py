"""
app.core.exceptions
~~~~~~~~~~~~~~~~~~~

聊天核心的业务异常体系。

调度器在单个事件的处理边界捕获 ``ChatError``，将其转换为发给出错连接的
``error`` 事件；连接保持打开，其他房间的状态不受影响。
"""
from __future__ import annotations


class ChatError(Exception):
    """聊天核心异常基类。

    Attributes:
        message: 发给客户端的可读错误信息。
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """昵称、房间名或消息内容不合法。"""


class NotFoundError(ChatError):
    """事件引用了尚未加入房间的身份（例如加入房间前发送消息）。"""


class InternalError(ChatError):
    """处理事件时发生的意外错误，对客户端只暴露通用信息。"""

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
