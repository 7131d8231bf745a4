"""
app.services.connection_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话 ↔ 身份注册表 —— 维护传输层会话与参与者身份之间的双向映射。

身份只在成功加入房间时创建，在离开或断线时销毁；同一连接重新加入
会得到一个全新的身份，不会复用旧的 id。
"""
from __future__ import annotations

import re

from app.core.exceptions import ValidationError
from app.core.logging import get_logger
from app.core.settings import settings
from app.schemas.chat_events import Identity, new_id

logger = get_logger(__name__)


class NameRule:
    """昵称 / 房间名的格式约束。

    Attributes:
        label: 出错时提示给用户的字段名称。
        min_length: 最短长度（去除首尾空白后）。
        max_length: 最长长度（去除首尾空白后）。
        pattern: 允许的字符集正则。
    """

    def __init__(self, label: str, min_length: int, max_length: int, pattern: str) -> None:
        self.label = label
        self.min_length = min_length
        self.max_length = max_length
        self.pattern = re.compile(pattern)

    def clean(self, value: object) -> str:
        """校验并返回去除首尾空白后的值，不合法时抛出 ``ValidationError``。"""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{self.label} is required")
        cleaned = value.strip()
        if not self.min_length <= len(cleaned) <= self.max_length:
            raise ValidationError(
                f"{self.label} must be {self.min_length}-{self.max_length} characters",
            )
        if not self.pattern.match(cleaned):
            raise ValidationError(f"{self.label} contains invalid characters")
        return cleaned


class ConnectionRegistry:
    """会话与身份的双向注册表。

    - ``register_identity()`` → 校验输入并创建新身份
    - ``lookup()``            → 按会话查身份
    - ``get()``               → 按身份 id 查身份
    - ``remove()``            → 幂等地销毁会话对应的身份

    Attributes:
        display_name_rule: 昵称格式约束。
        room_name_rule: 房间名格式约束。
    """

    def __init__(
        self,
        display_name_rule: NameRule | None = None,
        room_name_rule: NameRule | None = None,
    ) -> None:
        self.display_name_rule: NameRule = display_name_rule or NameRule(
            "Display name",
            settings.DISPLAY_NAME_MIN_LENGTH,
            settings.DISPLAY_NAME_MAX_LENGTH,
            settings.NAME_PATTERN,
        )
        self.room_name_rule: NameRule = room_name_rule or NameRule(
            "Room name",
            settings.ROOM_NAME_MIN_LENGTH,
            settings.ROOM_NAME_MAX_LENGTH,
            settings.NAME_PATTERN,
        )
        self._identities: dict[str, Identity] = {}
        self._sessions: dict[str, str] = {}

    def register_identity(self, session: str, display_name: str, room_name: str) -> Identity:
        """为会话创建一个新身份。

        Args:
            session: 传输层会话标识。
            display_name: 昵称（会去除首尾空白）。
            room_name: 房间名（会去除首尾空白）。

        Returns:
            新创建的 ``Identity``。

        Raises:
            ValidationError: 昵称或房间名不符合格式约束。
        """
        name = self.display_name_rule.clean(display_name)
        room = self.room_name_rule.clean(room_name)

        previous = self._sessions.get(session)
        if previous is not None:
            # 同一会话再次注册：旧身份作废，保证一个会话只对应一个身份
            self._identities.pop(previous, None)
            logger.warning("会话重复注册，旧身份已作废 | session=%s", session)

        identity = Identity(
            id=new_id(),
            display_name=name,
            room_name=room,
            session_ref=session,
        )
        self._identities[identity.id] = identity
        self._sessions[session] = identity.id
        return identity

    def lookup(self, session: str) -> Identity | None:
        """按会话查找身份，未加入时返回 ``None``。"""
        identity_id = self._sessions.get(session)
        if identity_id is None:
            return None
        return self._identities.get(identity_id)

    def get(self, identity_id: str) -> Identity | None:
        """按身份 id 查找身份。"""
        return self._identities.get(identity_id)

    def remove(self, session: str) -> Identity | None:
        """销毁会话对应的身份（幂等，第二次调用返回 ``None``）。"""
        identity_id = self._sessions.pop(session, None)
        if identity_id is None:
            return None
        return self._identities.pop(identity_id, None)

    @property
    def identity_count(self) -> int:
        """当前活跃身份数。"""
        return len(self._identities)

    @property
    def session_count(self) -> int:
        """当前已绑定身份的会话数。"""
        return len(self._sessions)
