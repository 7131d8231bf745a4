"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

“正在输入”状态跟踪器 —— 每个房间一组带过期时间的输入中身份。

每次收到 ``isTyping=true`` 都会把截止时间刷新为 ``now + timeout`` 并重启
一个可取消的 asyncio 定时器。定时器到期时并不直接修改状态，而是调用
``on_expire`` 回调，由调度器把一个“输入超时”事件放进单写者队列，再回头
调用 ``expire()`` 完成移除。这样即使客户端的停止信号或断线通知丢失，
输入状态也不会停留超过 ``timeout``。
"""
from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Callable

from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

# on_expire(identity_id, room_name, generation)
ExpireCallback = Callable[[str, str, int], None]


class _TypingEntry:
    """单个身份在某个房间中的输入状态。"""

    __slots__ = ("deadline", "generation", "handle")

    def __init__(self, deadline: float, generation: int, handle: asyncio.TimerHandle) -> None:
        self.deadline = deadline
        self.generation = generation
        self.handle = handle


class PresenceTracker:
    """按房间维护“正在输入”集合，并负责超时自动清理。

    Attributes:
        timeout: 输入状态的有效期（秒）。
        on_expire: 定时器到期时的回调；为 ``None`` 时直接调用 ``expire()``。
    """

    def __init__(
        self,
        timeout: float | None = None,
        on_expire: ExpireCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout: float = timeout if timeout is not None else settings.typing_timeout_seconds
        self.on_expire: ExpireCallback | None = on_expire
        self._clock = clock
        self._rooms: dict[str, dict[str, _TypingEntry]] = {}
        self._generations = itertools.count(1)

    def set_typing(self, identity_id: str, room_name: str, is_typing: bool) -> None:
        """设置身份的输入状态。

        ``True`` 插入或刷新条目并重启定时器（防抖）；``False`` 立即移除条目
        并取消定时器。必须在事件循环内调用。
        """
        if not is_typing:
            self.clear(identity_id, room_name)
            return

        entries = self._rooms.setdefault(room_name, {})
        previous = entries.get(identity_id)
        if previous is not None:
            previous.handle.cancel()

        generation = next(self._generations)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.timeout, self._fire, identity_id, room_name, generation)
        entries[identity_id] = _TypingEntry(
            deadline=self._clock() + self.timeout,
            generation=generation,
            handle=handle,
        )

    def expire(self, identity_id: str, room_name: str, generation: int) -> bool:
        """处理一次定时器到期。

        只有条目仍存在且期间没有被刷新（``generation`` 一致）时才会移除。

        Returns:
            是否真的移除了条目。
        """
        entries = self._rooms.get(room_name)
        if not entries:
            return False
        entry = entries.get(identity_id)
        if entry is None or entry.generation != generation:
            return False
        del entries[identity_id]
        if not entries:
            del self._rooms[room_name]
        return True

    def current_typing(self, room_name: str) -> set[str]:
        """返回房间内仍在有效期内的输入中身份 id。"""
        entries = self._rooms.get(room_name)
        if not entries:
            return set()
        now = self._clock()
        return {identity_id for identity_id, entry in entries.items() if entry.deadline > now}

    def is_typing(self, identity_id: str, room_name: str) -> bool:
        """身份当前是否处于输入状态。"""
        return identity_id in self.current_typing(room_name)

    def clear(self, identity_id: str, room_name: str) -> bool:
        """移除身份的输入状态并取消定时器（幂等）。

        Returns:
            调用前该身份是否有输入条目。
        """
        entries = self._rooms.get(room_name)
        if not entries:
            return False
        entry = entries.pop(identity_id, None)
        if entry is None:
            return False
        entry.handle.cancel()
        if not entries:
            del self._rooms[room_name]
        return True

    def close(self) -> None:
        """取消所有挂起的定时器并清空状态（进程关闭时调用）。"""
        for entries in self._rooms.values():
            for entry in entries.values():
                entry.handle.cancel()
        self._rooms.clear()

    def _fire(self, identity_id: str, room_name: str, generation: int) -> None:
        """定时器回调：转交给调度器，或在未接入调度器时直接过期。"""
        if self.on_expire is not None:
            self.on_expire(identity_id, room_name, generation)
        else:
            self.expire(identity_id, room_name, generation)
