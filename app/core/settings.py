"""
app.core.settings
~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）

另外支持两套运行档位（``PROFILE``）:
  - ``standard`` —— 默认档位，房间保留最近 100 条消息
  - ``hardened`` —— 加固档位，房间保留最近 50 条消息，文本输入做 HTML 转义
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")

# 各档位下房间消息保留条数的默认值
_PROFILE_HISTORY_CAPACITY: dict[str, int] = {
    "standard": 100,
    "hardened": 50,
}


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Chat Presence Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )
    PROFILE: Literal["standard", "hardened"] = Field(
        default="standard",
        description="运行档位：standard / hardened",
    )

    # ── 房间 / 消息 ───────────────────────────────────────────────────
    ROOM_HISTORY_CAPACITY: int | None = Field(
        default=None,
        ge=1,
        description="每个房间保留的最近消息条数，未设置时按档位推断",
    )
    MESSAGE_MAX_LENGTH: int = Field(default=500, ge=1, description="单条消息最大长度")

    # ── 输入格式约束 ──────────────────────────────────────────────────
    DISPLAY_NAME_MIN_LENGTH: int = Field(default=2, ge=1, description="昵称最短长度")
    DISPLAY_NAME_MAX_LENGTH: int = Field(default=20, ge=1, description="昵称最长长度")
    ROOM_NAME_MIN_LENGTH: int = Field(default=2, ge=1, description="房间名最短长度")
    ROOM_NAME_MAX_LENGTH: int = Field(default=30, ge=1, description="房间名最长长度")
    NAME_PATTERN: str = Field(
        default=r"^[a-zA-Z0-9_\s]+$",
        description="昵称与房间名允许的字符集（正则）",
    )

    # ── 输入状态 ──────────────────────────────────────────────────────
    TYPING_TIMEOUT_MS: int = Field(
        default=2000,
        ge=1,
        description="“正在输入”状态在无刷新情况下的自动过期时间（毫秒）",
    )

    # ── 连接 / 投递 ───────────────────────────────────────────────────
    OUTBOX_MAX_SIZE: int = Field(
        default=256,
        ge=1,
        description="每个连接待发送事件队列的最大长度，满时丢弃新事件",
    )
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5,
        ge=0,
        description="同一连接两次发送消息之间的最小间隔（秒）",
    )
    MAX_CONNECTIONS_PER_IP: int = Field(
        default=5,
        ge=1,
        description="同一客户端 IP 允许的最大并发 WebSocket 连接数",
    )
    HEALTH_RATE_LIMIT: str = Field(
        default="100/15 minutes",
        description="健康检查与统计接口的 HTTP 限流规则（slowapi 语法）",
    )
    ALLOWED_ORIGINS: list[str] = Field(
        default=["http://localhost:5173", "http://127.0.0.1:5173"],
        description="prod 环境下允许的 CORS 来源",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3001, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 先加载 .env.{env} 再加载 .env，前者优先级更高
    model_config = SettingsConfigDict(
        env_file=(f".env.{_CURRENT_ENV}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_test(self) -> bool:
        """当前是否为测试环境。"""
        return self.ENVIRONMENT == "test"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    @property
    def is_hardened(self) -> bool:
        """当前是否为加固档位。"""
        return self.PROFILE == "hardened"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def effective_history_capacity(self) -> int:
        """房间消息保留条数：显式配置优先，否则按档位取默认值。"""
        if self.ROOM_HISTORY_CAPACITY is not None:
            return self.ROOM_HISTORY_CAPACITY
        return _PROFILE_HISTORY_CAPACITY[self.PROFILE]

    @property
    def typing_timeout_seconds(self) -> float:
        """“正在输入”过期时间（秒），供 asyncio 定时器使用。"""
        return self.TYPING_TIMEOUT_MS / 1000

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def expose_stats(self) -> bool:
        """是否对外暴露统计数据。prod 环境隐藏。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


# 保留向后兼容的全局变量
settings: Settings = get_settings()
