"""
roomcast.core.config
~~~~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Roomcast Chat Backend", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=8000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")

    # ── MongoDB ───────────────────────────────────────────────────────
    MONGO_URI: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB 连接串",
    )
    MONGO_DB_NAME: str = Field(default="roomcast", description="数据库名称")
    MONGO_TIMEOUT_MS: int = Field(
        default=5000, ge=100, description="选择可用节点的超时（毫秒），超时即视为存储不可用",
    )

    # ── 房间 / 消息 ───────────────────────────────────────────────────
    DEFAULT_ROOMS: list[str] = Field(
        default=["general", "random", "tech"],
        description="启动时预创建的房间",
    )
    HISTORY_PAGE_SIZE: int = Field(default=50, ge=1, description="进房时回放的历史条数")
    MAX_MESSAGE_LENGTH: int = Field(default=2000, ge=1, description="单条消息最大字数")
    TYPING_TIMEOUT: float = Field(
        default=1.5, gt=0, description="输入状态自动过期时间（秒）",
    )

    # ── 连接 ──────────────────────────────────────────────────────────
    OUTBOUND_QUEUE_SIZE: int = Field(
        default=256, ge=1, description="每个连接的待发送事件队列上限",
    )
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.5, ge=0, description="同一连接两次发消息的最小间隔（秒）",
    )
    ALLOW_GUESTS: bool = Field(default=True, description="是否允许访客凭证登录")

    # ── AI 助手 ───────────────────────────────────────────────────────
    GEMINI_API_KEY: str = Field(default="", description="Google Gemini API Key")
    GEMINI_MODEL: str = Field(
        default="gemini-2.5-flash",
        description="Gemini 聊天模型名称",
    )
    AI_BOT_NAME: str = Field(default="AI Assistant", description="AI 回复的作者名")
    AI_MENTION_PATTERN: str = Field(
        default=r"@ai\b",
        description="触发 AI 回复的提及正则（忽略大小写）",
    )
    AI_REPLY_DELAY: float = Field(default=1.0, ge=0, description="AI 回复前的固定延迟（秒）")
    AI_CONTEXT_SIZE: int = Field(default=10, ge=0, description="发给 AI 的最近消息条数")
    AI_FALLBACK_REPLY: str = Field(
        default="Sorry, I'm having trouble responding right now. Please try again later.",
        description="AI 调用失败时的兜底回复",
    )

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
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
