"""
app.core.config
~~~~~~~~~~~~~~~

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
    PROJECT_NAME: str = Field(default="Screencast Relay", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="信令服务监听地址")
    PORT: int = Field(default=3001, description="信令服务监听端口")
    LOG_LEVEL: str | None = Field(default=None, description="显式日志级别；缺省时按环境推断")
    START_URL: str | None = Field(
        default=None,
        description="宿主外壳加载的起始页面 URL（仅供外部壳程序读取）",
    )

    # ── WebRTC ────────────────────────────────────────────────────────
    ICE_SERVERS: list[str] = Field(
        default=["stun:stun.l.google.com:19302"],
        description="ICE/STUN 服务器地址列表",
    )
    CAPTION_CHANNEL_LABEL: str = Field(
        default="subtitles",
        description="字幕 DataChannel 的名称",
    )

    # ── 字幕 / 语音识别 ───────────────────────────────────────────────
    SPEECH_API_KEY: str | None = Field(
        default=None,
        description="云端语音识别凭证；缺失时字幕桥自动停用，屏幕共享照常进行",
    )
    CAPTION_INTERIM_INTERVAL_MS: int = Field(
        default=150,
        description="临时字幕的最小转发间隔（毫秒）",
    )
    SPEECH_NO_SPEECH_RESTART_MS: int = Field(
        default=2000,
        description="未检测到语音后重启识别的延迟（毫秒）",
    )
    SPEECH_RETRY_BASE_MS: int = Field(
        default=1000,
        description="网络错误指数退避的基础延迟（毫秒）",
    )
    SPEECH_RETRY_MAX_MS: int = Field(
        default=10000,
        description="网络错误指数退避的延迟上限（毫秒）",
    )
    SPEECH_END_RESTART_MS: int = Field(
        default=500,
        description="识别会话自然结束后重启的延迟（毫秒）",
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

        显式配置的 ``LOG_LEVEL``（环境变量或 .env 文件）优先。
        """
        if self.LOG_LEVEL:
            return self.LOG_LEVEL.upper()
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """是否允许所有 CORS 来源。非 prod 环境允许，方便本地调试。"""
        return not self.is_prod

    @property
    def captions_enabled(self) -> bool:
        """是否启用字幕桥。未配置语音识别凭证时优雅降级为仅共享画面。"""
        return bool(self.SPEECH_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


# 模块级单例，业务代码直接 ``from app.core.config import settings``
settings: Settings = get_settings()
