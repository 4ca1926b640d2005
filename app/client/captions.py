"""
app.client.captions
~~~~~~~~~~~~~~~~~~~

字幕桥 —— 把语音识别结果整理成字幕事件，经 DataChannel 推送给所有观众。

- ``enhance``               —— 字幕文本清洗（去语气词、合并空白、首字母大写）
- ``CaptionBridge``         —— 主播端：临时结果节流、最终结果立即扇出
- ``CaptionReceiver``       —— 观众端：解析 DataChannel 消息
- ``RecognitionSupervisor`` —— 识别引擎出错 / 结束后的重启策略
"""
from __future__ import annotations

import asyncio
import inspect
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import ValidationError

from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.captions import CaptionEvent, RecognitionResult

logger = get_logger(__name__)

StatusCallback = Callable[[str], None]

_FILLER = re.compile(r"\b(?:um|uh|ah)\b[,.]?", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
# 只把全大写的常见虚词转小写，USB / API 之类的缩写保持原样
_SHOUTED_WORD = re.compile(
    r"\b(?:IS|ARE|WAS|WERE|BE|THE|AN|AND|OR|BUT|OF|TO|IN|ON|AT|FOR|WITH|THIS|THAT|SO|WE|YOU|HE|SHE|THEY)\b",
)


def enhance(text: str) -> str:
    """清洗一段识别文本。

    去掉首尾空白和整词匹配的语气词（um / uh / ah，不区分大小写，连同紧跟的逗号句号），
    合并连续空白，把全大写的常见虚词（IS、THE 等）转成小写，最后首字母大写。

    >>> enhance("  um, this IS   a   test uh")
    'This is a test'
    """
    text = _FILLER.sub("", text.strip())
    text = _WHITESPACE.sub(" ", text).strip().lstrip(",;. ")
    text = _SHOUTED_WORD.sub(lambda m: m.group().lower(), text)
    return text[:1].upper() + text[1:]


class DataChannel(Protocol):
    readyState: str

    def send(self, data: str) -> None: ...


class CaptionBridge:
    """主播端字幕桥。

    只在 ``active`` 为真（主播正在共享）时转发。最终结果每条都立即发给所有
    已打开的 DataChannel；临时结果只有在文本变化且距上次转发超过最小间隔时才发送，
    以限制连续说话时的消息速率。

    Attributes:
        interim_interval: 临时结果的最小转发间隔（秒）。
        active: 是否处于共享中。
    """

    def __init__(
        self,
        interim_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interim_interval is None:
            interim_interval = settings.CAPTION_INTERIM_INTERVAL_MS / 1000
        self.interim_interval = interim_interval
        self.active: bool = False
        self._clock = clock
        self._channels: dict[str, DataChannel] = {}
        self._last_interim_text: str = ""
        self._last_interim_at: float | None = None

    # ── 通道管理 ──────────────────────────────────────────────────────

    def add_channel(self, viewer_id: str, channel: DataChannel) -> None:
        self._channels[viewer_id] = channel

    def remove_channel(self, viewer_id: str) -> None:
        self._channels.pop(viewer_id, None)

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def activate(self) -> None:
        self.active = True

    def deactivate(self) -> None:
        self.active = False
        self._last_interim_text = ""
        self._last_interim_at = None

    # ── 转发 ──────────────────────────────────────────────────────────

    def handle_result(self, result: RecognitionResult) -> None:
        """处理一次识别回调：取置信度最高的候选，按最终 / 临时分别转发。"""
        best = result.best()
        if result.is_final:
            self.forward_final(best.transcript, best.confidence)
        else:
            self.forward_interim(best.transcript, best.confidence)

    def forward_final(self, text: str, confidence: float = 0.0) -> int:
        """立即转发一条最终结果。

        Returns:
            实际发送成功的通道数。
        """
        if not self.active:
            return 0
        enhanced = enhance(text)
        if not enhanced:
            return 0
        event = CaptionEvent(text=enhanced, confidence=_clamp(confidence), is_final=True)
        return self._broadcast(event)

    def forward_interim(self, text: str, confidence: float = 0.0) -> bool:
        """节流转发一条临时结果。

        Returns:
            本条是否被转发。
        """
        if not self.active:
            return False
        normalized = enhance(text)
        if not normalized or normalized == self._last_interim_text:
            return False
        now = self._clock()
        if self._last_interim_at is not None and now - self._last_interim_at < self.interim_interval:
            return False

        self._last_interim_text = normalized
        self._last_interim_at = now
        event = CaptionEvent(text=normalized, confidence=_clamp(confidence), is_final=False)
        self._broadcast(event)
        return True

    def _broadcast(self, event: CaptionEvent) -> int:
        payload = event.to_wire()
        sent = 0
        for viewer_id, channel in list(self._channels.items()):
            if channel.readyState != "open":
                continue
            try:
                channel.send(payload)
            except Exception as e:
                # 单个通道失败不影响其他观众
                logger.debug("字幕发送失败 | viewer=%s | %s", viewer_id, e)
                continue
            sent += 1
        return sent


def _clamp(confidence: float) -> float:
    return min(max(confidence, 0.0), 1.0)


class CaptionReceiver:
    """观众端：把 DataChannel 上的每条消息解析为 ``CaptionEvent`` 并交给渲染回调。"""

    def __init__(self, on_caption: Callable[[CaptionEvent], Any]) -> None:
        self.on_caption = on_caption

    def __call__(self, message: str | bytes) -> CaptionEvent | None:
        try:
            event = CaptionEvent.model_validate_json(message)
        except ValidationError:
            logger.debug("丢弃无法解析的字幕消息")
            return None
        if not event.text:
            return None
        self.on_caption(event)
        return event


class RecognitionSupervisor:
    """语音识别引擎的重启策略。

    - ``no-speech``：字幕仍需开启时，固定延迟后重启
    - ``network``：指数退避重启（基础延迟每次连续失败翻倍，有上限）
    - 其他错误（含 ``audio-capture``）：不自动重试，作为状态变化上报
    - 识别会话自然结束：字幕仍需开启时，短延迟后重启

    收到任何识别结果都会清零连续失败计数。

    Args:
        restart: 重启识别引擎的回调，可以是同步函数或协程函数。
        wanted: 当前是否仍需要字幕（通常是"正在共享且开启了字幕"）。
        on_status: 状态上报回调。
    """

    def __init__(
        self,
        restart: Callable[[], Awaitable[None] | None],
        wanted: Callable[[], bool],
        on_status: StatusCallback | None = None,
        *,
        no_speech_delay: float | None = None,
        retry_base: float | None = None,
        retry_max: float | None = None,
        end_delay: float | None = None,
    ) -> None:
        self.restart = restart
        self.wanted = wanted
        self.on_status = on_status
        self.no_speech_delay = _seconds(no_speech_delay, settings.SPEECH_NO_SPEECH_RESTART_MS)
        self.retry_base = _seconds(retry_base, settings.SPEECH_RETRY_BASE_MS)
        self.retry_max = _seconds(retry_max, settings.SPEECH_RETRY_MAX_MS)
        self.end_delay = _seconds(end_delay, settings.SPEECH_END_RESTART_MS)
        self.failures: int = 0
        self._pending: asyncio.Task[None] | None = None

    def on_result(self) -> None:
        self.failures = 0

    def on_error(self, error: str) -> float | None:
        """处理识别错误。

        Returns:
            计划的重启延迟（秒）；不重启时为 ``None``。
        """
        logger.warning("语音识别错误: %s", error)
        if error == "no-speech":
            if not self.wanted():
                return None
            delay = self.no_speech_delay
        elif error == "network":
            self.failures += 1
            delay = min(self.retry_base * 2 ** (self.failures - 1), self.retry_max)
        else:
            if self.on_status is not None:
                self.on_status(f"语音识别错误: {error}")
            return None
        self._schedule(delay)
        return delay

    def on_end(self) -> float | None:
        """识别会话自然结束。"""
        if not self.wanted():
            return None
        self._schedule(self.end_delay)
        return self.end_delay

    def cancel(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def _schedule(self, delay: float) -> None:
        self.cancel()
        self._pending = asyncio.get_running_loop().create_task(self._restart_after(delay))

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self.wanted():
            return
        logger.info("重启语音识别 | 连续失败: %d", self.failures)
        result = self.restart()
        if inspect.isawaitable(result):
            await result


def _seconds(value: float | None, default_ms: int) -> float:
    return default_ms / 1000 if value is None else value
