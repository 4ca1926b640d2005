"""
app.client.recognition
~~~~~~~~~~~~~~~~~~~~~~

外部语音识别进程的接入。

识别引擎以子进程方式运行，凭证通过 ``SPEECH_API_KEY`` 环境变量传入，
每识别出一段就在 stdout 输出一行 JSON（见 ``RecognitionEvent``）::

    {"type": "result", "isFinal": false, "alternatives": [{"transcript": "hel"}]}
    {"type": "result", "isFinal": true, "alternatives": [{"transcript": "hello", "confidence": 0.92}]}
    {"type": "error", "error": "no-speech"}
    {"type": "end"}

结果交给 ``CaptionBridge`` 转发；错误与会话结束交给 ``RecognitionSupervisor``
决定是否、何时重启进程。进程未输出 ``end`` 就退出时按自然结束处理。
"""
from __future__ import annotations

import asyncio
import os
from collections.abc import Sequence

from pydantic import ValidationError

from app.client.captions import CaptionBridge, RecognitionSupervisor, StatusCallback
from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.captions import RecognitionEvent

logger = get_logger(__name__)


class RecognitionFeed:
    """把一个识别子进程的输出喂给字幕桥。

    Args:
        command: 识别进程的命令行。
        bridge: 接收识别结果的字幕桥；其 ``active`` 状态决定是否需要重启。
        on_status: 状态上报回调。
        **supervisor_options: 透传给 ``RecognitionSupervisor`` 的延迟参数。
    """

    def __init__(
        self,
        command: Sequence[str],
        bridge: CaptionBridge,
        on_status: StatusCallback | None = None,
        **supervisor_options: float,
    ) -> None:
        self.command = list(command)
        self.bridge = bridge
        self.on_status = on_status
        self.supervisor = RecognitionSupervisor(
            restart=self.start,
            wanted=lambda: self.bridge.active and not self._stopped,
            on_status=on_status,
            **supervisor_options,
        )
        self.process: asyncio.subprocess.Process | None = None
        self.reader: asyncio.Task[None] | None = None
        self._stopped: bool = False
        # 当前进程已经上报过 error / end，退出时不再补发一次结束
        self._settled: bool = False

    async def start(self) -> None:
        """启动（或重启）识别进程。启动失败只上报状态，不抛出。"""
        await self._terminate()
        self._stopped = False
        self._settled = False
        env = dict(os.environ)
        if settings.SPEECH_API_KEY:
            env["SPEECH_API_KEY"] = settings.SPEECH_API_KEY
        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            logger.error("语音识别进程启动失败 | cmd=%s | %s", self.command[0], e)
            self._status(f"语音识别不可用: {e}")
            return
        logger.info("语音识别进程已启动 | pid=%s", self.process.pid)
        self.reader = asyncio.create_task(self._read(self.process))

    async def stop(self) -> None:
        """停止识别：取消待执行的重启并结束子进程。重复调用无副作用。"""
        self._stopped = True
        self.supervisor.cancel()
        await self._terminate()

    def feed_line(self, line: str | bytes) -> RecognitionEvent | None:
        """处理识别进程输出的一行；无法解析的行丢弃并返回 ``None``。"""
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.strip()
        if not line:
            return None
        try:
            event = RecognitionEvent.model_validate_json(line)
        except ValidationError:
            logger.debug("丢弃无法解析的识别输出: %.80s", line)
            return None

        if event.type == "result":
            self.supervisor.on_result()
            self.bridge.handle_result(event.to_result())
        elif event.type == "error":
            self._settled = True
            self.supervisor.on_error(event.error or "unknown")
        else:
            self._settled = True
            self.supervisor.on_end()
        return event

    async def _read(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        async for line in process.stdout:
            self.feed_line(line)
        code = await process.wait()
        logger.info("语音识别进程已退出 | code=%s", code)
        if process is self.process and not self._stopped and not self._settled:
            self.supervisor.on_end()

    async def _terminate(self) -> None:
        process, reader = self.process, self.reader
        self.process, self.reader = None, None
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        await process.wait()

    def _status(self, text: str) -> None:
        if self.on_status is not None:
            self.on_status(text)
