"""
tests.test_recognition
~~~~~~~~~~~~~~~~~~~~~~

识别进程接入测试：事件分发、重启策略联动，以及真实子进程的读取与清理。
"""
from __future__ import annotations

import json
import sys
from unittest.mock import MagicMock, patch

import pytest

from app.client.captions import CaptionBridge
from app.client.recognition import RecognitionFeed


def _line(**event) -> str:
    return json.dumps(event)


def _script(*events: dict) -> list[str]:
    """一个按行打印给定事件后退出的识别进程。"""
    body = "\n".join(f"print({json.dumps(json.dumps(e))}, flush=True)" for e in events)
    return [sys.executable, "-c", body]


class TestRecognitionFeed:
    """测试识别输出到字幕桥 / 重启策略的分发。"""

    @pytest.fixture(autouse=True)
    def _bridge(self, make_channel, clock) -> None:
        self.channel = make_channel()
        self.bridge = CaptionBridge(clock=clock)
        self.bridge.add_channel("v1", self.channel)
        self.bridge.activate()
        self.status = MagicMock()

    def make(self, command: list[str] | None = None) -> RecognitionFeed:
        return RecognitionFeed(
            command or ["recognizer"],
            self.bridge,
            on_status=self.status,
            no_speech_delay=60.0,
            retry_base=60.0,
            retry_max=60.0,
            end_delay=60.0,
        )

    def test_final_result_is_forwarded(self) -> None:
        feed = self.make()

        event = feed.feed_line(_line(
            type="result",
            isFinal=True,
            alternatives=[{"transcript": "um hello there", "confidence": 0.92}],
        ))

        assert event is not None and event.is_final is True
        sent = json.loads(self.channel.sent[0])
        assert sent["text"] == "Hello there"
        assert sent["isFinal"] is True
        assert sent["confidence"] == 0.92

    def test_interim_result_is_forwarded(self) -> None:
        feed = self.make()

        feed.feed_line(b'{"alternatives": [{"transcript": "hel"}]}\n')

        assert json.loads(self.channel.sent[0])["isFinal"] is False

    @pytest.mark.asyncio
    async def test_network_error_backs_off_and_result_resets_it(self) -> None:
        feed = self.make()

        feed.feed_line(_line(type="error", error="network"))
        feed.feed_line(_line(type="error", error="network"))
        assert feed.supervisor.failures == 2

        feed.feed_line(_line(type="result", alternatives=[{"transcript": "back"}]))
        assert feed.supervisor.failures == 0
        await feed.stop()

    def test_unrecoverable_error_is_reported(self) -> None:
        feed = self.make()

        feed.feed_line(_line(type="error", error="audio-capture"))

        self.status.assert_called_once_with("语音识别错误: audio-capture")

    @pytest.mark.parametrize(
        "raw",
        ["", "   ", "not json", '{"type": "bogus"}', '{"alternatives": "nope"}'],
    )
    def test_malformed_lines_are_ignored(self, raw: str) -> None:
        feed = self.make()

        assert feed.feed_line(raw) is None
        assert self.channel.sent == []

    @pytest.mark.asyncio
    async def test_reads_captions_from_subprocess(self) -> None:
        feed = self.make(_script(
            {"type": "result", "isFinal": True, "alternatives": [{"transcript": "from a process"}]},
        ))

        await feed.start()
        assert feed.reader is not None
        await feed.reader

        assert json.loads(self.channel.sent[0])["text"] == "From a process"
        # 进程没有输出 end 就退出了，按自然结束安排重启
        assert feed.supervisor._pending is not None

        await feed.stop()
        assert feed.supervisor._pending is None
        assert feed.process is None

    @pytest.mark.asyncio
    async def test_reported_error_is_not_followed_by_end(self) -> None:
        feed = self.make(_script({"type": "error", "error": "network"}))

        with patch.object(feed.supervisor, "on_end") as on_end:
            await feed.start()
            await feed.reader

        on_end.assert_not_called()
        assert feed.supervisor.failures == 1
        await feed.stop()

    @pytest.mark.asyncio
    async def test_stop_terminates_running_process(self) -> None:
        feed = self.make([sys.executable, "-c", "import time; time.sleep(60)"])

        await feed.start()
        process = feed.process
        await feed.stop()

        assert process is not None and process.returncode is not None
        assert feed.reader is None

    @pytest.mark.asyncio
    async def test_missing_command_reports_status(self) -> None:
        feed = self.make(["/nonexistent/speech-recognizer"])

        await feed.start()

        assert feed.process is None
        self.status.assert_called_once()
        assert "语音识别不可用" in self.status.call_args.args[0]
