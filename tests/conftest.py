"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用假对象替换 WebSocket、对等连接和 DataChannel，
使会话状态机与中继路由可以在无网络、无媒体设备的环境下测试。
"""
from __future__ import annotations

import json
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")

from aiortc import RTCSessionDescription  # noqa: E402
from fastapi import WebSocket  # noqa: E402

from app.services.connection import Connection  # noqa: E402
from app.services.relay import RelayServer  # noqa: E402


# ── 中继侧 ────────────────────────────────────────────────────────────

def sent_messages(connection: Connection) -> list[dict[str, Any]]:
    """返回某条连接收到的全部服务端消息（已解析为 dict）。"""
    return [json.loads(c.args[0]) for c in connection.websocket.send_text.call_args_list]


@pytest.fixture()
def sent():
    return sent_messages


@pytest.fixture()
def relay() -> RelayServer:
    return RelayServer()


@pytest.fixture()
def connect(relay: RelayServer):
    """创建一条挂在假 WebSocket 上的连接。"""

    def _connect() -> Connection:
        return relay.connect(AsyncMock(spec=WebSocket))

    return _connect


# ── 会话侧 ────────────────────────────────────────────────────────────

class FakeDataChannel:
    """模拟 ``RTCDataChannel``：记录发送的消息。"""

    def __init__(self, label: str = "subtitles", ready_state: str = "open") -> None:
        self.label = label
        self.readyState = ready_state
        self.sent: list[str] = []
        self.handlers: dict[str, Any] = {}

    def send(self, data: str) -> None:
        self.sent.append(data)

    def on(self, event: str, f: Any = None) -> Any:
        self.handlers[event] = f
        return f


class FakePeerConnection:
    """模拟 ``RTCPeerConnection``：协商步骤全部立即成功，并记录调用。"""

    def __init__(self) -> None:
        self.handlers: dict[str, Any] = {}
        self.tracks: list[Any] = []
        self.channels: list[FakeDataChannel] = []
        self.candidates: list[Any] = []
        self.localDescription: RTCSessionDescription | None = None
        self.remoteDescription: RTCSessionDescription | None = None
        self.connectionState: str = "new"
        self.closed: bool = False

    def on(self, event: str, f: Any = None) -> Any:
        self.handlers[event] = f
        return f

    def createDataChannel(self, label: str) -> FakeDataChannel:
        channel = FakeDataChannel(label)
        self.channels.append(channel)
        return channel

    def addTrack(self, track: Any) -> None:
        self.tracks.append(track)

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp="v=0 fake-offer", type="offer")

    async def createAnswer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp="v=0 fake-answer", type="answer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self.remoteDescription = description

    async def addIceCandidate(self, candidate: Any) -> None:
        self.candidates.append(candidate)

    async def close(self) -> None:
        self.closed = True
        self.connectionState = "closed"


@pytest.fixture()
def make_channel():
    return FakeDataChannel


@pytest.fixture()
def peers() -> list[FakePeerConnection]:
    """按创建顺序收集工厂产出的假对等连接。"""
    return []


@pytest.fixture()
def peer_factory(peers: list[FakePeerConnection]):
    def _factory() -> FakePeerConnection:
        pc = FakePeerConnection()
        peers.append(pc)
        return pc

    return _factory


@pytest.fixture()
def signaling() -> MagicMock:
    """模拟 ``SignalingClient``：只记录 join / send 调用。"""
    client = MagicMock()
    client.join = AsyncMock()
    client.send = AsyncMock()
    return client


@pytest.fixture()
def make_track():
    def _make(kind: str = "video") -> MagicMock:
        track = MagicMock()
        track.kind = kind
        return track

    return _make


class FakeClock:
    """可手动推进的单调时钟（秒）。"""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
