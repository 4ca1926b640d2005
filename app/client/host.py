"""
app.client.host
~~~~~~~~~~~~~~~

主播端会话编排 —— 每个观众一条独立的 WebRTC 连接。

单个观众关系的状态机::

    idle ──offer 已发送──▶ offer-sent ──收到 answer──▶ connected
      │                         │                          │
      └──────── 观众离开 / 停止共享 ───────────────────────┴──▶ closed

协商出错时进入 ``failed``，只上报状态，不自动重试。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

from aiortc import MediaStreamTrack, RTCDataChannel, RTCIceCandidate, RTCPeerConnection

from app.client.captions import CaptionBridge, StatusCallback
from app.client.peer import (
    PeerConnectionFactory,
    candidate_to_payload,
    create_peer_connection,
    description_to_payload,
    payload_to_candidate,
    payload_to_description,
)
from app.client.signaling import SignalingClient
from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.signaling import (
    JoinedMessage,
    RelayedMessage,
    ServerMessage,
    ViewerJoinedMessage,
    ViewerLeftMessage,
)

logger = get_logger(__name__)


class CaptureError(RuntimeError):
    """媒体采集失败，``start`` 的终止性错误。"""


class PeerState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer-sent"
    CONNECTED = "connected"
    CLOSED = "closed"
    FAILED = "failed"


class PeerSession:
    """主播与单个观众之间的一条对等会话。

    Attributes:
        viewer_id: 对应观众的连接 ID。
        pc: 对等连接。
        channel: 字幕 DataChannel。
        state: 当前状态。
        task: 协商任务。
    """

    def __init__(self, viewer_id: str, pc: RTCPeerConnection) -> None:
        self.viewer_id = viewer_id
        self.pc = pc
        self.channel: RTCDataChannel | None = None
        self.state: PeerState = PeerState.IDLE
        self.task: asyncio.Task[None] | None = None

    async def close(self) -> None:
        if self.state is PeerState.CLOSED:
            return
        self.state = PeerState.CLOSED
        if self.task is not None and not self.task.done():
            self.task.cancel()
        await self.pc.close()


class HostSession:
    """主播端会话。

    持有本地媒体轨道；每当中继通知有观众加入，就为其创建一条 ``PeerSession``、
    挂上所有轨道与字幕通道，并通过信令完成 offer / answer / ICE 交换。

    Args:
        signaling: 已连接的信令客户端。
        bridge: 字幕桥；为 ``None`` 时只共享画面。
        peer_factory: 对等连接工厂。
        on_status: 状态上报回调（通常是 UI 状态栏）。
    """

    def __init__(
        self,
        signaling: SignalingClient,
        bridge: CaptionBridge | None = None,
        peer_factory: PeerConnectionFactory = create_peer_connection,
        on_status: StatusCallback | None = None,
        channel_label: str | None = None,
    ) -> None:
        self.signaling = signaling
        self.bridge = bridge
        self.peer_factory = peer_factory
        self.on_status = on_status
        self.channel_label = channel_label or settings.CAPTION_CHANNEL_LABEL
        self.sessions: dict[str, PeerSession] = {}
        self.tracks: list[MediaStreamTrack] = []
        self.capturing: bool = False
        self.stop_task: asyncio.Task[None] | None = None
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "joined": self._on_joined,
            "viewer-joined": self._on_viewer_joined,
            "viewer-left": self._on_viewer_left,
            "answer": self._on_answer,
            "candidate": self._on_candidate,
        }

    # ── 生命周期 ──────────────────────────────────────────────────────

    async def start(self, room_id: str, tracks: Sequence[MediaStreamTrack]) -> None:
        """开始共享：记录本地轨道，开启字幕转发，以主播身份加入房间。

        Raises:
            CaptureError: 没有任何可共享的轨道。
        """
        if not tracks:
            raise CaptureError("没有可共享的媒体轨道")
        self.tracks = list(tracks)
        for track in self.tracks:
            # 任一本地轨道结束（采集源断开）即停止共享
            track.on("ended", self._on_track_ended)
        self.capturing = True
        if self.bridge is not None:
            self.bridge.activate()
        await self.signaling.join(room_id, "host")
        self._status(f"正在共享 | room={room_id}")

    async def stop(self) -> None:
        """停止共享：关闭所有对等会话并停止本地轨道。重复调用无副作用。"""
        if not self.capturing and not self.sessions and not self.tracks:
            return
        self.capturing = False
        if self.bridge is not None:
            self.bridge.deactivate()

        sessions = list(self.sessions.values())
        self.sessions.clear()
        for session in sessions:
            if self.bridge is not None:
                self.bridge.remove_channel(session.viewer_id)
        await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)

        for track in self.tracks:
            track.stop()
        self.tracks = []
        self._status("已停止共享")

    # ── 信令事件 ──────────────────────────────────────────────────────

    async def handle(self, message: ServerMessage) -> None:
        """处理一条中继消息。与主播无关的消息类型直接忽略。"""
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug("主播忽略消息 | type=%s", message.type)
            return
        await handler(message)

    async def _on_joined(self, message: JoinedMessage) -> None:
        self._status(f"已加入信令房间 | id={message.id}")

    async def _on_viewer_joined(self, message: ViewerJoinedMessage) -> None:
        viewer_id = message.viewer_id
        if not self.capturing:
            logger.debug("未在共享，忽略观众加入 | viewer=%s", viewer_id)
            return
        if viewer_id in self.sessions:
            # 重复通知，不创建第二条会话
            logger.debug("观众会话已存在 | viewer=%s", viewer_id)
            return

        session = PeerSession(viewer_id, self.peer_factory())
        self.sessions[viewer_id] = session
        self._status(f"观众加入: {viewer_id}")
        session.task = asyncio.create_task(self._negotiate(session))

    async def _on_viewer_left(self, message: ViewerLeftMessage) -> None:
        await self._drop(message.viewer_id, "观众离开")

    async def _on_answer(self, message: RelayedMessage) -> None:
        session = self.sessions.get(message.sender)
        if session is None or session.state is not PeerState.OFFER_SENT:
            logger.debug("丢弃不匹配的 answer | from=%s", message.sender)
            return
        try:
            await session.pc.setRemoteDescription(payload_to_description(message.payload))
        except Exception as e:
            self._fail(session, e)
            return
        session.state = PeerState.CONNECTED
        logger.info("对等连接已建立 | viewer=%s", session.viewer_id)

    async def _on_candidate(self, message: RelayedMessage) -> None:
        session = self.sessions.get(message.sender)
        if session is None:
            return
        try:
            candidate = payload_to_candidate(message.payload)
            if candidate is not None:
                await session.pc.addIceCandidate(candidate)
        except Exception as e:
            # 迟到或重复的候选是正常现象
            logger.debug("忽略 ICE 候选 | viewer=%s | %s", session.viewer_id, e)

    # ── 协商 ──────────────────────────────────────────────────────────

    async def _negotiate(self, session: PeerSession) -> None:
        viewer_id = session.viewer_id
        pc = session.pc
        try:
            channel = pc.createDataChannel(self.channel_label)
            session.channel = channel
            channel.on("open", lambda: logger.info("字幕通道已打开 | viewer=%s", viewer_id))
            channel.on("close", lambda: logger.info("字幕通道已关闭 | viewer=%s", viewer_id))
            if self.bridge is not None:
                self.bridge.add_channel(viewer_id, channel)

            for track in self.tracks:
                pc.addTrack(track)

            async def on_icecandidate(candidate: RTCIceCandidate | None) -> None:
                if candidate is not None:
                    await self.signaling.send(
                        "candidate", candidate_to_payload(candidate), target=viewer_id,
                    )

            async def on_connectionstatechange() -> None:
                if pc.connectionState in ("failed", "closed") and self.sessions.get(viewer_id) is session:
                    await self._drop(viewer_id, f"连接{pc.connectionState}")

            pc.on("icecandidate", on_icecandidate)
            pc.on("connectionstatechange", on_connectionstatechange)

            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            if session.state is not PeerState.IDLE:
                return
            session.state = PeerState.OFFER_SENT
            await self.signaling.send(
                "offer", description_to_payload(pc.localDescription), target=viewer_id,
            )
            logger.info("offer 已发送 | viewer=%s", viewer_id)
        except Exception as e:
            if session.state is PeerState.CLOSED:
                return
            self._fail(session, e)

    def _on_track_ended(self) -> None:
        if not self.capturing:
            return
        # 立即停止接纳新观众与转发字幕，对等连接的关闭放到任务里完成
        self.capturing = False
        if self.bridge is not None:
            self.bridge.deactivate()
        self._status("本地媒体轨道已结束")
        self.stop_task = asyncio.get_running_loop().create_task(self.stop())

    async def _drop(self, viewer_id: str, reason: str) -> None:
        session = self.sessions.pop(viewer_id, None)
        if session is None:
            return
        if self.bridge is not None:
            self.bridge.remove_channel(viewer_id)
        await session.close()
        self._status(f"{reason}: {viewer_id}")

    def _fail(self, session: PeerSession, error: Exception) -> None:
        session.state = PeerState.FAILED
        logger.error("协商失败 | viewer=%s | %s", session.viewer_id, error, exc_info=True)
        self._status(f"与观众 {session.viewer_id} 协商失败: {error}")

    def _status(self, text: str) -> None:
        logger.info(text)
        if self.on_status is not None:
            self.on_status(text)
