"""
app.client.viewer
~~~~~~~~~~~~~~~~~

观众端会话 —— 单条对等连接，收到第一条 offer 时才创建。

状态机::

    idle ──收到 offer 并回复 answer──▶ answered ──连接建立──▶ connected

主播离开（``host-left``）只作为状态变化上报，不主动关闭对等连接，
交给 ICE 超时或用户操作处理。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from aiortc import MediaStreamTrack, RTCDataChannel, RTCIceCandidate, RTCPeerConnection

from app.client.captions import CaptionReceiver, StatusCallback
from app.client.peer import (
    PeerConnectionFactory,
    candidate_to_payload,
    create_peer_connection,
    description_to_payload,
    payload_to_candidate,
    payload_to_description,
)
from app.client.signaling import SignalingClient
from app.core.logging import get_logger
from app.schemas.captions import CaptionEvent
from app.schemas.signaling import HostLeftMessage, JoinedMessage, RelayedMessage, ServerMessage

logger = get_logger(__name__)


class ViewerState(str, Enum):
    IDLE = "idle"
    ANSWERED = "answered"
    CONNECTED = "connected"
    CLOSED = "closed"


class ViewerSession:
    """观众端会话。

    Attributes:
        pc: 对等连接，收到第一条 offer 前为 ``None``。
        state: 当前状态。
        remote_tracks: 已收到的远端媒体轨道（合起来即一路可渲染的流）。
        host_id: 发来 offer 的主播连接 ID。
    """

    def __init__(
        self,
        signaling: SignalingClient,
        peer_factory: PeerConnectionFactory = create_peer_connection,
        on_caption: Callable[[CaptionEvent], Any] | None = None,
        on_track: Callable[[MediaStreamTrack], Any] | None = None,
        on_status: StatusCallback | None = None,
    ) -> None:
        self.signaling = signaling
        self.peer_factory = peer_factory
        self.on_caption = on_caption
        self.on_track = on_track
        self.on_status = on_status
        self.pc: RTCPeerConnection | None = None
        self.state: ViewerState = ViewerState.IDLE
        self.remote_tracks: list[MediaStreamTrack] = []
        self.host_id: str | None = None
        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "joined": self._on_joined,
            "offer": self._on_offer,
            "candidate": self._on_candidate,
            "host-left": self._on_host_left,
        }

    async def start(self, room_id: str) -> None:
        """以观众身份加入房间，等待主播发来 offer。"""
        await self.signaling.join(room_id, "viewer")
        self._status(f"观众模式：等待主播开始共享 | room={room_id}")

    async def close(self) -> None:
        if self.state is ViewerState.CLOSED:
            return
        self.state = ViewerState.CLOSED
        if self.pc is not None:
            await self.pc.close()

    async def handle(self, message: ServerMessage) -> None:
        """处理一条中继消息。"""
        if self.state is ViewerState.CLOSED:
            return
        handler = self._handlers.get(message.type)
        if handler is None:
            logger.debug("观众忽略消息 | type=%s", message.type)
            return
        await handler(message)

    # ── 信令事件 ──────────────────────────────────────────────────────

    async def _on_joined(self, message: JoinedMessage) -> None:
        self._status(f"已加入信令房间 | id={message.id}")

    async def _on_offer(self, message: RelayedMessage) -> None:
        pc = self._ensure_peer()
        self.host_id = message.sender
        logger.info("收到 offer | from=%s", message.sender)
        try:
            await pc.setRemoteDescription(payload_to_description(message.payload))
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        except Exception as e:
            logger.error("应答协商失败 | from=%s | %s", message.sender, e, exc_info=True)
            self._status(f"与主播协商失败: {e}")
            return
        await self.signaling.send("answer", description_to_payload(pc.localDescription))
        if self.state is ViewerState.IDLE:
            self.state = ViewerState.ANSWERED

    async def _on_candidate(self, message: RelayedMessage) -> None:
        if self.pc is None:
            return
        try:
            candidate = payload_to_candidate(message.payload)
            if candidate is not None:
                await self.pc.addIceCandidate(candidate)
        except Exception as e:
            logger.debug("忽略 ICE 候选 | from=%s | %s", message.sender, e)

    async def _on_host_left(self, message: HostLeftMessage) -> None:
        self._status("主播已结束共享")

    # ── 对等连接 ──────────────────────────────────────────────────────

    def _ensure_peer(self) -> RTCPeerConnection:
        if self.pc is not None:
            return self.pc
        pc = self.peer_factory()

        def on_track(track: MediaStreamTrack) -> None:
            logger.info("收到远端轨道 | kind=%s", track.kind)
            self.remote_tracks.append(track)
            if self.on_track is not None:
                self.on_track(track)

        def on_datachannel(channel: RTCDataChannel) -> None:
            logger.info("收到字幕通道 | label=%s", channel.label)
            channel.on("message", CaptionReceiver(self._on_caption))

        async def on_icecandidate(candidate: RTCIceCandidate | None) -> None:
            if candidate is not None:
                # 不指定 target，由中继转给主播
                await self.signaling.send("candidate", candidate_to_payload(candidate))

        def on_connectionstatechange() -> None:
            state = pc.connectionState
            logger.info("对等连接状态: %s", state)
            if state == "connected" and self.state is ViewerState.ANSWERED:
                self.state = ViewerState.CONNECTED
                self._status("已连接到主播")
            elif state == "failed":
                self._status("与主播的连接失败")

        pc.on("track", on_track)
        pc.on("datachannel", on_datachannel)
        pc.on("icecandidate", on_icecandidate)
        pc.on("connectionstatechange", on_connectionstatechange)
        self.pc = pc
        return pc

    def _on_caption(self, event: CaptionEvent) -> None:
        if self.on_caption is not None:
            self.on_caption(event)

    def _status(self, text: str) -> None:
        logger.info(text)
        if self.on_status is not None:
            self.on_status(text)
