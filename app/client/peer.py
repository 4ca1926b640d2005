"""
app.client.peer
~~~~~~~~~~~~~~~

WebRTC 对等连接能力（基于 aiortc）。

会话状态机只依赖这里的工厂函数和 payload 转换函数，测试时可以整体替换为假对象。
SDP 描述与 ICE 候选在信令上以浏览器兼容的 JSON 形式传输:

- 描述: ``{"type": "offer" | "answer", "sdp": "..."}``
- 候选: ``{"candidate": "candidate:...", "sdpMid": "0", "sdpMLineIndex": 0}``
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from app.core.config import settings

PeerConnectionFactory = Callable[[], RTCPeerConnection]

_CANDIDATE_PREFIX: str = "candidate:"


def create_peer_connection(ice_servers: list[str] | None = None) -> RTCPeerConnection:
    """按配置的 STUN 服务器创建一个新的 ``RTCPeerConnection``。"""
    urls = settings.ICE_SERVERS if ice_servers is None else ice_servers
    configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in urls])
    return RTCPeerConnection(configuration=configuration)


def description_to_payload(description: RTCSessionDescription) -> dict[str, str]:
    return {"type": description.type, "sdp": description.sdp}


def payload_to_description(payload: dict[str, Any]) -> RTCSessionDescription:
    """把信令 payload 还原为 SDP 描述。缺字段时抛出 ``KeyError`` / ``ValueError``。"""
    return RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])


def candidate_to_payload(candidate: RTCIceCandidate) -> dict[str, Any]:
    return {
        "candidate": _CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        "sdpMid": candidate.sdpMid,
        "sdpMLineIndex": candidate.sdpMLineIndex,
    }


def payload_to_candidate(payload: dict[str, Any] | None) -> RTCIceCandidate | None:
    """把信令 payload 还原为 ICE 候选。

    ``None`` 或空 ``candidate`` 字符串表示候选收集结束，返回 ``None``。
    """
    if not payload:
        return None
    raw: str = payload.get("candidate") or ""
    if not raw:
        return None
    if raw.startswith(_CANDIDATE_PREFIX):
        raw = raw[len(_CANDIDATE_PREFIX):]
    candidate = candidate_from_sdp(raw)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate
