"""
app.client
~~~~~~~~~~

主播 / 观众端会话：信令客户端、WebRTC 会话状态机与字幕桥。
"""
from app.client.captions import CaptionBridge, CaptionReceiver, RecognitionSupervisor, enhance
from app.client.host import CaptureError, HostSession, PeerSession, PeerState
from app.client.params import SessionParams, build_share_url, generate_room_id
from app.client.recognition import RecognitionFeed
from app.client.signaling import SignalingClient
from app.client.viewer import ViewerSession, ViewerState

__all__ = [
    "CaptionBridge",
    "CaptionReceiver",
    "CaptureError",
    "HostSession",
    "PeerSession",
    "PeerState",
    "RecognitionFeed",
    "RecognitionSupervisor",
    "SessionParams",
    "SignalingClient",
    "ViewerSession",
    "ViewerState",
    "build_share_url",
    "enhance",
    "generate_room_id",
]
