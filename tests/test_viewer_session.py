"""
tests.test_viewer_session
~~~~~~~~~~~~~~~~~~~~~~~~~

观众端会话状态机测试。
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.client.viewer import ViewerSession, ViewerState
from app.schemas.signaling import HostLeftMessage, JoinedMessage, RelayedMessage

OFFER = {"type": "offer", "sdp": "v=0 host-offer"}


@pytest.fixture()
def viewer(signaling, peer_factory) -> ViewerSession:
    return ViewerSession(
        signaling,
        peer_factory=peer_factory,
        on_caption=MagicMock(),
        on_track=MagicMock(),
        on_status=MagicMock(),
    )


async def receive_offer(viewer: ViewerSession, sender: str = "host1") -> None:
    await viewer.handle(RelayedMessage(type="offer", sender=sender, payload=OFFER))


@pytest.mark.asyncio
async def test_start_joins_as_viewer(viewer, signaling) -> None:
    await viewer.start("room-1")

    signaling.join.assert_awaited_once_with("room-1", "viewer")
    assert viewer.state is ViewerState.IDLE
    assert viewer.pc is None


@pytest.mark.asyncio
async def test_joined_only_reports_status(viewer, peers) -> None:
    await viewer.handle(JoinedMessage(id="v000001"))

    assert peers == []
    assert "v000001" in viewer.on_status.call_args[0][0]


@pytest.mark.asyncio
async def test_offer_creates_peer_and_sends_answer(viewer, signaling, peers) -> None:
    """收到 offer：创建对等连接、设置远端描述并回复不带 target 的 answer。"""
    await receive_offer(viewer)

    assert len(peers) == 1
    pc = peers[0]
    assert pc.remoteDescription.sdp == "v=0 host-offer"
    assert pc.localDescription.type == "answer"
    signaling.send.assert_awaited_once_with("answer", {"type": "answer", "sdp": "v=0 fake-answer"})
    assert viewer.state is ViewerState.ANSWERED
    assert viewer.host_id == "host1"


@pytest.mark.asyncio
async def test_connected_state_after_peer_connects(viewer, peers) -> None:
    await receive_offer(viewer)
    peers[0].connectionState = "connected"

    peers[0].handlers["connectionstatechange"]()

    assert viewer.state is ViewerState.CONNECTED


@pytest.mark.asyncio
async def test_failed_peer_reports_status(viewer, peers) -> None:
    await receive_offer(viewer)
    peers[0].connectionState = "failed"

    peers[0].handlers["connectionstatechange"]()

    assert viewer.state is ViewerState.ANSWERED
    assert "失败" in viewer.on_status.call_args[0][0]


@pytest.mark.asyncio
async def test_offer_failure_reports_status_without_answer(viewer, signaling) -> None:
    await viewer.handle(RelayedMessage(type="offer", sender="host1", payload={"sdp": "missing type"}))

    signaling.send.assert_not_called()
    assert viewer.state is ViewerState.IDLE
    assert "协商失败" in viewer.on_status.call_args[0][0]


@pytest.mark.asyncio
async def test_candidate_before_offer_is_ignored(viewer, peers) -> None:
    await viewer.handle(RelayedMessage(type="candidate", sender="host1", payload={"candidate": "x"}))

    assert peers == []


@pytest.mark.asyncio
async def test_candidate_after_offer_is_added(viewer, peers) -> None:
    payload = {
        "candidate": "candidate:1 1 udp 2130706431 10.0.0.5 50000 typ host",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
    }
    await receive_offer(viewer)

    await viewer.handle(RelayedMessage(type="candidate", sender="host1", payload=payload))
    await viewer.handle(RelayedMessage(type="candidate", sender="host1", payload=None))

    assert [c.ip for c in peers[0].candidates] == ["10.0.0.5"]


@pytest.mark.asyncio
async def test_candidate_errors_are_swallowed(viewer, peers) -> None:
    await receive_offer(viewer)
    peers[0].addIceCandidate = AsyncMock(side_effect=RuntimeError("boom"))

    await viewer.handle(RelayedMessage(type="candidate", sender="host1", payload={"candidate": "garbage"}))

    assert viewer.state is ViewerState.ANSWERED


@pytest.mark.asyncio
async def test_remote_track_is_rendered(viewer, peers, make_track) -> None:
    await receive_offer(viewer)
    track = make_track("video")

    peers[0].handlers["track"](track)

    assert viewer.remote_tracks == [track]
    viewer.on_track.assert_called_once_with(track)


@pytest.mark.asyncio
async def test_captions_from_data_channel(viewer, peers, make_channel) -> None:
    """字幕通道上的消息被解析为字幕事件交给渲染回调。"""
    await receive_offer(viewer)
    channel = make_channel()
    peers[0].handlers["datachannel"](channel)

    channel.handlers["message"](
        json.dumps({"text": "Hello world", "confidence": 0.92, "isFinal": True, "ts": 1234}),
    )

    event = viewer.on_caption.call_args[0][0]
    assert event.text == "Hello world"
    assert event.is_final is True


@pytest.mark.asyncio
async def test_host_left_keeps_peer_open(viewer, peers) -> None:
    """主播离开只上报状态，对等连接不被主动关闭。"""
    await receive_offer(viewer)

    await viewer.handle(HostLeftMessage())

    assert peers[0].closed is False
    assert "结束共享" in viewer.on_status.call_args[0][0]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_stops_handling(viewer, signaling, peers) -> None:
    await receive_offer(viewer)

    await viewer.close()
    await viewer.close()
    await receive_offer(viewer)

    assert viewer.state is ViewerState.CLOSED
    assert peers[0].closed is True
    assert signaling.send.await_count == 1
