"""
app.api.ws
~~~~~~~~~~

信令 WebSocket 接口。

主播与观众都连接同一个端点（``/`` 与 ``/ws`` 均可），连接建立后通过
``join`` 消息声明房间与角色。每条文本帧（或 UTF-8 编码的二进制帧）交给 ``RelayServer.handle()`` 顺序处理，
连接断开（包括处理过程中出现异常）时一定会执行 ``RelayServer.disconnect()``。
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.core.logging import get_logger, request_id_ctx_var
from app.services.relay import RelayServer

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/")
@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """信令端点：一个连接对应一个参与者（主播或观众）。"""
    relay: RelayServer = websocket.app.state.relay

    await websocket.accept()
    connection = relay.connect(websocket)
    token = request_id_ctx_var.set(f"ws-{connection.id}")
    logger.info("信令连接建立 | conn=%s | 在线连接: %d", connection.id, len(relay.connections))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = _frame_text(message)
            if raw is None:
                logger.debug("丢弃无法解码的二进制帧 | conn=%s", connection.id)
                continue
            await relay.handle(connection, raw)
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s | conn=%s", e, connection.id, exc_info=True)
    finally:
        await relay.disconnect(connection)
        logger.info("信令连接断开 | conn=%s | 在线连接: %d", connection.id, len(relay.connections))
        request_id_ctx_var.reset(token)


def _frame_text(message: dict[str, Any]) -> str | None:
    """取出一帧的文本内容。二进制帧按 UTF-8 解码，解码失败返回 ``None``。"""
    text = message.get("text")
    if text is not None:
        return text
    try:
        return (message.get("bytes") or b"").decode("utf-8")
    except UnicodeDecodeError:
        return None
