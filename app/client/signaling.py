"""
app.client.signaling
~~~~~~~~~~~~~~~~~~~~

信令客户端 —— 主播 / 观众端与中继服务器之间的 WebSocket 通道。

收包与处理解耦：``receive_loop`` 只负责解析并放入队列，
``process_loop`` 按到达顺序把消息逐条交给会话状态机，
状态机的每次迁移都由一条离散的入站事件驱动。
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from app.core.logging import get_logger
from app.schemas.signaling import RelayType, Role, ServerMessage, server_message_adapter

logger = get_logger(__name__)

MessageHandler = Callable[[ServerMessage], Awaitable[None]]


class SignalingClient:
    """到中继服务器的一条信令连接。

    Attributes:
        url: 信令 WebSocket 地址。
        room_id: 已加入的房间号。
        role: 已声明的角色。
        connection_id: 服务端在 ``joined`` 回执中分配的连接 ID。
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.room_id: str | None = None
        self.role: Role | None = None
        self.connection_id: str | None = None
        self._ws: ClientConnection | None = None
        self._queue: asyncio.Queue[ServerMessage | None] = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """建立 WebSocket 连接（重复调用无副作用）。"""
        if self._ws is not None:
            return
        self._ws = await connect(self.url)
        logger.info("信令已连接 | url=%s", self.url)

    async def close(self) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        await ws.close()
        logger.info("信令已关闭 | room=%s", self.room_id)

    # ── 发送 ──────────────────────────────────────────────────────────

    async def join(self, room_id: str, role: Role) -> None:
        """以指定角色加入房间。"""
        self.room_id = room_id
        self.role = role
        await self._send({"type": "join", "room": room_id, "role": role})

    async def send(self, type: RelayType, payload: Any, target: str | None = None) -> None:
        """发送 offer / answer / candidate，``payload`` 由服务端原样转发。"""
        await self._send(
            {"type": type, "room": self.room_id, "target": target, "payload": payload},
        )

    async def _send(self, message: dict[str, Any]) -> None:
        if self._ws is None:
            logger.debug("信令未连接，丢弃 | type=%s", message["type"])
            return
        logger.debug("send | type=%s | target=%s", message["type"], message.get("target"))
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            logger.warning("信令发送失败，连接已关闭 | type=%s | %s", message["type"], e)

    # ── 接收 ──────────────────────────────────────────────────────────

    async def receive_loop(self) -> None:
        """读取服务端消息并放入处理队列；无法解析的消息直接丢弃。"""
        try:
            if self._ws is None:
                return
            async for raw in self._ws:
                try:
                    message = server_message_adapter.validate_json(raw)
                except ValidationError:
                    logger.debug("丢弃无法解析的信令消息")
                    continue
                if message.type == "joined":
                    self.connection_id = message.id
                await self._queue.put(message)
        except ConnectionClosed:
            logger.info("信令连接被服务端关闭")
        finally:
            await self._queue.put(None)  # 通知处理协程结束

    async def process_loop(self, handler: MessageHandler) -> None:
        """按到达顺序把消息交给会话处理。单条消息处理失败不影响后续消息。"""
        while True:
            message = await self._queue.get()
            if message is None:
                break
            try:
                await handler(message)
            except Exception as e:
                logger.error("信令消息处理异常: %s | type=%s", e, message.type, exc_info=True)

    async def run(self, handler: MessageHandler) -> None:
        """并发运行接收与处理，直到连接关闭。"""
        await asyncio.gather(self.receive_loop(), self.process_loop(handler))
