"""
app.services.relay
~~~~~~~~~~~~~~~~~~

信令中继服务 —— 房间注册表 + 消息路由器。

``RelayServer`` 由 FastAPI lifespan 创建并挂载在 ``app.state.relay``，
每条 WebSocket 连接的收包循环把文本帧交给 ``handle()``，断开时调用 ``disconnect()``。

路由规则（括号内为发送者角色）:
  - ``join``              → 注册到房间；观众加入且主播在线时通知主播 ``viewer-joined``
  - ``offer``  (host)     → 转发给 ``target`` 指定的观众
  - ``answer`` (viewer)   → 转发给房间主播
  - ``candidate`` (任意)  → 有 ``target`` 时定向转发；否则观众 → 主播、主播 → 全体观众
  - 断开                  → 主播：通知全体观众 ``host-left`` 并销毁房间；
                            观众：移出房间并通知主播 ``viewer-left``

``payload`` 原样转发，不做解析。任何路由失败（房间 / 目标不存在、消息格式错误）
都只是静默丢弃 + 日志，中继没有致命错误路径。
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable

from fastapi import WebSocket
from pydantic import ValidationError

from app.core.logging import get_logger
from app.schemas.rooms import RoomInfoData
from app.schemas.signaling import (
    AnswerMessage,
    CandidateMessage,
    ClientMessage,
    HostLeftMessage,
    JoinedMessage,
    JoinMessage,
    OfferMessage,
    RelayedMessage,
    ServerMessageBase,
    ViewerJoinedMessage,
    ViewerLeftMessage,
    client_message_adapter,
)
from app.services.connection import Connection, generate_connection_id
from app.services.room import Room

logger = get_logger(__name__)

# 待发送的 (接收者, 消息) 列表；在锁内计算，在锁外发送
Outbox = list[tuple[Connection, ServerMessageBase]]


class RelayServer:
    """信令中继服务器（由应用显式持有，非模块级单例）。

    所有房间状态的修改都在同一把 ``asyncio.Lock`` 内完成，
    实际的网络发送在释放锁之后按顺序进行。单条连接的消息由其收包循环
    顺序处理，因此同一连接的 join / 转发 / 断开保持到达顺序。

    Attributes:
        connections: 连接 ID → 当前在线的连接。
    """

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}
        self.connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()
        self._handlers: dict[str, Callable[[Connection, ClientMessage], Outbox]] = {
            "join": self._on_join,
            "offer": self._on_offer,
            "answer": self._on_answer,
            "candidate": self._on_candidate,
        }

    # ── 连接生命周期 ──────────────────────────────────────────────────

    def connect(self, websocket: WebSocket) -> Connection:
        """为新接入的 WebSocket 分配进程内唯一的连接 ID。"""
        connection_id = generate_connection_id()
        while connection_id in self.connections:
            connection_id = generate_connection_id()
        connection = Connection(websocket, connection_id)
        self.connections[connection_id] = connection
        return connection

    async def handle(self, connection: Connection, raw: str) -> None:
        """处理一条入站文本帧。格式错误或路由失败时静默丢弃。"""
        try:
            message = client_message_adapter.validate_json(raw)
        except ValidationError as e:
            logger.debug("丢弃无法解析的消息 | conn=%s | %d 个错误", connection.id, e.error_count())
            return

        logger.debug(
            "recv | conn=%s | type=%s | room=%s | target=%s",
            connection.id,
            message.type,
            message.room,
            getattr(message, "target", None),
        )
        try:
            async with self._lock:
                outbox = self._handlers[message.type](connection, message)
        except Exception as e:
            logger.error("信令处理异常: %s | conn=%s", e, connection.id, exc_info=True)
            return
        await self._deliver(outbox)

    async def disconnect(self, connection: Connection) -> None:
        """连接断开时的清理。无论之前的消息处理是否出错都必须调用。"""
        async with self._lock:
            self.connections.pop(connection.id, None)
            outbox = self._leave(connection)
        await self._deliver(outbox)

    # ── 查询 ──────────────────────────────────────────────────────────

    def get_room(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def list_rooms(self) -> list[RoomInfoData]:
        """列出所有活跃房间的摘要信息。"""
        return [room.info() for room in self._rooms.values()]

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    # ── 路由 ──────────────────────────────────────────────────────────

    def _on_join(self, connection: Connection, message: JoinMessage) -> Outbox:
        outbox: Outbox = []

        # 换房间或换角色时先离开原房间，保证一个连接只属于一个房间
        if connection.room_id is not None and (
            connection.room_id != message.room or connection.role != message.role
        ):
            outbox.extend(self._leave(connection))

        room = self._rooms.get(message.room)
        if room is None:
            room = Room(message.room)
            self._rooms[message.room] = room
            logger.info("房间已创建 | room=%s", message.room)

        connection.room_id = message.room
        connection.role = message.role

        if message.role == "host":
            if room.host is not None and room.host is not connection:
                # 后加入的主播覆盖之前的主播引用（last writer wins）
                logger.warning(
                    "主播被替换 | room=%s | old=%s | new=%s",
                    room.room_id, room.host.id, connection.id,
                )
            room.host = connection
            logger.info("主播加入 | room=%s | conn=%s", room.room_id, connection.id)
            outbox.append((connection, JoinedMessage(id=connection.id)))
        else:
            room.viewers[connection.id] = connection
            logger.info(
                "观众加入 | room=%s | conn=%s | 观众数: %d",
                room.room_id, connection.id, room.viewer_count,
            )
            outbox.append((connection, JoinedMessage(id=connection.id)))
            if room.host is not None:
                outbox.append((room.host, ViewerJoinedMessage(viewer_id=connection.id)))
        return outbox

    def _on_offer(self, connection: Connection, message: OfferMessage) -> Outbox:
        room = self._rooms.get(message.room)
        if room is None:
            return self._miss(connection, message)
        viewer = room.viewers.get(message.target)
        if viewer is None:
            return self._miss(connection, message)
        return [(viewer, self._relayed(connection, message))]

    def _on_answer(self, connection: Connection, message: AnswerMessage) -> Outbox:
        room = self._rooms.get(message.room)
        if room is None or room.host is None:
            return self._miss(connection, message)
        return [(room.host, self._relayed(connection, message))]

    def _on_candidate(self, connection: Connection, message: CandidateMessage) -> Outbox:
        room = self._rooms.get(message.room)
        if room is None:
            return self._miss(connection, message)
        relayed = self._relayed(connection, message)

        if message.target:
            if room.host is not None and message.target == room.host.id:
                return [(room.host, relayed)]
            viewer = room.viewers.get(message.target)
            if viewer is not None:
                return [(viewer, relayed)]
            return self._miss(connection, message)

        if connection.role == "viewer" and room.host is not None:
            return [(room.host, relayed)]
        if connection.role == "host":
            return [(viewer, relayed) for viewer in room.viewers.values()]
        return self._miss(connection, message)

    def _leave(self, connection: Connection) -> Outbox:
        """把连接移出其所在房间，返回需要发出的通知。"""
        room = self._rooms.get(connection.room_id) if connection.room_id else None
        role = connection.role
        connection.reset()
        if room is None:
            return []

        outbox: Outbox = []
        if role == "host":
            if room.host is not connection:
                # 已被新主播替换的旧主播断开，不影响房间
                return []
            for viewer in room.viewers.values():
                outbox.append((viewer, HostLeftMessage()))
                viewer.reset()
            del self._rooms[room.room_id]
            logger.info(
                "主播离开，房间已销毁 | room=%s | 驱逐观众: %d",
                room.room_id, len(outbox),
            )
        elif room.viewers.pop(connection.id, None) is not None:
            logger.info(
                "观众离开 | room=%s | conn=%s | 观众数: %d",
                room.room_id, connection.id, room.viewer_count,
            )
            if room.host is not None:
                outbox.append((room.host, ViewerLeftMessage(viewer_id=connection.id)))
        return outbox

    # ── 工具 ──────────────────────────────────────────────────────────

    @staticmethod
    def _relayed(
        connection: Connection,
        message: OfferMessage | AnswerMessage | CandidateMessage,
    ) -> RelayedMessage:
        return RelayedMessage(type=message.type, sender=connection.id, payload=message.payload)

    @staticmethod
    def _miss(connection: Connection, message: ClientMessage) -> Outbox:
        logger.debug(
            "路由未命中，丢弃 | conn=%s | type=%s | room=%s",
            connection.id, message.type, message.room,
        )
        return []

    @staticmethod
    async def _deliver(outbox: Outbox) -> None:
        for recipient, message in outbox:
            await recipient.send(message)


