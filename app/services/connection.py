"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

信令连接 —— 对单条 WebSocket 连接的薄封装。

中继服务器只关心连接的身份（随机 ID）、所在房间和角色，
不关心媒体或字幕内容。
"""
from __future__ import annotations

import secrets
import string

from fastapi import WebSocket

from app.core.logging import get_logger
from app.schemas.signaling import Role, ServerMessageBase

logger = get_logger(__name__)

_ID_ALPHABET: str = string.digits + string.ascii_lowercase
_ID_LENGTH: int = 7


def generate_connection_id() -> str:
    """生成 7 位 base36 随机连接 ID。"""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


class Connection:
    """一条已接入中继服务器的信令连接。

    Attributes:
        id: 连接 ID，进程内唯一，由 ``RelayServer.connect`` 分配。
        websocket: 底层 WebSocket。
        room_id: 当前所在房间，未加入时为 ``None``。
        role: 当前角色（host / viewer），未加入时为 ``None``。
    """

    def __init__(self, websocket: WebSocket, connection_id: str) -> None:
        self.websocket = websocket
        self.id = connection_id
        self.room_id: str | None = None
        self.role: Role | None = None

    async def send(self, message: ServerMessageBase) -> bool:
        """尽力发送一条服务端消息。发送失败只记录日志，不向上抛出。

        Returns:
            是否发送成功。
        """
        try:
            await self.websocket.send_text(message.to_wire())
        except Exception as e:
            logger.warning("消息发送失败 | conn=%s | type=%s | %s", self.id, message.type, e)
            return False
        return True

    def reset(self) -> None:
        """清除房间与角色信息（离开房间或被驱逐时调用）。"""
        self.room_id = None
        self.role = None

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, room={self.room_id!r}, role={self.role!r})"
