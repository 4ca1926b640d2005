"""
app.services.room
~~~~~~~~~~~~~~~~~

信令房间领域模型 —— 至多一个主播连接 + 若干观众连接。

房间本身不做任何路由决策，路由规则统一在 ``RelayServer`` 中。
"""
from __future__ import annotations

from app.schemas.rooms import RoomInfoData
from app.services.connection import Connection


class Room:
    """一个信令房间。

    Attributes:
        room_id: 房间唯一标识（不透明字符串）。
        host: 主播连接；后加入的主播会覆盖先前的引用。
        viewers: 观众连接 ID → 观众连接。
    """

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        self.host: Connection | None = None
        self.viewers: dict[str, Connection] = {}

    @property
    def viewer_count(self) -> int:
        """当前在线观众数。"""
        return len(self.viewers)

    def info(self) -> RoomInfoData:
        """返回房间摘要信息。"""
        return RoomInfoData(
            room_id=self.room_id,
            has_host=self.host is not None,
            host_id=self.host.id if self.host else None,
            viewer_count=self.viewer_count,
        )
