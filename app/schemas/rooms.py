"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间查询接口的响应模型。
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class RoomInfoData(BaseModel):
    """房间摘要信息。"""

    room_id: str = Field(..., description="房间唯一标识")
    has_host: bool = Field(..., description="当前是否有主播在线")
    host_id: str | None = Field(default=None, description="主播连接 ID")
    viewer_count: int = Field(..., description="当前在线观众数")
