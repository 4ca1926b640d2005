"""
app.schemas.signaling
~~~~~~~~~~~~~~~~~~~~~

信令协议的 Pydantic 消息模型。

每条 WebSocket 文本帧承载一个 JSON 对象，以 ``type`` 字段区分消息类型:

客户端 → 服务端:
  - ``{"type": "join", "room", "role"}``
  - ``{"type": "offer" | "answer" | "candidate", "room", "target"?, "payload"}``

服务端 → 客户端:
  - ``{"type": "joined", "id"}``
  - ``{"type": "viewer-joined" | "viewer-left", "viewerId"}``
  - ``{"type": "host-left"}``
  - ``{"type": "offer" | "answer" | "candidate", "from", "payload"}``

``payload`` 为 SDP 描述或 ICE 候选，中继服务器原样转发，不做任何解析。
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Role = Literal["host", "viewer"]
RelayType = Literal["offer", "answer", "candidate"]


# ── 客户端 → 服务端 ───────────────────────────────────────────────────

class JoinMessage(BaseModel):
    """加入房间请求。"""

    type: Literal["join"] = "join"
    room: str = Field(..., min_length=1, description="房间 ID")
    role: Role = Field(..., description="加入角色：host / viewer")


class OfferMessage(BaseModel):
    """主播发给指定观众的 SDP offer。"""

    type: Literal["offer"] = "offer"
    room: str = Field(..., min_length=1)
    target: str = Field(..., description="目标观众的连接 ID")
    payload: Any = None


class AnswerMessage(BaseModel):
    """观众回给主播的 SDP answer。``target`` 可带可不带，路由时忽略。"""

    type: Literal["answer"] = "answer"
    room: str = Field(..., min_length=1)
    target: str | None = None
    payload: Any = None


class CandidateMessage(BaseModel):
    """ICE 候选。省略 ``target`` 时由服务端按发送者角色推断去向。"""

    type: Literal["candidate"] = "candidate"
    room: str = Field(..., min_length=1)
    target: str | None = None
    payload: Any = None


ClientMessage = Annotated[
    Union[JoinMessage, OfferMessage, AnswerMessage, CandidateMessage],
    Field(discriminator="type"),
]

client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


# ── 服务端 → 客户端 ───────────────────────────────────────────────────

class ServerMessageBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> str:
        """序列化为线上 JSON 文本（使用 camelCase 别名）。"""
        return self.model_dump_json(by_alias=True)


class JoinedMessage(ServerMessageBase):
    """加入成功回执，携带服务端分配的连接 ID。"""

    type: Literal["joined"] = "joined"
    id: str


class ViewerJoinedMessage(ServerMessageBase):
    """通知主播：有观众加入。"""

    type: Literal["viewer-joined"] = "viewer-joined"
    viewer_id: str = Field(..., alias="viewerId")


class ViewerLeftMessage(ServerMessageBase):
    """通知主播：有观众离开。"""

    type: Literal["viewer-left"] = "viewer-left"
    viewer_id: str = Field(..., alias="viewerId")


class HostLeftMessage(ServerMessageBase):
    """通知观众：主播已离开，房间已销毁。"""

    type: Literal["host-left"] = "host-left"


class RelayedMessage(ServerMessageBase):
    """转发后的 offer / answer / candidate，``from`` 为发送者连接 ID。"""

    type: RelayType
    sender: str = Field(..., alias="from")
    payload: Any = None


ServerMessage = Annotated[
    Union[
        JoinedMessage,
        ViewerJoinedMessage,
        ViewerLeftMessage,
        HostLeftMessage,
        RelayedMessage,
    ],
    Field(discriminator="type"),
]

server_message_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)
