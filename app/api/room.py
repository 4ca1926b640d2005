"""
app.api.room
~~~~~~~~~~~~

房间查询 REST 接口（只读，用于运维观察）。

路由前缀 ``/api``。

端点:
  - ``GET /rooms``            → 获取活跃房间列表
  - ``GET /rooms/{room_id}``  → 获取房间详情
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_relay
from app.core.rate_limit import limiter
from app.schemas.api_response import ApiResponse
from app.schemas.rooms import RoomInfoData
from app.services.relay import RelayServer

router: APIRouter = APIRouter()


@router.get("/rooms", summary="获取活跃房间列表", response_model=ApiResponse[list[RoomInfoData]])
@limiter.limit("10/second")
async def list_rooms(request: Request, relay: RelayServer = Depends(get_relay)):
    """返回所有活跃信令房间的摘要。"""
    return ApiResponse.ok(data=relay.list_rooms())


@router.get("/rooms/{room_id}", summary="获取房间详情", response_model=ApiResponse[RoomInfoData])
@limiter.limit("5/second")
async def room_info(request: Request, room_id: str, relay: RelayServer = Depends(get_relay)):
    """返回指定房间的主播状态与观众数。

    Args:
        room_id: 房间唯一标识。
    """
    room = relay.get_room(room_id)
    if room is None:
        return JSONResponse(
            status_code=404,
            content=ApiResponse.fail(msg=f"房间不存在: {room_id}", code=404).model_dump(),
        )
    return ApiResponse.ok(data=room.info())
