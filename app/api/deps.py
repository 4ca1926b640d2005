"""
app.api.deps
~~~~~~~~~~~~

FastAPI 依赖项 —— 从 ``app.state`` 取出 lifespan 中创建的共享对象。
"""
from fastapi import Request

from app.services.relay import RelayServer


def get_relay(request: Request) -> RelayServer:
    return request.app.state.relay
