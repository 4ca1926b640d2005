"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

房间查询 REST 接口的限流配置。

信令 WebSocket 不做限流：SDP / ICE 消息本身就是突发的，
丢弃任何一条都可能导致协商失败。
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)
