"""
app.client.params
~~~~~~~~~~~~~~~~~

会话入口参数 —— 从页面 / 分享链接 URL 中解析房间号与信令地址。

- ``?room=<id>``                       观众入口：加入指定房间
- ``?signaling=<url>`` / ``?signalingUrl=<url>``  覆盖默认信令地址

参数只在会话启动时读取一次。
"""
from __future__ import annotations

import re
import secrets
import string
import time
from dataclasses import dataclass
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

from app.core.config import settings

_WS_SCHEME = re.compile(r"^wss?://", re.IGNORECASE)
_BASE36: str = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_room_id() -> str:
    """生成形如 ``r-k3j9x0a-lq2w8e1b`` 的临时房间号（随机段 + 毫秒时间戳）。"""
    random_part = "".join(secrets.choice(_BASE36) for _ in range(7))
    return f"r-{random_part}-{_to_base36(int(time.time() * 1000))}"


def normalize_signaling_url(value: str, page_scheme: str = "http") -> str:
    """补全信令地址的协议头。

    已带 ``ws://`` / ``wss://`` 的原样返回；否则 https 页面补 ``wss://``，其余补 ``ws://``。
    """
    if _WS_SCHEME.match(value):
        return value
    prefix = "wss://" if page_scheme == "https" else "ws://"
    return prefix + value


def default_signaling_url(page_url: str | None, port: int | None = None) -> str:
    """未显式指定时的默认信令地址：与页面同主机、信令端口。"""
    port = port or settings.PORT
    if not page_url:
        return f"ws://localhost:{port}"
    parts = urlsplit(page_url)
    hostname = parts.hostname or "localhost"
    if hostname in ("localhost", "127.0.0.1"):
        return f"ws://localhost:{port}"
    scheme = "wss" if parts.scheme == "https" else "ws"
    return f"{scheme}://{hostname}:{port}"


def build_share_url(page_url: str, room_id: str) -> str:
    """生成观众分享链接：页面地址 + ``?room=<id>``（丢弃原有查询参数与锚点）。"""
    parts = urlsplit(page_url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode({"room": room_id}), ""))


@dataclass(frozen=True)
class SessionParams:
    """一次会话的入口参数。

    Attributes:
        room_id: URL 中携带的房间号；为 ``None`` 表示主播入口。
        signaling_url: 归一化后的信令 WebSocket 地址。
    """

    room_id: str | None
    signaling_url: str

    @property
    def is_viewer(self) -> bool:
        return self.room_id is not None

    @classmethod
    def from_url(cls, page_url: str | None) -> SessionParams:
        """解析页面 URL 中的 ``room`` 与 ``signaling`` / ``signalingUrl`` 参数。"""
        if not page_url:
            return cls(room_id=None, signaling_url=default_signaling_url(None))

        parts = urlsplit(page_url)
        query = parse_qs(parts.query)
        room = (query.get("room") or [None])[0] or None
        override = (query.get("signaling") or query.get("signalingUrl") or [None])[0]

        if override:
            signaling_url = normalize_signaling_url(override, parts.scheme)
        else:
            signaling_url = default_signaling_url(page_url)
        return cls(room_id=room, signaling_url=signaling_url)
