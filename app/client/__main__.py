"""
app.client.__main__
~~~~~~~~~~~~~~~~~~~

命令行入口::

    python -m app.client viewer "http://localhost:8080/?room=r-abc1234-xyz"
    python -m app.client host --display :0.0 --page-url http://localhost:8080/ \
        --recognizer "speech-recognizer --lang en-US"

观众模式打印收到的字幕；主播模式通过 ffmpeg 抓取 X11 屏幕并共享；
给出 ``--recognizer`` 且配置了 ``SPEECH_API_KEY`` 时，识别进程的输出作为字幕转发。
"""
from __future__ import annotations

import asyncio
import shlex

import click
from aiortc.contrib.media import MediaBlackhole, MediaPlayer

from app.client.captions import CaptionBridge
from app.client.host import CaptureError, HostSession
from app.client.params import SessionParams, build_share_url, generate_room_id
from app.client.recognition import RecognitionFeed
from app.client.signaling import SignalingClient
from app.client.viewer import ViewerSession
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.schemas.captions import CaptionEvent

logger = get_logger(__name__)


def _print_caption(event: CaptionEvent) -> None:
    if event.is_final:
        suffix = f" ({round(event.confidence * 100)}%)" if event.confidence else ""
        click.echo(click.style(event.text + suffix, fg="green"))
    else:
        click.echo(click.style(f"… {event.text}", fg="bright_black"))


async def _run_viewer(page_url: str) -> None:
    params = SessionParams.from_url(page_url)
    if params.room_id is None:
        raise click.UsageError("观众链接中缺少 room 参数")

    sink = MediaBlackhole()
    signaling = SignalingClient(params.signaling_url)
    session = ViewerSession(signaling, on_caption=_print_caption, on_track=sink.addTrack)

    await signaling.connect()
    await sink.start()
    try:
        await session.start(params.room_id)
        await signaling.run(session.handle)
    finally:
        await session.close()
        await sink.stop()
        await signaling.close()


async def _run_host(page_url: str, display: str, video_format: str, recognizer: str | None) -> None:
    params = SessionParams.from_url(page_url)
    room_id = params.room_id or generate_room_id()

    try:
        player = MediaPlayer(display, format=video_format)
    except Exception as e:
        raise CaptureError(f"屏幕采集失败: {e}") from e
    tracks = [t for t in (player.video, player.audio) if t is not None]

    bridge: CaptionBridge | None = None
    feed: RecognitionFeed | None = None
    if not settings.captions_enabled:
        logger.warning("未配置 SPEECH_API_KEY，字幕功能已停用")
    elif not recognizer:
        logger.warning("未指定 --recognizer，字幕功能已停用")
    else:
        bridge = CaptionBridge()
        feed = RecognitionFeed(shlex.split(recognizer), bridge, on_status=logger.info)

    signaling = SignalingClient(params.signaling_url)
    session = HostSession(signaling, bridge=bridge)

    await signaling.connect()
    try:
        await session.start(room_id, tracks)
        if feed is not None:
            await feed.start()
        click.echo(f"分享链接: {build_share_url(page_url, room_id)}")
        await signaling.run(session.handle)
    finally:
        if feed is not None:
            await feed.stop()
        await session.stop()
        await signaling.close()


@click.group()
@click.option("--log-level", default=None, help="覆盖日志级别")
def cli(log_level: str | None) -> None:
    """屏幕共享会话客户端。"""
    setup_logging(log_level)


@cli.command()
@click.argument("page_url")
def viewer(page_url: str) -> None:
    """通过分享链接加入房间，打印收到的字幕。"""
    try:
        asyncio.run(_run_viewer(page_url))
    except KeyboardInterrupt:
        pass


@cli.command()
@click.option(
    "--page-url",
    default=lambda: settings.START_URL or "http://localhost/",
    help="用于生成分享链接的页面地址（可带 room / signaling 参数），默认读取 START_URL",
)
@click.option("--display", default=":0.0", show_default=True, help="ffmpeg 输入设备")
@click.option("--format", "video_format", default="x11grab", show_default=True, help="ffmpeg 输入格式")
@click.option("--recognizer", default=None, help="语音识别进程命令行，按行输出 JSON 识别事件")
def host(page_url: str, display: str, video_format: str, recognizer: str | None) -> None:
    """抓取屏幕并作为主播共享。"""
    try:
        asyncio.run(_run_host(page_url, display, video_format, recognizer))
    except CaptureError as e:
        click.echo(click.style(str(e), fg="red"), err=True)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
