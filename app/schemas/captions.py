"""
app.schemas.captions
~~~~~~~~~~~~~~~~~~~~

字幕相关的数据模型。

- ``CaptionEvent``       —— 字幕 DataChannel 上传输的单条字幕（线上格式）
- ``RecognitionResult``  —— 语音识别能力产出的一次识别结果（含多个候选）
- ``RecognitionEvent``   —— 外部识别进程输出的一行事件（结果 / 错误 / 会话结束）
"""
from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """当前 Unix 时间戳（毫秒）。"""
    return int(time.time() * 1000)


class CaptionEvent(BaseModel):
    """一条字幕事件。

    线上格式为 ``{"text", "confidence", "isFinal", "ts"}``，
    每条 DataChannel 消息恰好一个 JSON 对象。

    Attributes:
        text: 字幕文本（已经过 ``enhance`` 处理）。
        confidence: 识别置信度，取值 [0, 1]。
        is_final: 是否为最终结果；最终结果覆盖同一句话最近的临时结果。
        ts: 发送时间戳（毫秒）。
    """

    model_config = ConfigDict(populate_by_name=True)

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_final: bool = Field(default=False, alias="isFinal")
    ts: int = Field(default_factory=now_ms)

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


class RecognitionAlternative(BaseModel):
    """识别结果的一个候选转写。"""

    transcript: str = ""
    confidence: float = 0.0


class RecognitionResult(BaseModel):
    """语音识别能力的一次回调结果。"""

    alternatives: list[RecognitionAlternative] = Field(default_factory=list)
    is_final: bool = False

    def best(self) -> RecognitionAlternative:
        """返回置信度最高的候选；没有候选时返回空转写。"""
        if not self.alternatives:
            return RecognitionAlternative()
        best = self.alternatives[0]
        for alt in self.alternatives[1:]:
            if alt.confidence > best.confidence:
                best = alt
        return best


class RecognitionEvent(BaseModel):
    """外部识别进程在 stdout 上输出的一行 JSON。

    .. code-block:: json

        {"type": "result", "isFinal": true, "alternatives": [{"transcript": "hi", "confidence": 0.9}]}
        {"type": "error", "error": "network"}
        {"type": "end"}
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["result", "error", "end"] = "result"
    alternatives: list[RecognitionAlternative] = Field(default_factory=list)
    is_final: bool = Field(default=False, alias="isFinal")
    error: str = ""

    def to_result(self) -> RecognitionResult:
        return RecognitionResult(alternatives=self.alternatives, is_final=self.is_final)
