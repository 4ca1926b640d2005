"""
app.schemas
~~~~~~~~~~~
信令协议、字幕事件与 REST 响应的 Pydantic 模型。
"""
from app.schemas.api_response import ApiResponse
from app.schemas.captions import (
    CaptionEvent,
    RecognitionAlternative,
    RecognitionEvent,
    RecognitionResult,
)
from app.schemas.rooms import RoomInfoData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = [
    "ApiResponse",
    "CaptionEvent",
    "RecognitionAlternative",
    "RecognitionEvent",
    "RecognitionResult",
    "RoomInfoData",
]
