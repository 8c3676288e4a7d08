# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：__init__.py
@Date    ：2025/07/04 17:02
"""

from speech_to_text.service.speech_to_text import SpeechToTextV1
from speech_to_text.common.speech.stream import DuplexStream, RecognizeStream, StreamState, is_stream
from speech_to_text.common.speech.request import LiveRecognizeRequest, ServiceRequest
from speech_to_text.common.speech.models import (
    RecognitionOptions,
    Session,
    StreamEventType,
    TranscriptResult,
)
from speech_to_text.common.exception.errors import (
    ChannelClosedError,
    InvalidParameterError,
    MissingParameterError,
    ProtocolError,
    SpeechToTextError,
    TransportError,
)

__version__ = "1.0.0"

__all__ = [
    "SpeechToTextV1",
    "RecognizeStream",
    "DuplexStream",
    "StreamState",
    "is_stream",
    "ServiceRequest",
    "LiveRecognizeRequest",
    "RecognitionOptions",
    "Session",
    "StreamEventType",
    "TranscriptResult",
    "SpeechToTextError",
    "MissingParameterError",
    "InvalidParameterError",
    "TransportError",
    "ProtocolError",
    "ChannelClosedError",
]
