# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：models.py
@Date    ：2025/07/02 14:37
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from speech_to_text.common.exception.errors import SpeechToTextError


class SpeechModel(BaseModel):
    model_config = ConfigDict(
        protected_namespaces=(),
        arbitrary_types_allowed=True,
    )


class Session(SpeechModel):
    """Server-side recognition session

    `cookie_session` carries the SESSIONID affinity cookie returned at
    creation; it is set once and the session is never mutated afterwards.
    """
    model_config = ConfigDict(protected_namespaces=(), extra="allow", frozen=True)

    session_id: str
    new_session_uri: Optional[str] = None
    recognize: Optional[str] = None
    observe_result: Optional[str] = None
    cookie_session: Optional[str] = None

    @property
    def recognize_uri(self) -> Optional[str]:
        return self.recognize

    @property
    def observe_result_uri(self) -> Optional[str]:
        return self.observe_result


class RecognitionOptions(SpeechModel):
    """识别参数

    Field order is the serialization order for query strings and for the
    streaming start frame.
    """
    model_config = ConfigDict(protected_namespaces=(), extra="ignore")

    content_type: Optional[str] = None
    model: Optional[str] = None
    continuous: Optional[bool] = None
    inactivity_timeout: Optional[int] = None  # -1 disables the server timer
    interim_results: Optional[bool] = None
    keywords: Optional[List[str]] = None
    keywords_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_alternatives: Optional[int] = Field(default=None, ge=1)
    timestamps: Optional[bool] = None
    word_alternatives_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    word_confidence: Optional[bool] = None
    profanity_filter: Optional[bool] = None  # service default is true
    smart_formatting: Optional[bool] = None

    # Session binding
    session_id: Optional[str] = None
    cookie_session: Optional[str] = None

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [k for k in value.split(",") if k]
        return value


class Alternative(SpeechModel):
    model_config = ConfigDict(protected_namespaces=(), extra="allow")

    transcript: str
    confidence: Optional[float] = None


class SpeechRecognitionResult(SpeechModel):
    model_config = ConfigDict(protected_namespaces=(), extra="allow")

    alternative: List[Alternative] = Field(default_factory=list)
    final: bool = False


class TranscriptResult(SpeechModel):
    """识别结果 `{result: [{alternative: [{transcript}], final}], result_index}`"""
    model_config = ConfigDict(protected_namespaces=(), extra="allow")

    result: List[SpeechRecognitionResult] = Field(default_factory=list)
    result_index: int = 0

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TranscriptResult":
        """Accept both the `results/alternatives` and `result/alternative` spellings"""
        data = dict(message)
        if "results" in data and "result" not in data:
            data["result"] = data.pop("results")

        result = []
        for item in data.get("result") or []:
            item = dict(item)
            if "alternatives" in item and "alternative" not in item:
                item["alternative"] = item.pop("alternatives")
            result.append(item)
        data["result"] = result
        return cls.model_validate(data)

    @property
    def final_transcripts(self) -> List[str]:
        return [r.alternative[0].transcript for r in self.result if r.final and r.alternative]


class ConnectionConfig(SpeechModel):
    """Negotiated configuration of a streaming connection"""
    url: str
    subprotocol: Optional[str] = None
    extensions: List[str] = Field(default_factory=list)
    max_size: Optional[int] = None
    fragment_outgoing_messages: bool = False


class StreamEventType(str, Enum):
    CONNECT = "connect"  # socket handshake finished
    LISTENING = "listening"  # start frame acknowledged
    RESULTS = "results"  # interim / final results
    DATA = "data"  # final transcript text
    ERROR = "error"  # transport or protocol failure
    CLOSE = "close"  # channel closed


class StreamEvent(SpeechModel):
    event_type: StreamEventType


class ConnectEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.CONNECT
    config: ConnectionConfig


class ListeningEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.LISTENING


class ResultsEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.RESULTS
    data: TranscriptResult


class DataEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.DATA
    data: str


class ErrorEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.ERROR
    error: SpeechToTextError

    @property
    def code(self) -> str:
        return self.error.code


class CloseEvent(StreamEvent):
    event_type: StreamEventType = StreamEventType.CLOSE
    code: Optional[int] = None
    reason: str = ""
