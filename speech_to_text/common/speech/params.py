# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：params.py
@Date    ：2025/07/02 15:20
"""
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from speech_to_text.common.exception.errors import InvalidParameterError, MissingParameterError
from speech_to_text.common.speech.models import RecognitionOptions

# 各操作必填参数
REQUIRED_PARAMETERS: Dict[str, Tuple[str, ...]] = {
    "create_session": (),
    "delete_session": ("session_id",),
    "get_models": (),
    "get_model": ("model_id",),
    "get_recognize_status": ("session_id",),
    "observe_result": ("session_id",),
    "recognize": ("audio", "content_type"),
    "recognize_live": ("session_id", "cookie_session", "content_type"),
    "recognize_stream": ("content_type",),
}

# Query string fields, in serialization order
QUERY_FIELDS: Tuple[str, ...] = (
    "model",
    "continuous",
    "inactivity_timeout",
    "interim_results",
    "keywords",
    "keywords_threshold",
    "max_alternatives",
    "timestamps",
    "word_alternatives_threshold",
    "word_confidence",
    "profanity_filter",
    "smart_formatting",
)

# Start frame fields; `model` travels in the socket URL instead
START_FIELDS: Tuple[str, ...] = QUERY_FIELDS[1:]

# Flags the service enables by default, emitted only when switched off
DEFAULT_ON_FLAGS = frozenset({"profanity_filter"})


def to_params(params: Any) -> Dict[str, Any]:
    """Normalize `None`, a mapping or a pydantic model into a plain dict"""
    if params is None:
        return {}
    if isinstance(params, BaseModel):
        return params.model_dump(exclude_none=True)
    if isinstance(params, Mapping):
        return dict(params)
    raise InvalidParameterError(f"Parameters must be a mapping, got {type(params).__name__}")


def validate(operation: str, params: Any) -> Dict[str, Any]:
    """Check the required fields of `operation`

    Raises:
        MissingParameterError: a required field is absent or None
    """
    values = to_params(params)
    missing = [name for name in REQUIRED_PARAMETERS.get(operation, ()) if values.get(name) is None]
    if missing:
        raise MissingParameterError(missing)
    return values


def parse_options(params: Any) -> RecognitionOptions:
    if isinstance(params, RecognitionOptions):
        return params
    try:
        return RecognitionOptions.model_validate(to_params(params))
    except ValidationError as e:
        raise InvalidParameterError(f"Invalid recognition options: {e}") from e


def _format(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _serialized(options: RecognitionOptions, fields: Iterable[str]) -> Iterable[Tuple[str, Any]]:
    """Yield (name, value) pairs that survive the omission rules"""
    for name in fields:
        value = getattr(options, name)
        if value is None:
            continue
        if isinstance(value, bool):
            if name in DEFAULT_ON_FLAGS:
                if value:
                    continue
            elif not value:
                continue
        if isinstance(value, list) and not value:
            continue
        yield name, value


def build_query(params: Any, fields: Iterable[str] = QUERY_FIELDS) -> str:
    """Serialize recognition options into a query string

    - booleans appear as `name=true` only when true
    - sequences are comma-joined and percent-encoded as one value
    - other values are emitted verbatim when present
    """
    options = parse_options(params)
    parts = []
    for name, value in _serialized(options, fields):
        if isinstance(value, list):
            value = ",".join(value)
        parts.append(f"{name}={quote(_format(value), safe='')}")
    return "&".join(parts)


def build_path(base_path: str, params: Any, fields: Iterable[str] = QUERY_FIELDS) -> Tuple[str, str]:
    """Return (path, query); path carries `?query` when the query is not empty"""
    query = build_query(params, fields)
    return (f"{base_path}?{query}" if query else base_path), query


def build_start_message(params: Any, action: str = "start") -> Dict[str, Any]:
    """Control frame opening a recognition segment on the socket

    Same omission rules as the query string, but `keywords` stays a list
    and `content_type` is sent as `content-type`.
    """
    options = parse_options(params)
    message: Dict[str, Any] = {"action": action}
    if options.content_type:
        message["content-type"] = options.content_type
    for name, value in _serialized(options, START_FIELDS):
        message[name] = list(value) if isinstance(value, list) else value
    return message


def session_cookie(cookie_session: Optional[str]) -> Dict[str, str]:
    """`Cookie` header re-attaching the session affinity token"""
    return {"Cookie": f"SESSIONID={cookie_session}"} if cookie_session else {}
