# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：errors.py
@Date    ：2025/07/02 11:03
"""
from enum import Enum
from typing import Iterable, Optional

ECONNRESET = "ECONNRESET"
ECONNREFUSED = "ECONNREFUSED"
ETIMEDOUT = "ETIMEDOUT"
EREJECTED = "EREJECTED"
EPROTO = "EPROTO"
ECLOSED = "ECLOSED"
EMISSINGPARAM = "EMISSINGPARAM"


class CloseCode(Enum):
    """WebSocket close codes with descriptions."""
    NORMAL_CLOSE = (1000, "Normal closure; the connection successfully completed its purpose.")
    GOING_AWAY = (1001, "The endpoint is going away, such as server shutdown or browser navigation.")
    PROTOCOL_ERROR = (1002, "A protocol error occurred.")
    UNSUPPORTED_DATA = (1003, "Unsupported data type received (e.g., binary data when only text is supported).")
    ABNORMAL_CLOSURE = (1006, "The connection was closed abnormally, without a close frame.")
    INVALID_PAYLOAD = (1007, "Invalid payload data (e.g., non-UTF-8 text in a text frame).")
    POLICY_VIOLATION = (1008, "A policy violation occurred.")
    MESSAGE_TOO_BIG = (1009, "Message too large (exceeds the maximum allowed size).")
    INTERNAL_ERROR = (1011, "An internal server error occurred.")
    SERVICE_REJECTED = (4000, "Rejected by the service (application close codes 4000-4999).")

    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason

    @classmethod
    def from_code(cls, code: int):
        """Find a close code by its numeric value."""
        for item in cls:
            if item.code == code:
                return item
        raise ValueError(f"Unknown close code: {code}")

    @classmethod
    def rejects(cls, code: int) -> bool:
        """Policy violation or any application-range close code"""
        return code == cls.POLICY_VIOLATION.code or code // 1000 == cls.SERVICE_REJECTED.code // 1000

    def __str__(self):
        return f"[{self.code}] {self.reason}"


class SpeechToTextError(Exception):
    """Base class of every error this client reports"""
    code: str = ""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code

    @property
    def errno(self) -> str:
        return self.code


class MissingParameterError(SpeechToTextError, ValueError):
    """Caller-supplied parameters are incomplete, raised before any I/O"""
    code = EMISSINGPARAM

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required parameters: {', '.join(self.missing)}")


class TransportError(SpeechToTextError):
    """Connection reset, refusal, timeout or rejection by the service

    `code` tells a connection-level failure (ECONNRESET, ECONNREFUSED,
    ETIMEDOUT) apart from an application-level rejection (EREJECTED).
    """

    def __init__(self,
                 message: str,
                 code: str = ECONNRESET,
                 status_code: Optional[int] = None,
                 close_code: Optional[int] = None):
        super().__init__(message, code)
        self.status_code = status_code
        self.close_code = close_code

    @property
    def is_connection_reset(self) -> bool:
        return self.code == ECONNRESET

    @property
    def is_rejection(self) -> bool:
        return self.code == EREJECTED

    @classmethod
    def from_close(cls, close_code: Optional[int], reason: str = "") -> "TransportError":
        """Map a websocket close code onto the error class callers branch on"""
        if close_code is None or close_code == CloseCode.ABNORMAL_CLOSURE.code:
            return cls(reason or str(CloseCode.ABNORMAL_CLOSURE), ECONNRESET, close_code=close_code)

        if CloseCode.rejects(close_code):
            return cls(reason or f"[{close_code}] Rejected by the service", EREJECTED, close_code=close_code)

        try:
            description = str(CloseCode.from_code(close_code))
        except ValueError:
            description = f"[{close_code}] Connection closed"
        return cls(reason or description, ECONNRESET, close_code=close_code)


class ProtocolError(SpeechToTextError):
    """Malformed or unexpected frame from the service"""
    code = EPROTO


class ChannelClosedError(SpeechToTextError):
    """Write attempted on a recognize stream that is closed or errored"""
    code = ECLOSED

    def __init__(self, message: str = "Recognize stream channel closed"):
        super().__init__(message)


class InvalidParameterError(SpeechToTextError, ValueError):
    """Caller-supplied parameters are present but malformed, raised before any I/O"""
    code = "EINVALIDPARAM"
