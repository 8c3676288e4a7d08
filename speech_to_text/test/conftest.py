# -*- coding: UTF-8 -*-
"""
Shared fixtures: a mocked HTTP transport and an in-memory recognition socket.
"""
import json
import asyncio

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from speech_to_text import SpeechToTextV1

SERVICE_URL = "http://stt.example.com"

SERVICE_RESPONSE = {
    "result": [
        {
            "alternative": [{"transcript": "one two three"}],
            "final": True,
        }
    ],
    "result_index": 0,
}


class RecordingHandler:
    """MockTransport handler remembering every request it served"""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


class FakeRecognizeSocket:
    """In-memory stand-in for a websockets client connection

    Replies like the recognition service: `listening` after a start frame,
    the scripted results plus `listening` after a stop frame.
    """

    def __init__(self, results: Optional[List[Dict[str, Any]]] = None, ack_start: bool = True):
        self.results = results if results is not None else [SERVICE_RESPONSE]
        self.ack_start = ack_start
        self.sent: List[Any] = []
        self.subprotocol = None
        self.close_code: Optional[int] = None
        self.close_reason = ""
        self._incoming: asyncio.Queue = asyncio.Queue()

    @property
    def control_frames(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent if isinstance(frame, str)]

    @property
    def audio(self) -> bytes:
        return b"".join(frame for frame in self.sent if isinstance(frame, bytes))

    def push(self, item: Any) -> None:
        """Queue a server frame (dict -> JSON text), an exception, or None for a clean close"""
        if isinstance(item, dict):
            item = json.dumps(item)
        self._incoming.put_nowait(item)

    async def send(self, data: Any) -> None:
        self.sent.append(data)
        if not isinstance(data, str):
            return
        message = json.loads(data)
        if message.get("action") == "start" and self.ack_start:
            self.push({"state": "listening"})
        elif message.get("action") == "stop":
            for result in self.results:
                self.push(result)
            self.push({"state": "listening"})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
            self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            if self.close_code is None:
                self.close_code = 1000
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    """ws_connect replacement recording the handshake arguments"""

    def __init__(self, socket: Optional[FakeRecognizeSocket] = None, error: Optional[BaseException] = None):
        self.socket = socket or FakeRecognizeSocket()
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, url: str, **kwargs) -> FakeRecognizeSocket:
        self.calls.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.socket


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def stt(handler, connector) -> SpeechToTextV1:
    return SpeechToTextV1(
        url=SERVICE_URL,
        username="batman",
        password="bruce-wayne",
        transport=httpx.MockTransport(handler),
        ws_connect=connector,
    )
