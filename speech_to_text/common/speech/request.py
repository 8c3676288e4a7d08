# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：request.py
@Date    ：2025/07/03 10:25
"""
import asyncio
import inspect
import traceback

from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

import httpx

from speech_to_text.common.log import log
from speech_to_text.common.http_client import HTTPClient
from speech_to_text.common.exception.errors import ChannelClosedError, ProtocolError, SpeechToTextError
from speech_to_text.common.speech.models import Session

Callback = Callable[[Optional[Exception], Any], Union[None, Awaitable[None]]]
Parser = Callable[[httpx.Response], Any]

SESSION_COOKIE = "SESSIONID"


def parse_json(response: httpx.Response) -> Any:
    """解析 JSON 响应体，空响应返回 {}"""
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(f"Malformed JSON response from {response.request.url}: {e}") from e


def extract_session_cookie(response: httpx.Response) -> Optional[str]:
    """从 set-cookie 中提取 SESSIONID"""
    for header in response.headers.get_list("set-cookie"):
        for part in header.split(";"):
            name, sep, value = part.strip().partition("=")
            if sep and name == SESSION_COOKIE:
                return value
    return None


def parse_session(response: httpx.Response) -> Session:
    data = parse_json(response)
    if not isinstance(data, dict):
        raise ProtocolError("Session response is not an object")

    cookie = extract_session_cookie(response)
    if cookie:
        data["cookie_session"] = cookie
    try:
        return Session.model_validate(data)
    except ValueError as e:
        raise ProtocolError(f"Malformed session response: {e}") from e


class ServiceRequest(object):
    """一次 HTTP 调用

    构建后即可检查 method / url / headers（尚未发送）；`await` 时发送并返回解析结果。
    提供 callback 时，结果或错误（包括参数校验错误）只通过 callback 交付一次，不会抛出。
    """

    def __init__(self,
                 http_client: HTTPClient,
                 request: Optional[httpx.Request] = None,
                 error: Optional[SpeechToTextError] = None,
                 callback: Optional[Callback] = None,
                 parser: Parser = parse_json,
                 source: Any = None):
        self.http_client = http_client
        self.request = request
        self.error = error
        self.callback = callback
        self.parser = parser
        self.source = source

        self._future: Optional[asyncio.Future] = None

    # -------------------------------------------------------------------------
    # 发送前检查
    # -------------------------------------------------------------------------
    @property
    def method(self) -> Optional[str]:
        return self.request.method if self.request else None

    @property
    def url(self) -> Optional[str]:
        return str(self.request.url) if self.request else None

    @property
    def path(self) -> Optional[str]:
        """Path with the query string, e.g. `/v1/recognize?continuous=true`"""
        return self.request.url.raw_path.decode("ascii") if self.request else None

    @property
    def query(self) -> Optional[str]:
        return self.request.url.query.decode("ascii") if self.request else None

    @property
    def headers(self) -> Optional[httpx.Headers]:
        return self.request.headers if self.request else None

    # -------------------------------------------------------------------------
    # 发送
    # -------------------------------------------------------------------------
    def start(self) -> None:
        """Dispatch on the running loop without waiting for the outcome"""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("没有运行中的事件循环，等待 await 时发送")
            return

        if self._future is None:
            self._future = loop.create_task(self._dispatch())

    async def send(self) -> Any:
        if self._future is None:
            self._future = asyncio.ensure_future(self._dispatch())
        return await self._future

    def __await__(self):
        return self.send().__await__()

    @property
    def done(self) -> bool:
        return self._future is not None and self._future.done()

    async def _dispatch(self) -> Any:
        if self.error is not None:
            return await self._deliver(self.error, None)

        try:
            response = await self.http_client.send(self.request)
            result = self.parser(response)
        except SpeechToTextError as e:
            self.error = e
            return await self._deliver(e, None)

        log.debug(f"请求完成: {self.request.method} {self.request.url}")
        return await self._deliver(None, result)

    async def _deliver(self, error: Optional[SpeechToTextError], result: Any) -> Any:
        if self.callback is None:
            if error is not None:
                raise error
            return result

        try:
            outcome = self.callback(error, result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            log.error(f"回调执行失败: {e} - {traceback.format_exc()}")
        return result


class LiveRecognizeRequest(ServiceRequest):
    """分块上传的识别请求

    创建后立即发送（Transfer-Encoding: chunked），调用方通过 write() 逐块写入音频，
    end() 结束上传；服务端返回完整响应后 callback 触发一次。
    """

    def __init__(self,
                 http_client: HTTPClient,
                 method: str = "POST",
                 url: str = "",
                 headers: Optional[Dict[str, str]] = None,
                 error: Optional[SpeechToTextError] = None,
                 callback: Optional[Callback] = None,
                 parser: Parser = parse_json):
        self._chunks: asyncio.Queue[Optional[bytes]] = asyncio.Queue()
        self._ended = error is not None

        request = None
        if error is None:
            request = http_client.build_request(method, url, headers=headers, content=self._body())
        super().__init__(http_client, request=request, error=error, callback=callback, parser=parser)

    async def _body(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                break
            yield chunk

    async def _dispatch(self) -> Any:
        try:
            return await super()._dispatch()
        finally:
            # 请求已结束（成功或失败），丢弃未上传的音频
            self._ended = True
            while not self._chunks.empty():
                self._chunks.get_nowait()

    def write(self, chunk: Union[bytes, bytearray, memoryview]) -> int:
        """追加音频块（按写入顺序上传）"""
        if self._ended:
            if self.error is not None:
                raise ChannelClosedError(f"Live recognize request failed: {self.error}") from self.error
            raise ChannelClosedError("Live recognize request already ended")
        data = bytes(chunk)
        if data:
            self._chunks.put_nowait(data)
        return len(data)

    def end(self, chunk: Optional[bytes] = None) -> None:
        """结束上传；可附带最后一块音频"""
        if self._ended:
            return
        if chunk:
            self.write(chunk)
        self._ended = True
        self._chunks.put_nowait(None)
