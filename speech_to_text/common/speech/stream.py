# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：stream.py
@Date    ：2025/07/04 09:52
"""
import json
import asyncio
import inspect
import traceback

from collections import defaultdict, deque
from contextlib import suppress
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

import websockets

from speech_to_text.common.log import log
from speech_to_text.common.exception.errors import (
    ChannelClosedError,
    CloseCode,
    ProtocolError,
    SpeechToTextError,
    TransportError,
    ETIMEDOUT,
    EREJECTED,
)
from speech_to_text.common.speech.audio import iter_audio
from speech_to_text.common.speech.models import (
    CloseEvent,
    ConnectEvent,
    DataEvent,
    ErrorEvent,
    ListeningEvent,
    ResultsEvent,
    StreamEvent,
    StreamEventType,
    TranscriptResult,
)
from speech_to_text.common.speech.params import build_start_message, parse_options, validate
from speech_to_text.common.speech.ws import AsyncWebSocketClient, close_info

Listener = Callable[[Any], Union[None, Awaitable[None]]]

STOP_MESSAGE = json.dumps({"action": "stop"})


@runtime_checkable
class DuplexStream(Protocol):
    """Bytes in through write()/end(), events out through on()/events()"""

    async def write(self, chunk: bytes) -> int: ...

    async def end(self) -> None: ...

    def on(self, event: str, listener: Listener) -> Any: ...

    def events(self) -> AsyncIterator[Any]: ...


def is_stream(obj: Any) -> bool:
    """是否为流对象（鸭子类型判断）"""
    return isinstance(obj, DuplexStream)


class StreamState(str, Enum):
    IDLE = "idle"  # constructed, no connection yet
    CONNECTING = "connecting"  # handshake + start frame sent
    OPEN = "open"  # start acknowledged, audio flowing
    CLOSING = "closing"  # end of audio signalled, waiting for completion
    CLOSED = "closed"
    ERRORED = "errored"


TERMINAL_STATES = (StreamState.CLOSED, StreamState.ERRORED)


class _Control(Enum):
    START = "start"
    STOP = "stop"
    CLOSE = "close"


class RecognizeStream(AsyncWebSocketClient):
    """全双工流式识别通道

    职责：
    - 写入端：按写入顺序将音频作为二进制帧转发
    - 事件端：将服务端 JSON 帧解析为 connect / listening / results / data / error / close 事件
    - 维护连接状态机（IDLE -> CONNECTING -> OPEN -> CLOSING -> CLOSED，任意阶段可进入 ERRORED）

    参数在 open()（或第一次 write()）时才校验，校验失败与传输错误一样以 error 事件交付。
    每个事件按到达顺序对每个监听者交付一次；events() 迭代器同样按序交付一次。
    """

    def __init__(self,
                 url: str,
                 options: Any = None,
                 headers: Optional[Dict[str, str]] = None,
                 connect: Optional[Callable[..., Any]] = None,
                 **kwargs):
        super().__init__(url=url, headers=headers, connect=connect, **kwargs)
        self.options: Dict[str, Any] = dict(options or {})
        self.state: StreamState = StreamState.IDLE
        self.error: Optional[SpeechToTextError] = None

        self._pending: asyncio.Queue[Union[bytes, _Control]] = asyncio.Queue()
        self._events: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue()
        self._listeners: Dict[StreamEventType, List[Listener]] = defaultdict(list)

        self._listening = asyncio.Event()  # start acknowledged
        self._acks: Deque[_Control] = deque()  # frames awaiting a listening ack, in wire order
        self._stops_pending = 0
        self._stopped = asyncio.Event()  # every stop acknowledged
        self._stopped.set()
        self._segment_active = False
        self._ending = False

        self._open_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._recv_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

        self._on_message: Dict[str, Callable] = self.to_dict()

    def to_dict(self) -> Dict[str, Callable]:
        return {
            "error": self._on_error,
            "state": self._on_state,
            "results": self._on_results,
            "result": self._on_results,
            "warnings": self._on_warnings,
        }

    # -------------------------------------------------------------------------
    # 事件订阅
    # -------------------------------------------------------------------------
    def on(self, event: Union[str, StreamEventType], listener: Listener) -> "RecognizeStream":
        """注册监听者

        监听者收到的参数：
            connect -> ConnectionConfig
            listening -> None
            results -> TranscriptResult
            data -> str (final transcript)
            error -> SpeechToTextError
            close -> CloseEvent
        """
        self._listeners[StreamEventType(event)].append(listener)
        return self

    def remove_listener(self, event: Union[str, StreamEventType], listener: Listener) -> None:
        with suppress(ValueError):
            self._listeners[StreamEventType(event)].remove(listener)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """按到达顺序迭代所有事件，通道关闭后结束"""
        while True:
            event = await self._events.get()
            if event is None:
                break
            yield event

    # -------------------------------------------------------------------------
    # 写入端
    # -------------------------------------------------------------------------
    async def open(self) -> None:
        """校验参数、握手并发送 start 帧（幂等）"""
        if self._open_task is None:
            self._open_task = asyncio.ensure_future(self._open())
        await asyncio.shield(self._open_task)

    async def write(self, chunk: Union[bytes, bytearray, memoryview]) -> int:
        """写入一块音频（首次写入触发连接）

        触发连接的那次写入若连接失败，错误只通过 error 事件交付，本次返回 0；
        之后的写入抛出 ChannelClosedError。

        Raises:
            ValueError: 空数据块
            ChannelClosedError: 通道已结束、关闭或出错
        """
        if self._ending or self.state in TERMINAL_STATES:
            raise ChannelClosedError() from self.error

        data = bytes(chunk)
        if not data:
            raise ValueError("不能写入空数据块")

        if self.state is StreamState.OPEN and not self._segment_active:
            self._begin_segment()
        self._pending.put_nowait(data)

        if self.state is StreamState.IDLE or self.state is StreamState.CONNECTING:
            await self.open()
            if self.state is StreamState.ERRORED:
                return 0
        return len(data)

    async def pipe(self, source: Any) -> None:
        """从音频源读取并按序写入，读完后 end()"""
        try:
            async for chunk in iter_audio(source):
                await self.write(chunk)
        except ChannelClosedError:
            log.debug(f"通道已结束，停止读取音频源 (state: {self.state.value})")
            return
        await self.end()

    async def stop(self) -> None:
        """结束当前音频段但保持连接，之后的 write() 会开启新的识别段"""
        if self.state in TERMINAL_STATES or not self._segment_active:
            return
        self._segment_active = False
        self._stops_pending += 1
        self._stopped.clear()
        self._pending.put_nowait(_Control.STOP)

    async def end(self) -> None:
        """音频结束：发送完已写入的音频和 stop 帧，等待服务端完成后关闭"""
        if self.state in TERMINAL_STATES or self._ending:
            return
        self._ending = True

        if self.state is StreamState.IDLE:
            await self._finish()
            return

        await self.open()
        if self.state in TERMINAL_STATES:
            return

        await self.stop()
        self.state = StreamState.CLOSING
        await self._stopped.wait()
        if self.state not in TERMINAL_STATES:
            await self._finish()

    async def close(self, code: int = CloseCode.NORMAL_CLOSE.code, reason: str = "") -> None:
        """关闭通道：已排队的音频先发送，然后关闭（不等待服务端结果）"""
        if self.state in TERMINAL_STATES:
            return
        self._ending = True

        if self._open_task is not None and not self._open_task.done():
            with suppress(Exception):
                await asyncio.shield(self._open_task)
        if self.state in TERMINAL_STATES:
            return

        self.state = StreamState.CLOSING
        await self._finish(code, reason)

    # -------------------------------------------------------------------------
    # 连接与发送
    # -------------------------------------------------------------------------
    async def _open(self) -> None:
        self.state = StreamState.CONNECTING
        try:
            validate("recognize_stream", self.options)
            start_message = build_start_message(parse_options(self.options))
            config = await self.connect()
        except SpeechToTextError as e:
            await self._fail(e)
            return

        await self._emit(ConnectEvent(config=config), config)

        self._recv_task = asyncio.ensure_future(self._receive_loop())
        try:
            self._acks.append(_Control.START)
            await self._send(json.dumps(start_message))
            self._segment_active = True
            log.debug(f"start 帧已发送: {start_message}")
            await asyncio.wait_for(self._listening.wait(), timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            await self._fail(TransportError(f"等待 listening 超时({self._connect_timeout}s)", ETIMEDOUT))
            return
        except SpeechToTextError as e:
            await self._fail(e)
            return

        if self.state is StreamState.CONNECTING:
            self.state = StreamState.OPEN
            self._send_task = asyncio.ensure_future(self._send_loop())

    def _begin_segment(self) -> None:
        self._segment_active = True
        self._pending.put_nowait(_Control.START)

    async def _send_loop(self) -> None:
        """按写入顺序发送音频与控制帧"""
        while True:
            item = await self._pending.get()
            try:
                if item is _Control.CLOSE:
                    break
                if item is _Control.STOP:
                    self._acks.append(_Control.STOP)
                    await self._send(STOP_MESSAGE)
                    log.debug("stop 帧已发送")
                elif item is _Control.START:
                    self._acks.append(_Control.START)
                    await self._send(json.dumps(build_start_message(parse_options(self.options))))
                    log.debug("start 帧已发送（新识别段）")
                else:
                    await self._send(item)
            except SpeechToTextError as e:
                await self._fail(e)
                break
            finally:
                self._pending.task_done()

    async def _finish(self, code: int = CloseCode.NORMAL_CLOSE.code, reason: str = "") -> None:
        """发送剩余数据后关闭连接，进入 CLOSED"""
        if self._send_task is not None and not self._send_task.done():
            self._pending.put_nowait(_Control.CLOSE)
            with suppress(asyncio.CancelledError):
                await self._send_task

        if self.state in TERMINAL_STATES:
            return
        self.state = StreamState.CLOSED
        self._listening.set()
        self._stopped.set()

        await self._cancel_receive()
        await super().close(code=code, reason=reason)
        await self._emit(CloseEvent(code=code, reason=reason))
        self._events.put_nowait(None)
        log.debug(f"识别通道已关闭: {self._url}")

    async def _fail(self, error: SpeechToTextError) -> None:
        """进入 ERRORED：发出 error 事件，释放等待者，关闭连接"""
        if self.state in TERMINAL_STATES:
            return
        self.state = StreamState.ERRORED
        self.error = error
        log.error(f"识别通道错误 [{error.code}]: {error}")

        self._listening.set()
        self._stopped.set()

        current = asyncio.current_task()
        if self._send_task is not None and self._send_task is not current and not self._send_task.done():
            self._send_task.cancel()
        await self._cancel_receive()

        close_code = getattr(error, "close_code", None)
        await super().close()

        await self._emit(ErrorEvent(error=error), error)
        await self._emit(CloseEvent(code=close_code, reason=str(error)))
        self._events.put_nowait(None)

    async def _cancel_receive(self) -> None:
        current = asyncio.current_task()
        if self._recv_task is None or self._recv_task is current or self._recv_task.done():
            return
        self._recv_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._recv_task

    # -------------------------------------------------------------------------
    # 接收端
    # -------------------------------------------------------------------------
    async def _receive_loop(self) -> None:
        conn = self._conn
        try:
            async for message in conn:
                await self._handle_message(message)
                if self.state in TERMINAL_STATES:
                    return
        except websockets.ConnectionClosed as e:
            code, reason = close_info(e)
            if self.state is StreamState.CLOSING and code == CloseCode.NORMAL_CLOSE.code:
                self._stopped.set()
                return
            await self._fail(TransportError.from_close(code, reason))
            return
        except SpeechToTextError as e:
            await self._fail(e)
            return
        except OSError as e:
            await self._fail(TransportError(f"连接中断: {e}"))
            return

        # 服务端正常关闭
        if self.state in TERMINAL_STATES:
            return
        code = getattr(conn, "close_code", None)
        if code not in (None, CloseCode.NORMAL_CLOSE.code, CloseCode.GOING_AWAY.code):
            await self._fail(TransportError.from_close(code, getattr(conn, "close_reason", "") or ""))
            return
        if self.state is StreamState.CONNECTING:
            await self._fail(TransportError.from_close(code, "服务端在握手确认前关闭连接"))
            return
        self._stopped.set()
        if self.state is StreamState.OPEN:
            self._close_task = asyncio.ensure_future(self._finish(code or CloseCode.NORMAL_CLOSE.code))

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        if isinstance(message, bytes):
            raise ProtocolError(f"Unexpected binary frame ({len(message)} bytes)")

        try:
            data = json.loads(message)
        except ValueError as e:
            raise ProtocolError(f"Malformed frame: {message[:200]}") from e

        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected frame: {message[:200]}")

        for key, handler in self._on_message.items():
            if key in data:
                await handler(data)
                return
        raise ProtocolError(f"Unknown frame: {message[:200]}")

    async def _on_state(self, data: Dict[str, Any]) -> None:
        if data["state"] != "listening":
            log.debug(f"忽略状态帧: {data}")
            return

        acked = self._acks.popleft() if self._acks else None
        if acked is None:
            log.debug("收到未预期的 listening 帧")
        elif acked is _Control.START:
            self._listening.set()
        elif self._stops_pending > 0:
            self._stops_pending -= 1
            if self._stops_pending == 0:
                self._stopped.set()
        await self._emit(ListeningEvent())

    async def _on_results(self, data: Dict[str, Any]) -> None:
        try:
            result = TranscriptResult.from_message(data)
        except ValueError as e:
            raise ProtocolError(f"Malformed results frame: {e}") from e

        await self._emit(ResultsEvent(data=result), result)
        for transcript in result.final_transcripts:
            await self._emit(DataEvent(data=transcript), transcript)

    async def _on_error(self, data: Dict[str, Any]) -> None:
        await self._fail(TransportError(str(data["error"]), EREJECTED))

    @staticmethod
    async def _on_warnings(data: Dict[str, Any]) -> None:
        log.warning(f"服务端警告: {data['warnings']}")

    async def _emit(self, event: StreamEvent, payload: Any = None) -> None:
        """按注册顺序通知监听者，并放入事件队列"""
        self._events.put_nowait(event)
        if payload is None:
            payload = event if event.event_type is StreamEventType.CLOSE else None

        for listener in list(self._listeners.get(event.event_type, ())):
            try:
                outcome = listener(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                log.error(f"监听者执行失败 [{event.event_type.value}]: {e} - {traceback.format_exc()}")
