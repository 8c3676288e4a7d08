# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：ws.py
@Date    ：2025/07/03 14:10
"""

import asyncio
import websockets

from typing import Any, Callable, Dict, Optional

from speech_to_text.core.conf import settings
from speech_to_text.common.log import log
from speech_to_text.common.exception.errors import (
    CloseCode,
    ProtocolError,
    TransportError,
    ECONNREFUSED,
    ECONNRESET,
    ETIMEDOUT,
    EREJECTED,
)
from speech_to_text.common.speech.models import ConnectionConfig


def close_info(exc: websockets.ConnectionClosed) -> tuple:
    """(code, reason) of the close frame received, None when the socket dropped"""
    rcvd = getattr(exc, "rcvd", None)
    if rcvd is None:
        return None, ""
    return rcvd.code, rcvd.reason


class AsyncWebSocketClient(object):
    """WebSocket 客户端

    特性：
    - 连接超时与错误码映射（连接重置 / 拒绝 / 超时 / 鉴权拒绝）
    - 串行发送
    - 暴露连接协商后的配置
    - 不自动重连（会话亲和性下由调用方决定是否重试）
    """

    def __init__(self,
                 url: str,
                 headers: Optional[Dict[str, str]] = None,
                 connect: Optional[Callable[..., Any]] = None,
                 connect_timeout: float = settings.STT_WS_CONNECT_TIMEOUT,
                 max_size: int = settings.STT_WS_MAX_SIZE):
        """
        Args:
            url: WebSocket服务地址 (ws:// or wss://)
            headers: 握手附加请求头（鉴权等）
            connect: 连接工厂，默认 websockets.connect
            connect_timeout: 握手超时时间(秒)
            max_size: 单条消息最大字节数
        """
        self._url = url
        self._headers = headers or {}
        self._ws_connect = connect or websockets.connect
        self._connect_timeout = connect_timeout
        self._max_size = max_size

        self._lock = asyncio.Lock()
        self._conn = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_connected(self) -> bool:
        """兼容多种连接对象的连接状态检查"""
        if self._conn is None:
            return False

        if hasattr(self._conn, 'close_code'):
            return self._conn.close_code is None

        if hasattr(self._conn, 'closed'):
            return not self._conn.closed

        return True

    async def _connect(self):
        """内部方法：建立WebSocket连接"""
        self._conn = await asyncio.wait_for(
            self._ws_connect(
                self._url,
                additional_headers=self._headers,
                max_size=self._max_size,
            ),
            timeout=self._connect_timeout
        )
        log.debug(f"WebSocket连接建立成功: {self._url}")

    async def connect(self) -> ConnectionConfig:
        """建立WebSocket连接

        Returns:
            协商后的连接配置

        Raises:
            TransportError: 连接失败（code 区分重置 / 拒绝 / 超时 / 鉴权拒绝）
            ProtocolError: 握手响应不合法
        """
        if not self.is_connected:
            try:
                await self._connect()

            except asyncio.TimeoutError as e:
                error_msg = f"连接超时({self._connect_timeout}s): {self._url}"
                log.error(error_msg)
                raise TransportError(error_msg, ETIMEDOUT) from e

            except websockets.InvalidURI as e:
                error_msg = f"无效的WebSocket地址: {self._url} ({e})"
                log.error(error_msg)
                raise TransportError(error_msg, ECONNREFUSED) from e

            except websockets.InvalidStatus as e:
                status = e.response.status_code
                error_msg = f"握手被拒绝 [{status}]: {self._url}"
                log.error(error_msg)
                raise TransportError(error_msg, EREJECTED, status_code=status) from e

            except websockets.InvalidHandshake as e:
                error_msg = f"握手失败: {e}"
                log.error(error_msg)
                raise ProtocolError(error_msg) from e

            except ConnectionRefusedError as e:
                error_msg = f"连接被拒绝: {self._url} ({e})"
                log.error(error_msg)
                raise TransportError(error_msg, ECONNREFUSED) from e

            except (websockets.WebSocketException, OSError) as e:
                error_msg = f"WebSocket连接错误: {e}"
                log.error(error_msg)
                raise TransportError(error_msg, ECONNRESET) from e

        return self.connection_config()

    def connection_config(self) -> ConnectionConfig:
        """连接协商后的配置（子协议、扩展、消息大小、分片策略）"""
        protocol = getattr(self._conn, "protocol", None)
        extensions = getattr(protocol, "extensions", None) or []
        return ConnectionConfig(
            url=self._url,
            subprotocol=getattr(self._conn, "subprotocol", None),
            extensions=[getattr(ext, "name", str(ext)) for ext in extensions],
            max_size=getattr(protocol, "max_size", self._max_size),
            # 每条消息整帧发送，不做出站分片
            fragment_outgoing_messages=False,
        )

    async def _send(self, data: Any) -> None:
        """串行发送（文本帧或二进制帧）"""
        if self._conn is None:
            raise TransportError("WebSocket未连接", ECONNRESET)

        async with self._lock:
            try:
                await self._conn.send(data)
            except websockets.ConnectionClosed as e:
                code, reason = close_info(e)
                log.error(f"连接已关闭 (code: {code})")
                raise TransportError.from_close(code, reason) from e
            except OSError as e:
                log.error(f"发送数据失败: {type(e).__name__}: {e}")
                raise TransportError(f"发送数据失败: {e}", ECONNRESET) from e

    async def close(self, code: int = CloseCode.NORMAL_CLOSE.code, reason: str = "") -> None:
        """关闭WebSocket连接

        Args:
            code: WebSocket关闭状态码 (默认1000-正常关闭)
            reason: 关闭原因描述
        """
        if self._conn is None:
            log.debug("连接已关闭，无需重复操作")
            return

        try:
            await self._conn.close(code=code, reason=reason)
            log.debug(f"WebSocket连接已关闭 | 状态码: {code} | 原因: {reason or '无'}")
        except websockets.ConnectionClosed:
            log.debug("连接已关闭，无需再次关闭")
        except OSError as e:
            log.warning(f"关闭连接时发生错误: {type(e).__name__}: {e}")
        finally:
            self._conn = None
