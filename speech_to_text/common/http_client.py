# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：http_client.py
@Date    ：2025/07/02 16:05
"""

import httpx

from typing import Optional, Dict, Any
from httpx import Response

from speech_to_text.core.conf import settings
from speech_to_text.common.log import log
from speech_to_text.common.exception.errors import (
    TransportError,
    ECONNREFUSED,
    ECONNRESET,
    ETIMEDOUT,
    EREJECTED,
)

USER_AGENT = "speech-to-text-python/1.0"


class HTTPClient:
    def __init__(
            self, base_url: str = "",
            timeout: Optional[float] = settings.STT_TIMEOUT,
            read: Optional[float] = settings.STT_READ_TIMEOUT,
            write: Optional[float] = settings.STT_WRITE_TIMEOUT,
            headers: Optional[Dict[str, str]] = None,
            auth: Optional[httpx.Auth] = None,
            http2: bool = settings.STT_HTTP2,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.read = read
        self.write = write
        self.headers = headers or {}
        self.auth = auth
        self.http2 = http2

        self._http_client = self._create_http_client(transport)

    def _create_http_client(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
        """识别服务专用HTTP客户端：
        - 连接池
        - 流式上传长超时
        - 不自动重试（会话亲和性下盲目重试不安全）
        """
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=300.0
        )

        if transport is None:
            transport = httpx.AsyncHTTPTransport(
                retries=0,
                http2=self.http2,
                limits=limits,
            )

        return httpx.AsyncClient(
            base_url=self.base_url,
            http2=self.http2,
            timeout=httpx.Timeout(
                timeout=self.timeout,  # 全局超时兜底
                read=self.read,  # 读取超时
                write=self.write,  # 发送超时
                pool=10.0  # 连接池超时
            ),
            limits=limits,
            transport=transport,
            auth=self.auth,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json", **self.headers},
            max_redirects=5,
            follow_redirects=True,
        )

    def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        """构建请求但不发送，便于在发送前检查 method / url / headers"""
        request = self._http_client.build_request(method, url, **kwargs)
        log.debug(f"构建请求: {request.method} {request.url}")
        return request

    async def send(self, request: httpx.Request, **kwargs) -> Response:
        """发送已构建的请求，失败时转换为 TransportError"""
        try:
            response = await self._http_client.send(request, **kwargs)
            response.raise_for_status()  # 如果响应状态码不是 2xx，会抛出 HTTPStatusError
            return response
        except httpx.HTTPStatusError as e:
            log.error(f"HTTP error: {e}")
            raise TransportError(
                self._error_message(e.response), EREJECTED, status_code=e.response.status_code
            ) from e
        except httpx.ConnectError as e:
            log.error(f"Connect error: {e}")
            raise TransportError(f"Connection refused: {e}", ECONNREFUSED) from e
        except httpx.TimeoutException as e:
            log.error(f"Timeout: {e}")
            raise TransportError(f"Request timed out: {e}", ETIMEDOUT) from e
        except httpx.RequestError as e:
            log.error(f"Request error: {e}")
            raise TransportError(f"Connection reset: {e}", ECONNRESET) from e

    async def close(self):
        """关闭客户端连接"""
        await self._http_client.aclose()

    @staticmethod
    def _error_message(response: Response) -> str:
        """Prefer the service's own error text over the status line"""
        try:
            body: Any = response.json()
        except (ValueError, httpx.ResponseNotRead):
            body = None

        if isinstance(body, dict):
            for key in ("error", "message", "description"):
                if body.get(key):
                    return f"[{response.status_code}] {body[key]}"
        return f"[{response.status_code}] {response.reason_phrase}"
