# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：speech_to_text.py
@Date    ：2025/07/04 15:30
"""
import base64

from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit, quote

import httpx

from speech_to_text.core.conf import settings
from speech_to_text.common.log import log
from speech_to_text.common.http_client import HTTPClient
from speech_to_text.common.exception.errors import SpeechToTextError
from speech_to_text.common.speech.audio import audio_content
from speech_to_text.common.speech.params import build_path, session_cookie, validate
from speech_to_text.common.speech.request import (
    Callback,
    LiveRecognizeRequest,
    Parser,
    ServiceRequest,
    parse_json,
    parse_session,
)
from speech_to_text.common.speech.stream import RecognizeStream

Built = Tuple[httpx.Request, Any]


class SpeechToTextV1(object):
    """语音识别服务客户端

    - 会话管理：create_session / delete_session / get_recognize_status / observe_result
    - 模型查询：get_models / get_model
    - 单次识别：recognize
    - 分块上传识别：recognize_live
    - 全双工流式识别：create_recognize_stream
    """

    def __init__(self,
                 url: Optional[str] = None,
                 username: Optional[str] = None,
                 password: Optional[str] = None,
                 token: Optional[str] = None,
                 version: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 ws_connect: Optional[Callable[..., Any]] = None):
        """
        Args:
            url: 服务地址，默认 settings.STT_URL
            username / password: Basic 鉴权凭据，默认取自配置
            token: 流式识别连接的 watson-token，默认 settings.STT_TOKEN
            version: API 版本，默认 v1
            headers: 每个请求附加的请求头
            transport: 自定义 httpx 传输层（测试时注入 MockTransport）
            ws_connect: 自定义 WebSocket 连接工厂，默认 websockets.connect
        """
        self.url = (url or settings.STT_URL).rstrip("/")
        self.version = version or settings.STT_VERSION
        self.username = username or settings.STT_USERNAME
        self.password = password or settings.STT_PASSWORD
        self.token = token or settings.STT_TOKEN
        self.headers = headers or {}
        self.ws_connect = ws_connect

        auth = httpx.BasicAuth(self.username, self.password) if self.username and self.password else None
        self.http_client = HTTPClient(headers=self.headers, auth=auth, transport=transport)

        log.info(f"语音识别客户端初始化完成: {self.url}/{self.version}")

    async def __aenter__(self) -> "SpeechToTextV1":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.http_client.close()

    def _endpoint(self, path: str) -> str:
        return f"{self.url}/{self.version}/{path}"

    @staticmethod
    def _session_path(values: Dict[str, Any], suffix: str = "") -> str:
        path = f"sessions/{quote(str(values['session_id']), safe='')}"
        return f"{path}/{suffix}" if suffix else path

    def _call(self,
              operation: str,
              params: Any,
              callback: Optional[Callback],
              build: Callable[[Dict[str, Any]], Built],
              parser: Parser = parse_json) -> ServiceRequest:
        """校验参数并构建请求；校验失败的请求不会触达网络"""
        try:
            values = validate(operation, params)
            request, source = build(values)
        except SpeechToTextError as e:
            log.debug(f"{operation} 参数错误: {e}")
            req = ServiceRequest(self.http_client, error=e, callback=callback)
        else:
            req = ServiceRequest(self.http_client, request=request, callback=callback, parser=parser, source=source)

        if callback is not None:
            req.start()
        return req

    # -------------------------------------------------------------------------
    # 模型
    # -------------------------------------------------------------------------
    def get_models(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """列出可用模型"""
        return self._call(
            "get_models", params, callback,
            lambda values: (self.http_client.build_request("GET", self._endpoint("models")), None),
        )

    def get_model(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """查询单个模型，需要 model_id"""
        return self._call(
            "get_model", params, callback,
            lambda values: (
                self.http_client.build_request("GET", self._endpoint(f"models/{quote(values['model_id'], safe='')}")),
                None,
            ),
        )

    # -------------------------------------------------------------------------
    # 会话
    # -------------------------------------------------------------------------
    def create_session(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """创建会话；返回的 Session 带有 set-cookie 中的 cookie_session"""
        def build(values: Dict[str, Any]) -> Built:
            path = "sessions"
            if values.get("model"):
                path = f"sessions?model={quote(values['model'], safe='')}"
            return self.http_client.build_request("POST", self._endpoint(path)), None

        return self._call("create_session", params, callback, build, parser=parse_session)

    def delete_session(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """删除会话，需要 session_id"""
        return self._call(
            "delete_session", params, callback,
            lambda values: (
                self.http_client.build_request(
                    "DELETE", self._endpoint(self._session_path(values)),
                    headers=session_cookie(values.get("cookie_session")),
                ),
                None,
            ),
        )

    def get_recognize_status(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """查询会话识别状态，需要 session_id"""
        return self._call(
            "get_recognize_status", params, callback,
            lambda values: (
                self.http_client.build_request(
                    "GET", self._endpoint(self._session_path(values, "recognize")),
                    headers=session_cookie(values.get("cookie_session")),
                ),
                None,
            ),
        )

    def observe_result(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """长轮询会话结果，需要 session_id；interim_results 为 true 时才带查询参数"""
        def build(values: Dict[str, Any]) -> Built:
            path, _ = build_path(
                self._session_path(values, "observe_result"),
                {"interim_results": values.get("interim_results")},
                fields=("interim_results",),
            )
            request = self.http_client.build_request(
                "GET", self._endpoint(path),
                headers=session_cookie(values.get("cookie_session")),
                # 长轮询：不限制读取超时
                timeout=httpx.Timeout(self.http_client.timeout, read=None, write=self.http_client.write),
            )
            return request, None

        return self._call("observe_result", params, callback, build)

    # -------------------------------------------------------------------------
    # 识别
    # -------------------------------------------------------------------------
    def _recognize_path(self, values: Dict[str, Any]) -> str:
        base = self._session_path(values, "recognize") if values.get("session_id") else "recognize"
        path, _ = build_path(base, values)
        return path

    def recognize(self, params: Any = None, callback: Optional[Callback] = None) -> ServiceRequest:
        """单次识别：上传完整音频，返回识别结果

        有 session_id 时走会话路径，否则走无会话路径。
        """
        def build(values: Dict[str, Any]) -> Built:
            headers = {"Content-Type": values["content_type"]}
            if values.get("session_id"):
                headers.update(session_cookie(values.get("cookie_session")))

            request = self.http_client.build_request(
                "POST", self._endpoint(self._recognize_path(values)),
                headers=headers,
                content=audio_content(values["audio"]),
            )
            return request, values["audio"]

        return self._call("recognize", params, callback, build)

    def recognize_live(self, params: Any = None, callback: Optional[Callback] = None) -> LiveRecognizeRequest:
        """分块上传识别

        立即返回正在发送的请求对象，调用方 write() 音频块、end() 结束，
        服务端完整响应后 callback 触发一次。需要在事件循环中调用。
        """
        try:
            values = validate("recognize_live", params)
            url = self._endpoint(self._recognize_path(values))
        except SpeechToTextError as e:
            log.debug(f"recognize_live 参数错误: {e}")
            live = LiveRecognizeRequest(self.http_client, error=e, callback=callback)
        else:
            headers = {
                "Content-Type": values["content_type"],
                "Transfer-Encoding": "chunked",
                **session_cookie(values["cookie_session"]),
            }
            live = LiveRecognizeRequest(self.http_client, "POST", url, headers=headers, callback=callback)

        live.start()
        return live

    def create_recognize_stream(self, options: Any = None) -> RecognizeStream:
        """创建全双工流式识别通道（参数在连接时校验）"""
        options = dict(options or {})
        return RecognizeStream(
            url=self.stream_url(options),
            options=options,
            headers=self._stream_headers(),
            connect=self.ws_connect,
        )

    def stream_url(self, options: Dict[str, Any]) -> str:
        """ws(s)://<host>/<version>/recognize[?model=...&watson-token=...]"""
        parts = urlsplit(self._endpoint("recognize"))
        scheme = "wss" if parts.scheme == "https" else "ws"
        pairs = []
        if options.get("model"):
            pairs.append(f"model={quote(options['model'], safe='')}")
        token = options.get("token") or self.token
        if token:
            pairs.append(f"watson-token={quote(token, safe='')}")
        return urlunsplit((scheme, parts.netloc, parts.path, "&".join(pairs), ""))

    def _stream_headers(self) -> Dict[str, str]:
        headers = dict(self.headers)
        if self.username and self.password:
            credentials = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            headers["Authorization"] = f"Basic {credentials}"
        return headers
