# -*- coding: UTF-8 -*-
"""
@Project ：speech-to-text
@File    ：audio.py
@Date    ：2025/07/03 09:40
"""
import inspect

from typing import Any, AsyncIterator, Union

CHUNK_SIZE = 8192

AudioContent = Union[bytes, AsyncIterator[bytes]]


def _as_bytes(chunk: Any) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


async def iter_audio(source: Any, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """按写入顺序逐块读取音频源

    支持: bytes / str、二进制文件对象（同步或异步 read）、
    同步或异步的 bytes 可迭代对象。空块会被跳过。
    """
    if isinstance(source, (bytes, bytearray, memoryview, str)):
        data = _as_bytes(source)
        for offset in range(0, len(data), chunk_size):
            yield data[offset:offset + chunk_size]
        return

    if hasattr(source, "read"):
        while True:
            chunk = source.read(chunk_size)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            if not chunk:
                break
            yield _as_bytes(chunk)
        return

    if hasattr(source, "__aiter__"):
        async for chunk in source:
            if chunk:
                yield _as_bytes(chunk)
        return

    for chunk in source:
        if chunk:
            yield _as_bytes(chunk)


def audio_content(source: Any) -> AudioContent:
    """Request body for an audio source: fixed buffers as-is, everything else streamed"""
    if isinstance(source, (bytes, bytearray, memoryview, str)):
        return _as_bytes(source)
    return iter_audio(source)
