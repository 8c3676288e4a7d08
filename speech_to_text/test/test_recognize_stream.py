# -*- coding: UTF-8 -*-
"""Duplex recognize stream against an in-memory recognition socket."""
import io
import json
import asyncio

import pytest
import websockets

from websockets.datastructures import Headers
from websockets.frames import Close
from websockets.http11 import Response

from speech_to_text import (
    ChannelClosedError,
    DuplexStream,
    MissingParameterError,
    RecognizeStream,
    SpeechToTextV1,
    StreamEventType,
    StreamState,
    TranscriptResult,
    is_stream,
)
from speech_to_text.common.speech.params import build_start_message

from conftest import SERVICE_RESPONSE, FakeConnector, FakeRecognizeSocket

OPTIONS = {
    "content_type": "audio/l16;rate=41100",
    "continuous": True,
    "timestamps": True,
    "inactivity_timeout": -1,
    "max_alternatives": 1,
    "interim_results": False,
    "keywords": ["one", "Three"],
    "keywords_threshold": 0.9,
    "word_alternatives_threshold": 0.25,
}

INTERIM_RESPONSE = {
    "results": [{"alternatives": [{"transcript": "one two"}], "final": False}],
    "result_index": 0,
}


async def collect(stream: RecognizeStream):
    return [event async for event in stream.events()]


def event_types(events):
    return [event.event_type for event in events]


class SilentStopSocket(FakeRecognizeSocket):
    """Acknowledges start frames but never answers a stop"""

    async def send(self, data):
        self.sent.append(data)
        if isinstance(data, str) and json.loads(data).get("action") == "start":
            self.push({"state": "listening"})


class TestShape:
    def test_is_stream(self, stt):
        stream = stt.create_recognize_stream()
        assert is_stream(stream)
        assert isinstance(stream, DuplexStream)
        assert stream.state is StreamState.IDLE

    def test_plain_objects_are_not_streams(self):
        assert not is_stream(b"audio")
        assert not is_stream(io.BytesIO(b"audio"))

    def test_stream_url(self, stt):
        stream = stt.create_recognize_stream({"model": "en-US_BroadbandModel"})
        assert stream.url == "ws://stt.example.com/v1/recognize?model=en-US_BroadbandModel"

    def test_stream_url_with_token(self):
        stt = SpeechToTextV1(url="https://stt.example.com", token="tok/en")
        stream = stt.create_recognize_stream({"model": "en-US_BroadbandModel"})
        assert stream.url == "wss://stt.example.com/v1/recognize?model=en-US_BroadbandModel&watson-token=tok%2Fen"

    def test_stream_option_token_wins(self, stt):
        stream = stt.create_recognize_stream({"token": "abc", "content_type": "audio/wav"})
        assert stream.url == "ws://stt.example.com/v1/recognize?watson-token=abc"
        assert "token" not in build_start_message(stream.options)


class TestRecognizeStream:
    @pytest.mark.asyncio
    async def test_piped_audio_emits_results(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        results, transcripts, configs = [], [], []
        stream.on("results", results.append)
        stream.on("data", transcripts.append)
        stream.on("connect", configs.append)
        audio = b"RIFF" + bytes(range(256)) * 100

        await stream.pipe(io.BytesIO(audio))

        assert stream.state is StreamState.CLOSED
        assert len(results) == 1
        assert isinstance(results[0], TranscriptResult)
        assert results[0].model_dump(exclude_none=True) == SERVICE_RESPONSE
        assert transcripts == ["one two three"]

        socket = connector.socket
        assert socket.control_frames == [build_start_message(OPTIONS), {"action": "stop"}]
        assert socket.control_frames[0]["keywords"] == ["one", "Three"]
        assert socket.audio == audio
        assert socket.close_code == 1000

        assert configs[0].url == "ws://stt.example.com/v1/recognize"
        assert configs[0].fragment_outgoing_messages is False

    @pytest.mark.asyncio
    async def test_handshake_headers(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.open()

        call = connector.calls[0]
        assert call["url"] == "ws://stt.example.com/v1/recognize"
        assert call["additional_headers"]["Authorization"].startswith("Basic ")
        assert stream.state is StreamState.OPEN
        await stream.close()

    @pytest.mark.asyncio
    async def test_events_in_arrival_order(self, stt, connector):
        connector.socket.results = [INTERIM_RESPONSE, SERVICE_RESPONSE]
        stream = stt.create_recognize_stream(dict(OPTIONS, interim_results=True))

        await stream.write(b"audio")
        await stream.end()
        events = await collect(stream)

        assert event_types(events) == [
            StreamEventType.CONNECT,
            StreamEventType.LISTENING,
            StreamEventType.RESULTS,
            StreamEventType.RESULTS,
            StreamEventType.DATA,
            StreamEventType.LISTENING,
            StreamEventType.CLOSE,
        ]
        interim, final = events[2].data, events[3].data
        assert interim.result[0].final is False
        assert interim.result[0].alternative[0].transcript == "one two"
        assert final.result[0].final is True
        assert events[4].data == "one two three"
        assert connector.socket.control_frames[0]["interim_results"] is True

    @pytest.mark.asyncio
    async def test_async_listeners(self, stt):
        stream = stt.create_recognize_stream(OPTIONS)
        seen = []

        async def on_results(result):
            await asyncio.sleep(0)
            seen.append(result.result_index)

        stream.on(StreamEventType.RESULTS, on_results)
        await stream.pipe([b"one", b"two"])

        assert seen == [0]

    @pytest.mark.asyncio
    async def test_close_flushes_queued_writes(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)

        await stream.write(b"one")
        await stream.write(b"two")
        await stream.close()

        assert stream.state is StreamState.CLOSED
        assert connector.socket.audio == b"onetwo"
        assert connector.socket.control_frames == [build_start_message(OPTIONS)]
        with pytest.raises(ChannelClosedError):
            await stream.write(b"three")

    @pytest.mark.asyncio
    async def test_segments_share_one_connection(self, stt, connector):
        connector.socket.results = [SERVICE_RESPONSE]
        stream = stt.create_recognize_stream(OPTIONS)
        transcripts = []
        stream.on("data", transcripts.append)

        await stream.write(b"first")
        await stream.stop()
        await stream.write(b"second")
        await stream.end()

        assert len(connector.calls) == 1
        assert [frame["action"] for frame in connector.socket.control_frames] == ["start", "stop", "start", "stop"]
        assert transcripts == ["one two three", "one two three"]
        assert stream.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_close_releases_pending_end(self):
        socket = SilentStopSocket()
        stream = RecognizeStream("ws://stt.example.com/v1/recognize", OPTIONS, connect=FakeConnector(socket))

        await stream.write(b"audio")
        ending = asyncio.ensure_future(stream.end())
        await asyncio.sleep(0.01)
        assert stream.state is StreamState.CLOSING

        await stream.close()
        await asyncio.wait_for(ending, timeout=1.0)

        assert stream.state is StreamState.CLOSED
        assert [frame["action"] for frame in socket.control_frames] == ["start", "stop"]

    @pytest.mark.asyncio
    async def test_end_without_audio(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.end()

        assert stream.state is StreamState.CLOSED
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_empty_chunk_rejected(self, stt):
        stream = stt.create_recognize_stream(OPTIONS)
        with pytest.raises(ValueError):
            await stream.write(b"")


class TestStreamErrors:
    @pytest.mark.asyncio
    async def test_options_validated_at_connect_time(self, stt, connector):
        stream = stt.create_recognize_stream()
        errors = []
        stream.on("error", errors.append)

        assert await stream.write(b"audio") == 0
        assert isinstance(errors[0], MissingParameterError)
        assert "required parameters" in str(errors[0])
        assert stream.state is StreamState.ERRORED
        assert connector.calls == []

        with pytest.raises(ChannelClosedError) as exc_info:
            await stream.write(b"more")
        assert isinstance(exc_info.value.__cause__, MissingParameterError)

    @pytest.mark.asyncio
    async def test_authentication_rejected(self, stt, connector):
        connector.error = websockets.InvalidStatus(Response(401, "Unauthorized", Headers()))
        stream = stt.create_recognize_stream(OPTIONS)

        await stream.open()
        events = await collect(stream)

        assert event_types(events) == [StreamEventType.ERROR, StreamEventType.CLOSE]
        error = events[0].error
        assert error.code == "EREJECTED"
        assert error.is_rejection
        assert error.status_code == 401

    @pytest.mark.asyncio
    async def test_connection_refused(self, stt, connector):
        connector.error = ConnectionRefusedError("refused")
        stream = stt.create_recognize_stream(OPTIONS)
        errors = []
        stream.on("error", errors.append)

        await stream.open()

        assert errors[0].code == "ECONNREFUSED"

    @pytest.mark.asyncio
    async def test_connection_reset(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.write(b"audio")

        connector.socket.push(websockets.ConnectionClosedError(None, None))
        events = await collect(stream)

        error = events[-2].error
        assert error.code == "ECONNRESET"
        assert error.errno == "ECONNRESET"
        assert error.is_connection_reset
        assert stream.state is StreamState.ERRORED
        with pytest.raises(ChannelClosedError):
            await stream.write(b"more")

    @pytest.mark.asyncio
    async def test_policy_violation_close(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.open()

        connector.socket.push(websockets.ConnectionClosedError(Close(1008, "bad credentials"), None))
        events = await collect(stream)

        error = events[-2].error
        assert error.code == "EREJECTED"
        assert error.close_code == 1008

    @pytest.mark.asyncio
    async def test_server_error_frame(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.open()

        connector.socket.push({"error": "Session timed out."})
        events = await collect(stream)

        error = events[-2].error
        assert error.code == "EREJECTED"
        assert "Session timed out." in str(error)

    @pytest.mark.asyncio
    async def test_malformed_frame(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.open()

        connector.socket.push("not json")
        events = await collect(stream)

        assert events[-2].error.code == "EPROTO"
        assert stream.state is StreamState.ERRORED

    @pytest.mark.asyncio
    async def test_unknown_frame(self, stt, connector):
        stream = stt.create_recognize_stream(OPTIONS)
        await stream.open()

        connector.socket.push({"surprise": True})
        events = await collect(stream)

        assert events[-2].error.code == "EPROTO"

    @pytest.mark.asyncio
    async def test_listening_timeout(self):
        connector = FakeConnector(FakeRecognizeSocket(ack_start=False))
        stream = RecognizeStream("ws://stt.example.com/v1/recognize", OPTIONS, connect=connector, connect_timeout=0.05)
        errors = []
        stream.on("error", errors.append)

        await stream.open()

        assert errors[0].code == "ETIMEDOUT"
        assert stream.state is StreamState.ERRORED
