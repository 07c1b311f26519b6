import io
import json

import pytest
import requests

from fakes import FakeResponse, completion, make_client, sse
from pipeline_common import HTTPStatusError, InvalidResponseFormat, NetworkError


class TestStreaming:
    """Event-stream transport of the chat-completion client."""

    def test_chunks_arrive_in_order(self):
        client, _ = make_client(FakeResponse(lines=sse("Hello", " ", "World")))
        seen = []
        text = client.query("hi", streaming=True, on_chunk=seen.append)
        assert seen == ["Hello", " ", "World"]
        assert text == "Hello World"

    def test_stops_at_done_sentinel(self):
        lines = sse("a", "b") + ['data: {"choices": [{"delta": {"content": "late"}}]}']
        client, _ = make_client(FakeResponse(lines=lines))
        assert client.query("hi", streaming=True) == "ab"

    def test_skips_comments_blank_and_malformed_frames(self):
        lines = [": keep-alive", "", "data: {not json", "event: ping", b'data: {"choices": [{"delta": {"content": "ok"}}]}']
        lines += sse("!", done=True)
        client, _ = make_client(FakeResponse(lines=lines))
        assert client.query("hi", streaming=True) == "ok!"

    def test_empty_deltas_are_not_emitted(self):
        lines = ['data: {"choices": [{"delta": {}}]}', 'data: {"choices": []}'] + sse("x")
        client, _ = make_client(FakeResponse(lines=lines))
        seen = []
        client.query("hi", streaming=True, on_chunk=seen.append)
        assert seen == ["x"]

    def test_request_body_and_headers(self):
        client, session = make_client(FakeResponse(lines=sse("x")))
        client.query("prompt text", max_tokens=123, streaming=True)
        call = session.calls[0]
        assert call["url"] == "https://openrouter.ai/api/v1/chat/completions"
        assert call["stream"] is True
        assert call["json"] == {
            "model": "test/model",
            "messages": [{"role": "user", "content": "prompt text"}],
            "max_tokens": 123,
            "stream": True,
        }
        assert call["headers"]["Authorization"] == "Bearer sk-test"
        assert call["headers"]["X-Title"] == "Research Assistant"
        assert "HTTP-Referer" in call["headers"]

    def test_interrupted_stream_raises_network_error_after_partial_output(self):
        resp = FakeResponse(lines=sse("one", "two", "three"), fail_after=2)
        client, _ = make_client(resp)
        seen = []
        with pytest.raises(NetworkError):
            client.query("hi", streaming=True, on_chunk=seen.append)
        assert seen == ["one", "two"]
        assert resp.closed
        assert client.error
        assert not client.is_loading and not client.is_streaming

    def test_flags_reflect_request_in_flight(self):
        client, _ = make_client(FakeResponse(lines=sse("a", "b")))
        states = []
        for _chunk in client.stream("hi"):
            states.append((client.is_loading, client.is_streaming))
        assert states == [(True, True), (True, True)]
        assert (client.is_loading, client.is_streaming) == (False, False)


class TestNonStreaming:
    def test_returns_message_content(self):
        client, session = make_client(FakeResponse(body=completion("Full answer")))
        assert client.query("hi") == "Full answer"
        assert session.calls[0]["json"]["stream"] is False
        assert client.error is None

    @pytest.mark.parametrize(
        "body",
        [
            {"choices": []},
            {"unexpected": True},
            {"choices": [{"message": {"role": "assistant", "content": ""}}]},
        ],
    )
    def test_invalid_shapes(self, body):
        client, _ = make_client(FakeResponse(body=body))
        with pytest.raises(InvalidResponseFormat):
            client.query("hi")
        assert "Invalid response format" in client.error

    def test_non_json_body(self):
        client, _ = make_client(FakeResponse(body=None, text="<html>oops</html>"))
        with pytest.raises(InvalidResponseFormat):
            client.query("hi")


class TestFailures:
    def test_http_status_error_carries_status_and_detail(self):
        resp = FakeResponse(status_code=429, text="rate limited")
        client, _ = make_client(resp)
        with pytest.raises(HTTPStatusError) as ei:
            client.query("hi", streaming=True)
        assert ei.value.status_code == 429
        assert "rate limited" in ei.value.detail
        assert resp.closed
        assert not client.is_loading

    def test_http_status_error_is_a_network_error(self):
        client, _ = make_client(FakeResponse(status_code=500, text="boom"))
        with pytest.raises(NetworkError):
            client.query("hi")

    def test_transport_failure(self):
        client, _ = make_client(requests.ConnectionError("dns failure"))
        with pytest.raises(NetworkError):
            client.query("hi")
        assert "dns failure" in client.error
        assert not client.is_loading

    def test_error_is_cleared_by_next_call(self):
        client, _ = make_client(requests.Timeout("slow"), FakeResponse(body=completion("fine")))
        with pytest.raises(NetworkError):
            client.query("hi")
        assert client.query("hi") == "fine"
        assert client.error is None


def _event_stream(body: bytes) -> requests.Response:
    resp = requests.Response()
    resp.status_code = 200
    resp.headers["Content-Type"] = "text/event-stream"
    resp.encoding = "ISO-8859-1"
    resp.raw = io.BytesIO(body)
    return resp


class TestEncoding:
    def test_utf8_frames_survive_latin1_default(self):
        frame = json.dumps({"choices": [{"delta": {"content": "café – 量子"}}]}, ensure_ascii=False)
        body = f"data: {frame}\n\ndata: [DONE]\n\n".encode("utf-8")
        client, _ = make_client(_event_stream(body))
        assert client.query("hi", streaming=True) == "café – 量子"
