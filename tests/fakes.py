import json
import threading
from typing import Dict, List, Optional

import requests

from llm import LLMConfig, QueryClient
from models import Artifact
from pipeline_common import RenderError


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code=200, body=None, lines=None, text=None, fail_after=None):
        self.status_code = status_code
        self._body = body
        self._lines = list(lines or [])
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")
        self.fail_after = fail_after
        self.closed = False

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body

    def iter_lines(self, decode_unicode=False):
        for i, line in enumerate(self._lines):
            if self.fail_after is not None and i >= self.fail_after:
                raise requests.ConnectionError("connection reset")
            yield line

    def close(self):
        self.closed = True


class FakeSession:
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[Dict] = []

    def post(self, url, headers=None, json=None, stream=False, timeout=None):
        self.calls.append({"url": url, "headers": headers, "json": json, "stream": stream})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def sse(*payloads, done=True):
    lines = [f"data: {json.dumps({'choices': [{'delta': {'content': p}}]})}" for p in payloads]
    if done:
        lines.append("data: [DONE]")
    return lines


def completion(text):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def make_client(*responses):
    session = FakeSession(*responses)
    client = QueryClient(LLMConfig(model="test/model", api_key="sk-test"), session=session)
    return client, session


class FakeRuntime:
    """Records every run; returns canned output or raises the queued error per code body."""

    def __init__(self, outputs: Optional[Dict[str, object]] = None, default="<svg>plot</svg>", delay=0.0):
        self.outputs = outputs or {}
        self.default = default
        self.delay = delay
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def run(self, code, mode="generic"):
        with self._lock:
            self.calls.append((code, mode))
        delay = self.delay.get(code.strip(), 0.0) if isinstance(self.delay, dict) else self.delay
        if delay:
            threading.Event().wait(delay)
        out = self.outputs.get(code.strip(), self.default)
        if isinstance(out, Exception):
            raise out
        return out


class FakeRenderer:
    def __init__(self, fail=False):
        self.fail = fail
        self.rendered: List[str] = []

    def render(self, markdown):
        if self.fail:
            raise RenderError("marp exploded")
        self.rendered.append(markdown)
        return "<html>" + markdown + "</html>"


def artifact(key="h", size=10, mime="image/svg+xml"):
    return Artifact(content_hash=key, mime_type=mime, payload=b"x" * size)
