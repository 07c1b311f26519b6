"""LLM wrapper utilities (chat-completion client with streaming)."""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import requests
from pydantic import ValidationError

try:
    from .logging_utils import OperationLog
    from .models import ChatCompletion, StreamChunk
    from .pipeline_common import (
        APP_TITLE,
        DEFAULT_BASE_URL,
        DEFAULT_SITE_URL,
        HTTPStatusError,
        InvalidResponseFormat,
        NetworkError,
        QueryError,
    )
except Exception:
    from logging_utils import OperationLog
    from models import ChatCompletion, StreamChunk
    from pipeline_common import (
        APP_TITLE,
        DEFAULT_BASE_URL,
        DEFAULT_SITE_URL,
        HTTPStatusError,
        InvalidResponseFormat,
        NetworkError,
        QueryError,
    )

logger = logging.getLogger("topic2deck")

DONE_SENTINEL = "[DONE]"


@dataclass
class LLMConfig:
    model: str
    api_key: str
    base_url: str = DEFAULT_BASE_URL
    site_url: str = DEFAULT_SITE_URL
    app_title: str = APP_TITLE
    timeout: float = 120.0


def init_llm(cfg: LLMConfig, session: Optional[requests.Session] = None) -> "QueryClient":
    """Initialize llm.

    Args:
        cfg (LLMConfig):
        session (Optional[requests.Session]):

    Returns:
        QueryClient:
    """
    if not cfg.api_key:
        logger.warning("No API key configured for %s; requests will likely be rejected.", cfg.base_url)
    return QueryClient(cfg, session=session)


class QueryClient:
    """Client for an OpenAI-compatible chat-completion endpoint.

    ``is_loading`` and ``is_streaming`` mirror the lifetime of the request in
    flight and are always reset when a call returns or raises. ``error`` keeps
    the text of the last failure until the next call starts.
    """

    def __init__(
        self,
        cfg: LLMConfig,
        session: Optional[requests.Session] = None,
        ops: Optional[OperationLog] = None,
    ) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self.ops = ops or OperationLog()
        self.is_loading = False
        self.is_streaming = False
        self.error: Optional[str] = None
        self._response = None

    @property
    def endpoint(self) -> str:
        return self.cfg.base_url.rstrip("/") + "/chat/completions"

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.cfg.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.cfg.site_url,
            "X-Title": self.cfg.app_title,
        }

    def _body(self, prompt: str, max_tokens: int, stream: bool) -> dict:
        return {
            "model": self.cfg.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "stream": stream,
        }

    @contextmanager
    def _request_scope(self, streaming: bool):
        self.is_loading = True
        self.is_streaming = streaming
        self.error = None
        try:
            yield
        except QueryError as exc:
            self.error = str(exc)
            raise
        finally:
            self.is_loading = False
            self.is_streaming = False
            self._response = None

    def _post(self, prompt: str, max_tokens: int, stream: bool):
        try:
            resp = self.session.post(
                self.endpoint,
                headers=self._headers(),
                json=self._body(prompt, max_tokens, stream),
                stream=stream,
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as exc:
            raise NetworkError(f"Request to {self.endpoint} failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            detail = getattr(resp, "text", "") or ""
            resp.close()
            raise HTTPStatusError(resp.status_code, detail)
        return resp

    def query(
        self,
        prompt: str,
        max_tokens: int = 4000,
        streaming: bool = False,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Send a prompt and return the full completion text.

        Args:
            prompt (str): User message.
            max_tokens (int): Generation budget.
            streaming (bool): Use the event-stream transport.
            on_chunk (Optional[Callable[[str], None]]): Receives each streamed delta in order.

        Returns:
            str: Complete text (accumulated deltas when streaming).
        """
        if streaming:
            parts = []
            for chunk in self.stream(prompt, max_tokens):
                parts.append(chunk)
                if on_chunk is not None:
                    on_chunk(chunk)
            return "".join(parts)

        with self._request_scope(streaming=False):
            logger.debug("Querying %s (max_tokens=%s, prompt_len=%s)", self.cfg.model, max_tokens, len(prompt))
            resp = self._post(prompt, max_tokens, stream=False)
            try:
                data = resp.json()
            except ValueError as exc:
                raise InvalidResponseFormat("Response body is not valid JSON") from exc
            try:
                completion = ChatCompletion.model_validate(data)
            except ValidationError as exc:
                raise InvalidResponseFormat("Invalid response format from API") from exc
            content = completion.content
            if not content:
                raise InvalidResponseFormat("Invalid response format from API: empty content")
            self.ops.record("llm_query", model=self.cfg.model, streaming=False, chars=len(content))
            return content

    def stream(self, prompt: str, max_tokens: int = 4000) -> Iterator[str]:
        """Yield text deltas from a streamed completion.

        Args:
            prompt (str):
            max_tokens (int):

        Returns:
            Iterator[str]:
        """
        with self._request_scope(streaming=True):
            logger.debug("Streaming %s (max_tokens=%s, prompt_len=%s)", self.cfg.model, max_tokens, len(prompt))
            resp = self._post(prompt, max_tokens, stream=True)
            self._response = resp
            total = 0
            try:
                for chunk in self._iter_deltas(resp):
                    total += len(chunk)
                    yield chunk
            except requests.RequestException as exc:
                raise NetworkError(f"Stream from {self.endpoint} interrupted: {exc}") from exc
            finally:
                resp.close()
            self.ops.record("llm_query", model=self.cfg.model, streaming=True, chars=total)

    @staticmethod
    def _iter_deltas(resp) -> Iterator[str]:
        # Frames are UTF-8 whatever charset the response declares.
        for raw in resp.iter_lines():
            if raw is None:
                continue
            line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
            line = line.strip()
            if not line or line.startswith(":"):
                continue
            if not line.startswith("data:"):
                logger.debug("Skipping non-data frame: %r", line[:80])
                continue
            payload = line[len("data:"):].strip()
            if payload == DONE_SENTINEL:
                return
            try:
                chunk = StreamChunk.model_validate(json.loads(payload))
            except (ValueError, ValidationError):
                logger.warning("Skipping malformed stream frame: %r", payload[:80])
                continue
            if chunk.text:
                yield chunk.text

    def close(self) -> None:
        """Abort the in-flight streaming response, if any."""
        resp = self._response
        if resp is not None:
            resp.close()
