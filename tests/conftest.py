import asyncio
import dataclasses
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from zrelay.api import create_app
from zrelay.config import Settings, parse_model_map

TEST_KEY = "sk-test-key"
STATIC_TOKEN = "static-upstream-token"
ANON_TOKEN = "anon-token-0123456789"
UPSTREAM_ORIGIN = "https://upstream.test"
UPSTREAM_URL = f"{UPSTREAM_ORIGIN}/api/chat/completions"


def upstream_event(phase, content="", done=False, **data):
    """Build one upstream SSE line."""
    payload = {
        "type": "chat:completion",
        "data": dict({"phase": phase, "delta_content": content, "done": done}, **data),
    }
    return "data: " + json.dumps(payload)


def done_event():
    return upstream_event("done", done=True)


def sse_body(lines):
    # Upstream separates frames with blank lines.
    return ("\n\n".join(lines) + "\n\n").encode()


async def aiter_lines(lines, consumed=None):
    """Feed lines to a relay the way UpstreamStream does."""
    for line in lines:
        if consumed is not None:
            consumed.append(line)
        yield line


class RecordingStream(httpx.AsyncByteStream):
    """
    Upstream body that can fail or stall part way and remembers being closed.

    A stalled body only ends when the reader is cancelled.
    """

    def __init__(self, chunks, fail_after=False, stall_after=False):
        self.chunks = chunks
        self.fail_after = fail_after
        self.stall_after = stall_after
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.fail_after:
            raise httpx.ReadError("connection reset")
        if self.stall_after:
            await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class UpstreamSpy:
    """
    Fake upstream: answers the anonymous auth endpoint and the chat endpoint,
    and records every request it sees.
    """

    def __init__(
        self,
        lines=None,
        status_code=200,
        anon_status=200,
        anon_body=None,
        chat_error=None,
        body_stream=None,
    ):
        self.lines = lines if lines is not None else [
            upstream_event("answer", "Hello"),
            done_event(),
        ]
        self.status_code = status_code
        self.anon_status = anon_status
        self.anon_body = anon_body if anon_body is not None else {"token": ANON_TOKEN}
        self.chat_error = chat_error
        self.body_stream = body_stream
        self.auth_calls = []
        self.chat_calls = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/auths/":
            self.auth_calls.append(request)
            return httpx.Response(self.anon_status, json=self.anon_body)

        self.chat_calls.append(request)
        if self.chat_error is not None:
            raise self.chat_error
        if self.body_stream is not None:
            return httpx.Response(
                self.status_code,
                stream=self.body_stream,
                headers={"content-type": "text/event-stream"},
            )
        return httpx.Response(
            self.status_code,
            content=sse_body(self.lines),
            headers={"content-type": "text/event-stream"},
        )

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    def last_body(self):
        return json.loads(self.chat_calls[-1].content)


@pytest.fixture
def settings():
    return Settings(
        upstream_url=UPSTREAM_URL,
        api_key=TEST_KEY,
        upstream_token=STATIC_TOKEN,
        model_map=parse_model_map("GLM-4.5:0727-360B-API,GLM-4.5V:glm-4.5v"),
        debug=True,
        default_stream=False,
        origin_base=UPSTREAM_ORIGIN,
    )


@pytest.fixture
def make_client(settings):
    """Create a test client backed by an UpstreamSpy, with optional setting overrides."""

    def _make(spy, **overrides):
        app_settings = dataclasses.replace(settings, **overrides)
        return TestClient(create_app(app_settings, spy.transport))

    return _make


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_KEY}"}


def parse_sse(response):
    """Return the data payloads of a streaming response, [DONE] kept as a string."""
    events = []
    for line in response.iter_lines():
        if not line.strip():
            continue
        data = line[len("data: "):]
        events.append(data if data == "[DONE]" else json.loads(data))
    return events
