"""Relay of the upstream SSE body to OpenAI-shaped output."""

import json
import logging
import time
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterable, Dict, Optional

from .events import UpstreamError, decode_line
from .utils import ThinkTagsMode, completion_id, transform_thinking

logger = logging.getLogger(__name__)

DONE_MARKER = b"data: [DONE]\n\n"


class RelayState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"


class StreamRelay:
    """
    Consumes one upstream response body and produces content fragments.

    Both output modes are thin renderers over ``fragments()``: the
    streaming renderer forwards each fragment as it arrives, the
    aggregating one concatenates them. A relay can be consumed once.
    """

    def __init__(
        self,
        lines: AsyncIterable[str],
        tags_mode: ThinkTagsMode = ThinkTagsMode.STRIP,
        label: str = "",
    ):
        self._lines = lines
        self.tags_mode = tags_mode
        self._prefix = f"[{label}] " if label else ""
        self.state = RelayState.INIT
        self.error: Optional[UpstreamError] = None
        self.completed_by_signal = False
        self.lines_read = 0

    async def fragments(self) -> AsyncGenerator[str, None]:
        """Yield transformed, non-empty content in upstream order until a terminal event."""
        if self.state is not RelayState.INIT:
            raise RuntimeError("StreamRelay can only be consumed once")
        self.state = RelayState.STREAMING

        async for line in self._lines:
            self.lines_read += 1
            event = decode_line(line)
            if event is None:
                continue

            if event.error is not None:
                self.state = RelayState.ERROR
                self.error = event.error
                logger.warning(
                    f"{self._prefix}Upstream error ({event.error_source.value}): "
                    f"code={event.error.code}, detail={event.error.detail}"
                )
                return

            logger.debug(
                f"Decoded event - type: {event.type}, phase: {event.phase}, "
                f"length: {len(event.delta_content)}, done: {event.done}"
            )

            if event.delta_content:
                content = event.delta_content
                if event.is_thinking:
                    content = transform_thinking(content, self.tags_mode)
                if content:
                    yield content

            if event.is_done:
                self.state = RelayState.DONE
                self.completed_by_signal = True
                logger.debug(f"{self._prefix}Completion signal received after {self.lines_read} lines")
                return

        self.state = RelayState.DONE
        logger.info(
            f"{self._prefix}Upstream closed without a completion signal after {self.lines_read} lines"
        )


def _chunk(
    chunk_id: str,
    model: str,
    delta: Dict[str, Any],
    finish_reason: Optional[str] = None,
) -> bytes:
    event = {
        "id": chunk_id,
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n".encode()


async def stream_with_role(
    relay: StreamRelay, model: str
) -> AsyncGenerator[bytes, None]:
    """
    Render a relay as an OpenAI chat.completion.chunk stream.

    Emits the assistant role preamble, one chunk per fragment, then a stop
    chunk and the ``[DONE]`` marker. Upstream errors and an early EOF end
    the stream the same way so client parsers always see a clean finish.
    """
    chunk_id = completion_id()
    yield _chunk(chunk_id, model, {"role": "assistant"})

    async for content in relay.fragments():
        yield _chunk(chunk_id, model, {"content": content})

    yield _chunk(chunk_id, model, {}, finish_reason="stop")
    yield DONE_MARKER
    logger.debug(f"Streaming response finished in state {relay.state.value}")


async def collect_content(relay: StreamRelay) -> str:
    """Render a relay as one string, stopping at the first terminal event."""
    parts = [content async for content in relay.fragments()]
    content = "".join(parts)
    logger.debug(f"Collected {len(content)} characters in state {relay.state.value}")
    return content
