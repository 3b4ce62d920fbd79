"""Decoding of the upstream SSE body, one line at a time."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from .models import UpstreamPayload

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "

PHASE_THINKING = "thinking"
PHASE_DONE = "done"


class ErrorSource(str, Enum):
    """Where in the payload an error object was found."""

    NONE = "none"
    TOP_LEVEL = "top_level"
    EVENT = "event"
    NESTED = "nested"


@dataclass(frozen=True)
class UpstreamError:
    code: int
    detail: str


@dataclass(frozen=True)
class UpstreamEvent:
    """One decoded upstream data frame."""

    type: str = ""
    phase: str = ""
    delta_content: str = ""
    done: bool = False
    error: Optional[UpstreamError] = None
    error_source: ErrorSource = ErrorSource.NONE

    @property
    def is_done(self) -> bool:
        return self.done or self.phase == PHASE_DONE

    @property
    def is_thinking(self) -> bool:
        return self.phase == PHASE_THINKING


def decode_line(line: str) -> Optional[UpstreamEvent]:
    """
    Decode one raw line of the upstream body.

    Returns None for anything that is not a usable data frame: lines without
    the ``data: `` prefix, empty payloads and payloads that do not parse.
    Such lines never end the stream.

    The upstream reports errors at three depths. They are checked in
    priority order (top level, event level, nested under ``data.data``) and
    the first one found is recorded on the event together with its source.
    """
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if not payload:
        return None

    try:
        frame = UpstreamPayload.model_validate_json(payload)
    except ValidationError as e:
        logger.debug(f"Skipping undecodable SSE payload ({e.error_count()} errors): {payload[:200]}")
        return None

    data = frame.data
    error, source = None, ErrorSource.NONE
    if frame.error is not None:
        error, source = frame.error, ErrorSource.TOP_LEVEL
    elif data is not None and data.error is not None:
        error, source = data.error, ErrorSource.EVENT
    elif data is not None and data.inner is not None and data.inner.error is not None:
        error, source = data.inner.error, ErrorSource.NESTED

    if error is not None:
        error = UpstreamError(code=error.code or 0, detail=error.detail or "")

    return UpstreamEvent(
        type=frame.type or "",
        phase=(data.phase or "") if data else "",
        delta_content=(data.delta_content or "") if data else "",
        done=bool(data.done) if data else False,
        error=error,
        error_source=source,
    )
