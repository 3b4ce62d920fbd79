"""Utility functions for the zrelay gateway."""

import re
import time
from enum import Enum
from typing import Tuple

_SUMMARY_RE = re.compile(r"<summary>.*?</summary>", re.DOTALL)
_DETAILS_OPEN_RE = re.compile(r"<details[^>]*>")
_STRAY_MARKERS = ("</thinking>", "<Full>", "</Full>")


class ThinkTagsMode(str, Enum):
    """How the ``<details>`` wrapper around thinking text is rendered."""

    STRIP = "strip"
    THINK = "think"
    RAW = "raw"


def transform_thinking(content: str, mode: ThinkTagsMode = ThinkTagsMode.STRIP) -> str:
    """
    Rewrite one "thinking" phase delta for an OpenAI client.

    Args:
        content: The delta_content of a thinking event
        mode: What to do with the ``<details ...>`` wrapper

    Returns:
        The cleaned text. An empty string means the delta carries nothing
        worth emitting.
    """
    content = _SUMMARY_RE.sub("", content)
    for marker in _STRAY_MARKERS:
        content = content.replace(marker, "")
    content = content.strip()

    if mode is ThinkTagsMode.THINK:
        content = _DETAILS_OPEN_RE.sub("<think>", content)
        content = content.replace("</details>", "</think>")
    elif mode is ThinkTagsMode.STRIP:
        content = _DETAILS_OPEN_RE.sub("", content)
        content = content.replace("</details>", "")

    # Upstream renders thinking as a Markdown block quote. One level is
    # removed, so "> > a" becomes "> a".
    if content.startswith("> "):
        content = content[2:]
    content = content.replace("\n> ", "\n")
    return content.strip()


def conversation_ids() -> Tuple[str, str]:
    """Return ``(chat_id, message_id)`` derived from the current time."""
    now_ns = time.time_ns()
    return f"{now_ns}-{int(time.time())}", str(time.time_ns())


def completion_id() -> str:
    return f"chatcmpl-{int(time.time())}"


def token_preview(token: str, length: int = 10) -> str:
    """Shorten a bearer token for log output."""
    if len(token) > length:
        return token[:length] + "..."
    return token
