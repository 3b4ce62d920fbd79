"""Upstream call handling for the zrelay gateway."""

import logging
from datetime import datetime
from typing import AsyncIterator, Dict, Optional

import httpx

from .config import Settings
from .credentials import Credential, browser_headers
from .models import ChatCompletionRequest, ModelItem, UpstreamRequest
from .utils import conversation_ids

logger = logging.getLogger(__name__)


class UpstreamUnavailable(Exception):
    """The upstream call could not be opened or did not answer 200."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def build_upstream_request(
    request: ChatCompletionRequest, upstream_model: str
) -> UpstreamRequest:
    """
    Translate an OpenAI request into the upstream shape.

    The upstream is always asked to stream; whether the client sees a stream
    is decided by the route.
    """
    chat_id, message_id = conversation_ids()
    params = {}
    if request.temperature is not None:
        params["temperature"] = request.temperature
    if request.max_tokens is not None:
        params["max_tokens"] = request.max_tokens

    return UpstreamRequest(
        stream=True,
        model=upstream_model,
        messages=request.messages,
        params=params,
        chat_id=chat_id,
        id=message_id,
        model_item=ModelItem(id=upstream_model, name=request.model),
        variables={
            "{{USER_NAME}}": "User",
            "{{USER_LOCATION}}": "Unknown",
            "{{CURRENT_DATETIME}}": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        },
    )


def upstream_headers(
    settings: Settings, credential: Credential, chat_id: str
) -> Dict[str, str]:
    headers = browser_headers(settings)
    headers.update(
        {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "Accept-Language": "zh-CN",
            "Authorization": credential.authorization,
            "Referer": f"{settings.origin_base}/c/{chat_id}",
        }
    )
    return headers


class UpstreamStream:
    """
    An open upstream response body together with the client that owns it.

    ``aclose`` is idempotent and must run on every exit path, including a
    client that disconnects mid-stream.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self.client = client
        self.response = response
        self.closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._lines()

    async def _lines(self) -> AsyncIterator[str]:
        # A broken body ends the relay like an EOF would.
        try:
            async for line in self.response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            logger.error(f"Upstream body read failed: {str(e)}")

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.response.aclose()
        finally:
            await self.client.aclose()


async def open_upstream(
    settings: Settings,
    upstream_request: UpstreamRequest,
    credential: Credential,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpstreamStream:
    """
    POST the translated request and return the open SSE body.

    Raises:
        UpstreamUnavailable: on transport errors or a non-200 status. Nothing
            is left open when this is raised.
    """
    body = upstream_request.model_dump_json()
    logger.debug(f"Calling upstream {settings.upstream_url}")
    logger.debug(f"Upstream request body: {body}")

    # Reading the body has no deadline; only opening the call is bounded.
    timeout = httpx.Timeout(settings.upstream_timeout, read=None)
    client = httpx.AsyncClient(timeout=timeout, transport=transport)
    try:
        request = client.build_request(
            "POST",
            settings.upstream_url,
            content=body.encode(),
            headers=upstream_headers(settings, credential, upstream_request.chat_id),
        )
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        logger.error(f"Upstream call failed: {str(e)}")
        raise UpstreamUnavailable(f"Failed to call upstream: {e}") from e

    logger.debug(f"Upstream response status: {response.status_code}")
    if response.status_code != 200:
        try:
            if settings.debug:
                detail = await response.aread()
                logger.debug(f"Upstream error body: {detail.decode(errors='replace')}")
        except httpx.HTTPError as e:
            logger.debug(f"Could not read upstream error body: {e}")
        finally:
            await response.aclose()
            await client.aclose()
        logger.error(f"Upstream returned status {response.status_code}")
        raise UpstreamUnavailable("Upstream error", status_code=response.status_code)

    return UpstreamStream(client, response)
