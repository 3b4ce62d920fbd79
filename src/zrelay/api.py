"""FastAPI application and routes for the zrelay gateway."""

import json
import logging
import secrets
import time
from typing import Awaitable, Callable, Optional

import anyio
import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.datastructures import MutableHeaders

from .backends import UpstreamUnavailable, build_upstream_request, open_upstream
from .config import Settings, load_settings
from .credentials import acquire_credential
from .models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    Choice,
    Message,
    ModelCard,
    ModelList,
)
from .streaming import StreamRelay, collect_content, stream_with_role
from .utils import completion_id, token_preview

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Credentials": "true",
}

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def error_response(message: str, error_type: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        content={"error": {"message": message, "type": error_type}},
        status_code=status_code,
    )


def check_api_key(settings: Settings, authorization: Optional[str]) -> Optional[JSONResponse]:
    """Return an error response unless the bearer token matches DEFAULT_KEY."""
    if not authorization or not authorization.startswith("Bearer "):
        logger.debug("Missing or invalid Authorization header")
        return error_response(
            "Missing or invalid Authorization header", "auth_error", 401
        )
    api_key = authorization[len("Bearer "):]
    if not secrets.compare_digest(api_key.encode(), settings.api_key.encode()):
        logger.debug(f"Invalid API key: {token_preview(api_key)}")
        return error_response("Invalid API key", "auth_error", 401)
    return None


class CORSHeadersMiddleware:
    """
    Adds the CORS headers to every response and answers OPTIONS on any path.

    Plain ASGI so streamed bodies pass straight through to the server.
    """

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        if scope.get("method") == "OPTIONS":
            response = Response(status_code=200, headers=CORS_HEADERS)
            await response(scope, receive, send)
            return

        async def send_with_cors(message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).update(CORS_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)


class RelayStreamingResponse(StreamingResponse):
    """
    Streaming response that closes the upstream however the body ends.

    ``on_close`` runs after a normal finish, a client disconnect, a failed
    write or a cancelled request task.
    """

    def __init__(self, content, on_close: Callable[[], Awaitable[None]], **kwargs):
        super().__init__(content, **kwargs)
        self.on_close = on_close

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                aclose = getattr(self.body_iterator, "aclose", None)
                try:
                    if aclose is not None:
                        await aclose()
                finally:
                    await self.on_close()


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the gateway app.

    ``settings`` is read once and shared read-only by every request.
    ``transport`` replaces the network for every outbound httpx call.
    """
    settings = settings or load_settings()

    app = FastAPI(title="zrelay")
    app.state.settings = settings
    app.state.transport = transport

    app.add_middleware(CORSHeadersMiddleware)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    @app.get("/v1/models")
    async def list_models(request: Request):
        settings: Settings = request.app.state.settings
        created = int(time.time())
        models = ModelList(
            data=[
                ModelCard(id=name, created=created, owned_by=settings.model_owner)
                for name in settings.model_map
            ]
        )
        return models.model_dump()

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request) -> Response:
        """
        Translate an OpenAI chat completion into an upstream call:
        - Rejects bad keys, bodies and unknown models before calling upstream
        - Always streams from upstream
        - Streams to the client or aggregates, per the request or DEFAULT_STREAM
        """
        settings: Settings = request.app.state.settings
        transport = request.app.state.transport
        logger.debug("Received chat completions request")

        auth_error = check_api_key(settings, request.headers.get("authorization"))
        if auth_error is not None:
            return auth_error

        body = await request.body()
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug(f"Invalid JSON body: {str(e)}")
            return error_response("Invalid JSON", "invalid_request_error", 400)

        try:
            chat_request = ChatCompletionRequest.model_validate(payload)
        except ValidationError as e:
            logger.debug(f"Invalid request body: {str(e)}")
            return error_response(
                f"Invalid request: {e.error_count()} validation error(s)",
                "invalid_request_error",
                400,
            )

        upstream_model = settings.model_map.get(chat_request.model)
        if upstream_model is None:
            logger.debug(f"Unsupported model: {chat_request.model}")
            return error_response(
                f"Unsupported model: {chat_request.model}. "
                f"Available models: {settings.model_names()}",
                "invalid_request_error",
                400,
            )

        is_stream = chat_request.effective_stream(settings.default_stream)
        if "stream" not in chat_request.model_fields_set:
            logger.debug(f"No stream flag in request, using default: {is_stream}")

        logger.debug(
            f"Request parsed - display_model: {chat_request.model}, "
            f"upstream_model: {upstream_model}, stream: {is_stream}, "
            f"messages: {len(chat_request.messages)}"
        )

        upstream_request = build_upstream_request(chat_request, upstream_model)
        credential = await acquire_credential(settings, transport)
        logger.debug(f"Using {credential.source.value} credential")

        try:
            upstream = await open_upstream(
                settings, upstream_request, credential, transport
            )
        except UpstreamUnavailable as e:
            return error_response(str(e), "upstream_error", 502)

        relay = StreamRelay(
            upstream,
            settings.think_tags_mode,
            label=f"chat_id={upstream_request.chat_id}",
        )

        if is_stream:
            return RelayStreamingResponse(
                stream_with_role(relay, chat_request.model),
                on_close=upstream.aclose,
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        try:
            content = await collect_content(relay)
        finally:
            await upstream.aclose()

        response = ChatCompletionResponse(
            id=completion_id(),
            created=int(time.time()),
            model=chat_request.model,
            choices=[
                Choice(
                    index=0,
                    message=Message(role="assistant", content=content),
                    finish_reason="stop",
                )
            ],
        )
        logger.debug("Non-streaming response complete")
        return JSONResponse(content=response.model_dump(exclude_none=True))

    return app
