"""Per-request upstream credentials."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import httpx

from .config import Settings
from .utils import token_preview

logger = logging.getLogger(__name__)

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36 Edg/139.0.0.0"
)
SEC_CH_UA = '"Not;A=Brand";v="99", "Microsoft Edge";v="139", "Chromium";v="139"'
SEC_CH_UA_MOBILE = "?0"
SEC_CH_UA_PLATFORM = '"Windows"'


class CredentialSource(str, Enum):
    ANONYMOUS = "anonymous"
    STATIC = "static"


@dataclass(frozen=True)
class Credential:
    """A bearer token for exactly one upstream call."""

    token: str
    source: CredentialSource

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


def browser_headers(settings: Settings) -> Dict[str, str]:
    """Headers that make a request look like it came from the upstream web client."""
    return {
        "User-Agent": BROWSER_UA,
        "X-FE-Version": settings.fe_version,
        "sec-ch-ua": SEC_CH_UA,
        "sec-ch-ua-mobile": SEC_CH_UA_MOBILE,
        "sec-ch-ua-platform": SEC_CH_UA_PLATFORM,
        "Origin": settings.origin_base,
    }


class AnonymousTokenError(Exception):
    """The anonymous session endpoint did not hand out a token."""


async def fetch_anonymous_token(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> str:
    headers = browser_headers(settings)
    headers.update(
        {
            "Accept": "*/*",
            "Accept-Language": "zh-CN,zh;q=0.9",
            "Referer": f"{settings.origin_base}/",
        }
    )
    url = f"{settings.origin_base}/api/v1/auths/"
    async with httpx.AsyncClient(
        timeout=settings.credential_timeout, transport=transport
    ) as client:
        response = await client.get(url, headers=headers)

    if response.status_code != 200:
        raise AnonymousTokenError(f"anon token status={response.status_code}")
    try:
        body = response.json()
    except ValueError as e:
        raise AnonymousTokenError(f"anon token body is not JSON: {e}") from e
    token = body.get("token") if isinstance(body, dict) else None
    if not token or not isinstance(token, str):
        raise AnonymousTokenError("anon token empty")
    return token


async def acquire_credential(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Credential:
    """
    Get a credential for one chat request.

    A fresh anonymous token is requested every time so unrelated callers
    never share an upstream session. If that fails for any reason the
    static UPSTREAM_TOKEN is used instead; the failure is only logged.
    """
    if not settings.anon_token_enabled:
        return Credential(settings.upstream_token, CredentialSource.STATIC)

    try:
        token = await fetch_anonymous_token(settings, transport)
    except (httpx.HTTPError, AnonymousTokenError) as e:
        logger.debug(f"Anonymous token unavailable, falling back to static token: {e}")
        return Credential(settings.upstream_token, CredentialSource.STATIC)

    logger.debug(f"Anonymous token acquired: {token_preview(token)}")
    return Credential(token, CredentialSource.ANONYMOUS)
