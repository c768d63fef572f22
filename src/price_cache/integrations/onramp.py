"""Onramp session-token helper.

Signs a short-lived ES256 JWT for the Coinbase onramp token endpoint and
exchanges it for a session token. The fetch never raises: failures come
back as a tagged ``OnrampError``.
"""

from __future__ import annotations

import logging
import secrets
import time
from enum import StrEnum

import httpx
import jwt
from pydantic import BaseModel, ConfigDict

from price_cache.core.config import OnrampConfig

logger = logging.getLogger(__name__)

REQUEST_METHOD = "POST"
REQUEST_HOST = "api.developer.coinbase.com"
REQUEST_PATH = "/onramp/v1/token"
TOKEN_URI = f"{REQUEST_METHOD} {REQUEST_HOST}{REQUEST_PATH}"
TOKEN_VALIDITY_SECONDS = 120

_ALGORITHM = "ES256"


class OnrampErrorKind(StrEnum):
    SERVER = "server"
    CLIENT = "client"


class OnrampError(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OnrampErrorKind
    message: str
    status_code: int | None = None


class OnrampTokenResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str | None = None
    error: OnrampError | None = None


def generate_jwt(config: OnrampConfig, now: int | None = None) -> str:
    """Sign the bearer JWT for one token request."""
    if not config.api_key or not config.api_secret:
        raise ValueError("Onramp api_key and api_secret are required")
    issued = int(time.time()) if now is None else now
    payload = {
        "iss": "cdp",
        "nbf": issued,
        "exp": issued + TOKEN_VALIDITY_SECONDS,
        "sub": config.api_key,
        "uri": TOKEN_URI,
    }
    headers = {"kid": config.api_key, "nonce": secrets.token_hex(16)}
    return jwt.encode(payload, config.api_secret, algorithm=_ALGORITHM, headers=headers)


async def fetch_onramp_session_token(
    address: str,
    config: OnrampConfig,
    client: httpx.AsyncClient | None = None,
) -> OnrampTokenResult:
    """Request an onramp session token for ``address``."""
    try:
        token = generate_jwt(config)
    except (ValueError, jwt.PyJWTError) as e:
        logger.error("Failed to sign onramp JWT: %s", e)
        return OnrampTokenResult(error=OnrampError(kind=OnrampErrorKind.CLIENT, message=str(e)))

    body = {"addresses": [{"address": address, "blockchains": ["stellar"], "assets": ["XLM"]}]}
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=httpx.Timeout(15.0))
    try:
        resp = await http.post(f"https://{REQUEST_HOST}{REQUEST_PATH}", json=body, headers=headers)
    except httpx.RequestError as e:
        logger.error("Onramp token request failed: %s", e)
        return OnrampTokenResult(error=OnrampError(kind=OnrampErrorKind.CLIENT, message=str(e)))
    finally:
        if owns_client:
            await http.aclose()

    if resp.status_code >= 500:
        logger.error("Onramp server error %d: %s", resp.status_code, resp.text[:200])
        return OnrampTokenResult(
            error=OnrampError(
                kind=OnrampErrorKind.SERVER,
                message=resp.text[:200],
                status_code=resp.status_code,
            )
        )
    if not resp.is_success:
        return OnrampTokenResult(
            error=OnrampError(
                kind=OnrampErrorKind.CLIENT,
                message=resp.text[:200],
                status_code=resp.status_code,
            )
        )

    try:
        session_token = resp.json()["token"]
    except (ValueError, KeyError, TypeError):
        return OnrampTokenResult(
            error=OnrampError(
                kind=OnrampErrorKind.CLIENT,
                message="Response has no token",
                status_code=resp.status_code,
            )
        )
    return OnrampTokenResult(token=session_token)
