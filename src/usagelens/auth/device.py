from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

import httpx
from pydantic import BaseModel, ValidationError

from usagelens.errors import AuthServerError, DeviceFlowDenied

logger = logging.getLogger(__name__)

DEVICE_CODE_URL = "https://github.com/login/device/code"
ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
COPILOT_CLIENT_ID = "Ov23li8tweQw6odWQebz"
COPILOT_SCOPE = "read:user"
POLLING_SAFETY_MARGIN_SECONDS = 3
SLOW_DOWN_INCREMENT_SECONDS = 5

JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}

Sleep = Callable[[float], Awaitable[None]]


class _DeviceCodeResponse(BaseModel):
    verification_uri: str
    user_code: str
    device_code: str
    interval: float


class _AccessTokenResponse(BaseModel):
    access_token: str | None = None
    error: str | None = None
    interval: float | None = None


@dataclass(frozen=True)
class DeviceAuthorizationSession:
    verification_uri: str
    user_code: str
    device_code: str
    interval: float


async def request_device_session(
    client: httpx.AsyncClient,
    client_id: str = COPILOT_CLIENT_ID,
    scope: str = COPILOT_SCOPE,
    url: str = DEVICE_CODE_URL,
) -> DeviceAuthorizationSession:
    try:
        response = await client.post(url, headers=JSON_HEADERS, json={"client_id": client_id, "scope": scope})
    except httpx.HTTPError as exc:
        raise AuthServerError(f"failed to initiate device authorization: {exc}") from exc
    if not response.is_success:
        raise AuthServerError(f"failed to initiate device authorization ({response.status_code})")
    try:
        parsed = _DeviceCodeResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise AuthServerError("invalid device authorization response") from exc

    return DeviceAuthorizationSession(
        verification_uri=parsed.verification_uri,
        user_code=parsed.user_code,
        device_code=parsed.device_code,
        interval=parsed.interval,
    )


async def poll_for_token(
    client: httpx.AsyncClient,
    session: DeviceAuthorizationSession,
    client_id: str = COPILOT_CLIENT_ID,
    sleep: Sleep = asyncio.sleep,
    url: str = ACCESS_TOKEN_URL,
) -> str:
    """Poll the token endpoint until the user finishes authorizing.

    There is no iteration cap; callers abandon the flow by cancelling the
    task awaiting this coroutine. ``slow_down`` waits an extra five seconds
    and adopts the server-supplied interval for later turns.
    """
    interval = session.interval
    body = {"client_id": client_id, "device_code": session.device_code, "grant_type": DEVICE_GRANT_TYPE}

    while True:
        try:
            response = await client.post(url, headers=JSON_HEADERS, json=body)
        except httpx.HTTPError as exc:
            raise AuthServerError(f"failed to obtain access token: {exc}") from exc
        if not response.is_success:
            raise AuthServerError(f"failed to obtain access token ({response.status_code})")
        try:
            data = _AccessTokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthServerError("invalid access token response") from exc

        if data.access_token:
            return data.access_token

        if data.error == "slow_down":
            base = data.interval if data.interval is not None else interval
            if data.interval is not None:
                interval = data.interval
            logger.debug("device flow asked to slow down; interval now %ss", interval)
            await sleep(base + SLOW_DOWN_INCREMENT_SECONDS + POLLING_SAFETY_MARGIN_SECONDS)
            continue

        if data.error and data.error != "authorization_pending":
            raise DeviceFlowDenied(data.error)

        await sleep(interval + POLLING_SAFETY_MARGIN_SECONDS)
