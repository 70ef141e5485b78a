from __future__ import annotations

import base64
from dataclasses import replace
import json
import logging
import time

import httpx
from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import OAuthCredential
from usagelens.errors import RefreshFailed

logger = logging.getLogger(__name__)

OPENAI_OAUTH_ISSUER = "https://auth.openai.com"
OPENAI_TOKEN_URL = f"{OPENAI_OAUTH_ISSUER}/oauth/token"
OPENAI_OAUTH_CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
REFRESH_MARGIN_MS = 30_000
DEFAULT_EXPIRES_IN_SECONDS = 3600


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: float | None = None
    id_token: str | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def parse_jwt_claims(token: str) -> dict | None:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (ValueError, json.JSONDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def extract_account_id(token: str | None) -> str | None:
    if not token:
        return None
    claims = parse_jwt_claims(token)
    if not claims:
        return None

    direct = claims.get("chatgpt_account_id")
    if isinstance(direct, str):
        return direct

    namespace = claims.get("https://api.openai.com/auth")
    if isinstance(namespace, dict) and isinstance(namespace.get("chatgpt_account_id"), str):
        return namespace["chatgpt_account_id"]

    organizations = claims.get("organizations")
    if isinstance(organizations, list) and organizations:
        first = organizations[0]
        if isinstance(first, dict) and isinstance(first.get("id"), str):
            return first["id"]
    return None


def needs_refresh(credential: OAuthCredential, now_ms: int | None = None) -> bool:
    if credential.expires is None:
        return False
    now = _now_ms() if now_ms is None else now_ms
    return credential.expires <= now + REFRESH_MARGIN_MS


async def refresh_credential(
    client: httpx.AsyncClient,
    credential: OAuthCredential,
    now_ms: int | None = None,
    token_url: str = OPENAI_TOKEN_URL,
    client_id: str = OPENAI_OAUTH_CLIENT_ID,
) -> OAuthCredential:
    if not credential.refresh:
        raise RefreshFailed("no refresh token available")

    try:
        response = await client.post(
            token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh,
                "client_id": client_id,
            },
        )
    except httpx.HTTPError as exc:
        raise RefreshFailed(f"token refresh request failed: {exc}") from exc

    if not response.is_success:
        raise RefreshFailed(f"token refresh failed ({response.status_code})")

    try:
        parsed = TokenResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise RefreshFailed("token refresh payload invalid") from exc

    now = _now_ms() if now_ms is None else now_ms
    expires_in = parsed.expires_in if parsed.expires_in is not None else DEFAULT_EXPIRES_IN_SECONDS
    account_id = extract_account_id(parsed.id_token) or extract_account_id(parsed.access_token) or credential.account_id

    logger.debug("refreshed oauth credential %r", credential.label)
    return replace(
        credential,
        access=parsed.access_token,
        refresh=parsed.refresh_token or credential.refresh,
        expires=now + int(expires_in * 1000),
        account_id=account_id,
    )


async def ensure_fresh(
    client: httpx.AsyncClient,
    credential: OAuthCredential,
    now_ms: int | None = None,
    token_url: str = OPENAI_TOKEN_URL,
) -> OAuthCredential:
    """Return ``credential`` untouched unless it expires within the refresh margin."""
    if not needs_refresh(credential, now_ms):
        return credential
    return await refresh_credential(client, credential, now_ms=now_ms, token_url=token_url)
