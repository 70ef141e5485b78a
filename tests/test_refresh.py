import base64
import json
from urllib.parse import parse_qs

import httpx
import pytest

from usagelens.auth.refresh import OPENAI_OAUTH_CLIENT_ID, ensure_fresh, extract_account_id, needs_refresh
from usagelens.auth.registry import OAuthCredential
from usagelens.errors import RefreshFailed

NOW_MS = 1_700_000_000_000


def _jwt(claims: dict) -> str:
    def seg(obj: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    return f"{seg({'alg': 'none'})}.{seg(claims)}.sig"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_needs_refresh_margin() -> None:
    assert needs_refresh(OAuthCredential(access="a", expires=NOW_MS + 10_000), NOW_MS)
    assert not needs_refresh(OAuthCredential(access="a", expires=NOW_MS + 120_000), NOW_MS)
    assert not needs_refresh(OAuthCredential(access="a"), NOW_MS)


def test_extract_account_id_from_claims() -> None:
    assert extract_account_id(_jwt({"chatgpt_account_id": "direct"})) == "direct"
    assert extract_account_id(_jwt({"https://api.openai.com/auth": {"chatgpt_account_id": "nested"}})) == "nested"
    assert extract_account_id(_jwt({"organizations": [{"id": "org-1"}]})) == "org-1"
    assert extract_account_id("not-a-jwt") is None


@pytest.mark.asyncio
async def test_fresh_credential_is_returned_untouched() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    cred = OAuthCredential(access="a", refresh="r", expires=NOW_MS + 3_600_000)
    async with _client(handler) as client:
        assert await ensure_fresh(client, cred, now_ms=NOW_MS) is cred


@pytest.mark.asyncio
async def test_expiring_credential_is_refreshed() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"access_token": "new-access", "expires_in": 600, "id_token": _jwt({"chatgpt_account_id": "acct"})},
        )

    cred = OAuthCredential(access="old", refresh="r1", expires=NOW_MS - 1, label="openai")
    async with _client(handler) as client:
        fresh = await ensure_fresh(client, cred, now_ms=NOW_MS)

    assert fresh.access == "new-access"
    assert fresh.refresh == "r1"
    assert fresh.expires == NOW_MS + 600_000
    assert fresh.account_id == "acct"
    assert fresh.label == "openai"
    assert cred.access == "old"

    form = parse_qs(seen[0].content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["r1"], "client_id": [OPENAI_OAUTH_CLIENT_ID]}


@pytest.mark.asyncio
async def test_refresh_keeps_prior_account_id_and_defaults_expiry() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "n", "refresh_token": "r2"})

    cred = OAuthCredential(access="o", refresh="r1", expires=NOW_MS, account_id="keep")
    async with _client(handler) as client:
        fresh = await ensure_fresh(client, cred, now_ms=NOW_MS)

    assert fresh.refresh == "r2"
    assert fresh.account_id == "keep"
    assert fresh.expires == NOW_MS + 3_600_000


@pytest.mark.asyncio
async def test_refresh_failure_raises_and_leaves_input() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_grant"})

    cred = OAuthCredential(access="o", refresh="r1", expires=NOW_MS)
    async with _client(handler) as client:
        with pytest.raises(RefreshFailed):
            await ensure_fresh(client, cred, now_ms=NOW_MS)
    assert cred.access == "o"


@pytest.mark.asyncio
async def test_malformed_refresh_payload_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"token_type": "bearer"})

    async with _client(handler) as client:
        with pytest.raises(RefreshFailed):
            await ensure_fresh(client, OAuthCredential(access="o", refresh="r", expires=NOW_MS), now_ms=NOW_MS)


@pytest.mark.asyncio
async def test_missing_refresh_token_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async with _client(handler) as client:
        with pytest.raises(RefreshFailed):
            await ensure_fresh(client, OAuthCredential(access="o", expires=NOW_MS), now_ms=NOW_MS)
