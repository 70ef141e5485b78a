import json
from pathlib import Path

import httpx
import pytest

from usagelens.auth.registry import ApiKeyCredential, OAuthCredential
from usagelens.config import Config
from usagelens.providers.base import FetchContext
from usagelens.providers.codex import USAGE_URL, CodexProvider, parse_rate_limit_headers

FIXTURES = Path(__file__).parent / "fixtures"


def test_codex_normalizer_reads_windows() -> None:
    payload = json.loads((FIXTURES / "codex_usage_sample.json").read_text())
    snap = CodexProvider().normalize(payload)

    assert snap is not None
    assert snap.provider == "codex"
    assert snap.plan_type == "plus"
    assert snap.primary.used_percent == 34.5
    assert snap.primary.window_minutes == 300
    assert snap.primary.resets_at == 1761000000
    assert snap.secondary.used_percent == 100.0
    assert snap.secondary.window_minutes == 10080
    assert snap.secondary.resets_at == 1761500000
    assert snap.code_review.used_percent == 0.0
    assert snap.credits.balance == "12.50"


def test_codex_normalizer_keeps_absent_windows_null() -> None:
    payload = json.loads((FIXTURES / "codex_usage_sample.json").read_text())
    payload["rate_limit"]["secondary_window"] = None
    payload["code_review_rate_limit"] = None
    payload["plan_type"] = "mystery"

    snap = CodexProvider().normalize(payload)
    assert snap.secondary is None
    assert snap.code_review is None
    assert snap.plan_type is None


@pytest.mark.parametrize("payload", [{}, {"detail": "Unauthorized"}, [], "oops", None])
def test_codex_normalizer_rejects_unknown_shapes(payload) -> None:
    assert CodexProvider().normalize(payload) is None


def test_rate_limit_headers() -> None:
    snap = parse_rate_limit_headers(
        {
            "X-Codex-Primary-Used-Percent": "55.5",
            "x-codex-primary-window-minutes": "300",
            "x-codex-primary-reset-at": "1761000000",
            "x-codex-credits-has-credits": "true",
            "x-codex-credits-balance": "3.00",
        }
    )
    assert snap.primary.used_percent == 55.5
    assert snap.primary.window_minutes == 300
    assert snap.secondary is None
    assert snap.credits.has_credits is True
    assert parse_rate_limit_headers({"content-type": "application/json"}) is None


@pytest.mark.asyncio
async def test_codex_fetch_sends_account_header() -> None:
    seen: list[httpx.Request] = []
    payload = json.loads((FIXTURES / "codex_usage_sample.json").read_text())

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=payload)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ctx = FetchContext(client=client, config=Config())
        cred = OAuthCredential(access="tok", account_id="acct-9", label="work")
        snap = await CodexProvider().fetch_usage(cred, ctx)

    assert snap.account_label == "work"
    assert str(seen[0].url) == USAGE_URL
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert seen[0].headers["ChatGPT-Account-Id"] == "acct-9"


@pytest.mark.asyncio
async def test_codex_fetch_returns_none_on_http_error() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401))) as client:
        ctx = FetchContext(client=client, config=Config())
        assert await CodexProvider().fetch_usage(OAuthCredential(access="tok"), ctx) is None
        assert await CodexProvider().fetch_usage(ApiKeyCredential(key="k"), ctx) is None


@pytest.mark.asyncio
async def test_codex_fetch_falls_back_to_headers() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"detail": "shape changed"},
            headers={"x-codex-primary-used-percent": "12", "x-codex-secondary-used-percent": "3"},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        ctx = FetchContext(client=client, config=Config())
        snap = await CodexProvider().fetch_usage(OAuthCredential(access="tok", label="openai"), ctx)

    assert snap.primary.used_percent == 12.0
    assert snap.secondary.used_percent == 3.0
    assert snap.account_label == "openai"
