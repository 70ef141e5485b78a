from datetime import datetime, timezone
import json
from pathlib import Path

import httpx
import pytest

from usagelens.auth.registry import OAuthCredential
from usagelens.config import Config
from usagelens.providers.anthropic import BETA_HEADER, PROFILE_URL, USAGE_URL, AnthropicProvider
from usagelens.providers.base import FetchContext

FIXTURES = Path(__file__).parent / "fixtures"


def _load(name: str) -> dict:
    return json.loads((FIXTURES / name).read_text())


def test_anthropic_normalizer_builds_limits_and_plan() -> None:
    snap = AnthropicProvider().normalize(
        {"usage": _load("anthropic_usage_sample.json"), "profile": _load("anthropic_profile_sample.json")}
    )

    assert snap is not None
    assert snap.plan_type == "max_20x"
    assert snap.primary.used_percent == 42.0
    assert snap.primary.window_minutes == 300
    assert snap.primary.resets_at == int(datetime(2025, 10, 20, 15, tzinfo=timezone.utc).timestamp())
    assert snap.secondary.window_minutes == 10080

    quota = snap.anthropic_quota
    assert [limit.label for limit in quota.limits] == ["5-Hour", "7-Day (All)", "7-Day (Sonnet)", "7-Day (Opus)"]
    assert quota.limits[-1].utilization == 100.0
    assert quota.limits[-1].resets_at is None
    assert quota.extra_usage.is_enabled is True
    assert quota.extra_usage.monthly_limit == "5000"
    assert quota.account_email == "dev@example.com"


def test_anthropic_normalizer_without_profile() -> None:
    snap = AnthropicProvider().normalize({"usage": _load("anthropic_usage_sample.json"), "profile": None})
    assert snap.plan_type is None
    assert snap.anthropic_quota.account_email is None


def test_anthropic_unknown_limit_keys_are_humanized() -> None:
    snap = AnthropicProvider().normalize({"usage": {"seven_day_haiku": {"utilization": 3}}})
    assert snap.anthropic_quota.limits[0].label == "Seven Day Haiku"
    assert snap.primary is None


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"usage": {}}, {"usage": {"error": {"type": "authentication_error"}}}, {"usage": []}],
)
def test_anthropic_normalizer_rejects_unknown_shapes(payload) -> None:
    assert AnthropicProvider().normalize(payload) is None


@pytest.mark.asyncio
async def test_anthropic_fetch_tolerates_profile_failure() -> None:
    usage = _load("anthropic_usage_sample.json")
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if str(request.url) == PROFILE_URL:
            return httpx.Response(500)
        return httpx.Response(200, json=usage)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        snap = await AnthropicProvider().fetch_usage(OAuthCredential(access="sk"), FetchContext(client=client, config=Config()))

    assert snap is not None
    assert snap.plan_type is None
    usage_request = next(r for r in seen if str(r.url) == USAGE_URL)
    assert usage_request.headers["anthropic-beta"] == BETA_HEADER
    assert usage_request.headers["Authorization"] == "Bearer sk"
