from datetime import datetime

import httpx
import pytest

from usagelens.auth.registry import ApiKeyCredential
from usagelens.config import Config, ZaiConfig
from usagelens.providers.base import FetchContext
from usagelens.providers.zai import ZaiProvider, query_window

QUOTA = {
    "code": 200,
    "msg": "ok",
    "success": True,
    "data": {
        "limits": [
            {
                "type": "TOKENS_LIMIT",
                "unit": 3,
                "number": 5,
                "usage": 40000000,
                "currentValue": 12000000,
                "remaining": 28000000,
                "percentage": 30,
                "nextResetTime": 1760990000000,
            },
            {
                "type": "TIME_LIMIT",
                "usage": 100,
                "currentValue": 140,
                "remaining": 0,
                "percentage": 140,
                "usageDetails": [{"modelCode": "search-prime", "usage": 140}],
            },
        ]
    },
}

MODEL = {"data": {"x_time": [], "totalUsage": {"totalModelCallCount": 12, "totalTokensUsage": 3400}}}


def test_query_window_is_hour_aligned() -> None:
    window = query_window(datetime(2025, 10, 19, 14, 37, 12))
    assert window == {"startTime": "2025-10-18 14:00:00", "endTime": "2025-10-19 14:00:00"}


def test_zai_normalizer() -> None:
    snap = ZaiProvider().normalize({"quota": QUOTA, "model": MODEL, "tool": None})

    tokens, calls = snap.zai_quota.limits
    assert tokens.type == "TOKENS_LIMIT"
    assert tokens.percentage == 30.0
    assert tokens.next_reset_time == 1760990000
    assert calls.percentage == 100.0
    assert calls.next_reset_time is None
    assert calls.usage_details == [{"modelCode": "search-prime", "usage": 140}]
    assert snap.zai_quota.model_usage == {"totalModelCallCount": 12, "totalTokensUsage": 3400}
    assert snap.zai_quota.tool_usage is None
    assert snap.plan_type is None


@pytest.mark.parametrize("payload", [None, {}, {"quota": {"code": 401, "msg": "bad key"}}, {"quota": {"data": {"limits": []}}}])
def test_zai_normalizer_rejects_unknown_shapes(payload) -> None:
    assert ZaiProvider().normalize(payload) is None


@pytest.mark.asyncio
async def test_zai_fetch_sends_raw_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path.endswith("/quota/limit"):
            return httpx.Response(200, json=QUOTA)
        return httpx.Response(500)

    cfg = Config(zai=ZaiConfig(endpoint="https://open.bigmodel.cn/"))
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        snap = await ZaiProvider().fetch_usage(ApiKeyCredential(key="zk-1"), FetchContext(client=client, config=cfg))

    assert snap is not None
    assert snap.zai_quota.model_usage is None
    assert {r.url.host for r in seen} == {"open.bigmodel.cn"}
    assert all(r.headers["Authorization"] == "zk-1" for r in seen)
    model_request = next(r for r in seen if r.url.path.endswith("/model-usage"))
    assert "startTime" in model_request.url.params
