from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import ApiKeyCredential, ProviderCredential
from usagelens.models import CreditsSnapshot, OpenRouterQuota, ProviderName, RateLimitWindow, UsageSnapshot
from usagelens.providers.base import FetchContext, UsageProvider, get_json, make_window

logger = logging.getLogger(__name__)

KEY_URL = "https://openrouter.ai/api/v1/key"
UNLIMITED = -1


class _KeyData(BaseModel):
    label: str | None = None
    limit: float | None
    limit_reset: str | None = None
    limit_remaining: float | None
    usage: float
    usage_daily: float = 0
    usage_weekly: float = 0
    usage_monthly: float = 0
    is_free_tier: bool = False


class OpenRouterKeyResponse(BaseModel):
    data: _KeyData


def _is_unlimited(limit: float | None) -> bool:
    return limit is None or limit == UNLIMITED


def _spend_window(data: _KeyData) -> RateLimitWindow | None:
    if data.limit is None or data.limit <= 0:
        return None
    return make_window(data.usage / data.limit * 100, None, data.limit_reset)


class OpenRouterProvider(UsageProvider):
    name = ProviderName.OPENROUTER
    display_name = "OpenRouter"

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        if not isinstance(credential, ApiKeyCredential):
            return None
        headers = {"Authorization": f"Bearer {credential.key}", "Content-Type": "application/json"}
        payload = await get_json(ctx.client, KEY_URL, headers)
        if payload is None:
            return None
        return self.normalize(payload)

    def normalize(self, payload: object) -> UsageSnapshot | None:
        try:
            data = OpenRouterKeyResponse.model_validate(payload).data
        except ValidationError as exc:
            logger.debug("unrecognized openrouter key payload: %s", exc.error_count())
            return None

        unlimited = _is_unlimited(data.limit)
        if unlimited:
            balance = "Unlimited"
        elif data.limit_remaining is not None:
            balance = f"${data.limit_remaining:.2f}"
        else:
            balance = None

        return UsageSnapshot(
            provider=self.name.value,
            plan_type="free" if data.is_free_tier else None,
            primary=_spend_window(data),
            credits=CreditsSnapshot(has_credits=True, unlimited=unlimited, balance=balance),
            openrouter_quota=OpenRouterQuota(
                limit=None if unlimited else data.limit,
                usage=data.usage,
                limit_remaining=data.limit_remaining,
                usage_daily=data.usage_daily,
                usage_weekly=data.usage_weekly,
                usage_monthly=data.usage_monthly,
                is_free_tier=data.is_free_tier,
            ),
        )
