from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging

from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import ApiKeyCredential, ProviderCredential
from usagelens.models import ProviderName, UsageSnapshot, ZaiLimit, ZaiQuota
from usagelens.providers.base import FetchContext, UsageProvider, clamp_percent, get_json, to_unix_seconds

logger = logging.getLogger(__name__)

MONITOR_PATH = "/api/monitor/usage"
WINDOW = timedelta(hours=24)
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class _UsageDetail(BaseModel):
    modelCode: str | None = None
    usage: float | None = None


class _QuotaLimit(BaseModel):
    type: str
    usage: float | None = None
    currentValue: float | None = None
    remaining: float | None = None
    percentage: float = 0
    nextResetTime: float | None = None
    usageDetails: list[_UsageDetail] = []


class _QuotaData(BaseModel):
    limits: list[_QuotaLimit]


class ZaiQuotaResponse(BaseModel):
    data: _QuotaData


class _TotalUsage(BaseModel):
    totalUsage: dict[str, object] | None = None


class ZaiUsageResponse(BaseModel):
    data: _TotalUsage | None = None


def query_window(now: datetime | None = None) -> dict[str, str]:
    """Last full 24 hours, aligned to the start of the current hour."""
    end = (now or datetime.now()).replace(minute=0, second=0, microsecond=0)
    start = end - WINDOW
    return {"startTime": start.strftime(TIME_FORMAT), "endTime": end.strftime(TIME_FORMAT)}


def _total_usage(raw: object) -> dict[str, object] | None:
    if raw is None:
        return None
    try:
        parsed = ZaiUsageResponse.model_validate(raw)
    except ValidationError:
        return None
    return parsed.data.totalUsage if parsed.data is not None else None


class ZaiProvider(UsageProvider):
    name = ProviderName.ZAI
    display_name = "Z.ai GLM Coding Plan"

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        if not isinstance(credential, ApiKeyCredential):
            return None
        base = ctx.config.zai.endpoint.rstrip("/") or "https://api.z.ai"
        monitor = f"{base}{MONITOR_PATH}"
        headers = {
            "Authorization": credential.key,
            "Accept-Language": "en-US,en",
            "Content-Type": "application/json",
        }
        params = query_window()
        quota, model, tool = await asyncio.gather(
            get_json(ctx.client, f"{monitor}/quota/limit", headers),
            get_json(ctx.client, f"{monitor}/model-usage", headers, params=params),
            get_json(ctx.client, f"{monitor}/tool-usage", headers, params=params),
        )
        if quota is None:
            return None
        return self.normalize({"quota": quota, "model": model, "tool": tool})

    def normalize(self, payload: object) -> UsageSnapshot | None:
        if not isinstance(payload, dict):
            return None
        try:
            quota = ZaiQuotaResponse.model_validate(payload.get("quota"))
        except ValidationError as exc:
            logger.debug("unrecognized z.ai quota payload: %s", exc.error_count())
            return None

        limits = [
            ZaiLimit(
                type=limit.type,
                usage=limit.usage,
                current_value=limit.currentValue,
                remaining=limit.remaining,
                percentage=clamp_percent(limit.percentage) or 0.0,
                next_reset_time=to_unix_seconds(limit.nextResetTime),
                usage_details=[d.model_dump(exclude_none=True) for d in limit.usageDetails],
            )
            for limit in quota.data.limits
        ]
        if not limits:
            return None

        return UsageSnapshot(
            provider=self.name.value,
            zai_quota=ZaiQuota(
                limits=limits,
                model_usage=_total_usage(payload.get("model")),
                tool_usage=_total_usage(payload.get("tool")),
            ),
        )
