from __future__ import annotations

import logging

from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import ProviderCredential
from usagelens.models import ProviderName, ProxyProviderInfo, ProxyQuota, ProxyQuotaGroup, ProxyTierInfo, UsageSnapshot
from usagelens.providers.base import FetchContext, UsageProvider, clamp_percent, get_json, to_unix_seconds

logger = logging.getLogger(__name__)

QUOTA_STATS_PATH = "/v1/quota-stats"

# Upstream group name -> display name; unknown groups are dropped.
GROUP_MAPPING = {
    "claude": "claude",
    "g3-pro": "g3-pro",
    "g3-flash": "g3-fla",
    "pro": "g3-pro",
    "3-flash": "g3-fla",
}

TIER_ORDER = ("paid", "free")


class _ModelGroup(BaseModel):
    requests_max: float = 0
    requests_remaining: float = 0
    reset_time_iso: str | None = None


class _Credential(BaseModel):
    tier: str | None = None
    model_groups: dict[str, _ModelGroup] | None = None


class _Provider(BaseModel):
    credentials: list[_Credential] = []


class _Summary(BaseModel):
    total_credentials: int = 0
    active_credentials: int | None = None


class ProxyStatsResponse(BaseModel):
    providers: dict[str, _Provider]
    summary: _Summary | None = None
    global_summary: _Summary | None = None
    data_source: str | None = None
    timestamp: float | None = None


def normalize_tier(tier: str | None) -> str:
    if not tier or "free" in tier:
        return "free"
    return "paid"


def _remaining_pct(remaining: float, maximum: float) -> float:
    if maximum <= 0:
        return 0.0
    return clamp_percent(round(remaining / maximum * 100)) or 0.0


def _later(current: str | None, candidate: str | None) -> str | None:
    if candidate is None:
        return current
    if current is None:
        return candidate
    return candidate if (to_unix_seconds(candidate) or 0) > (to_unix_seconds(current) or 0) else current


def aggregate_by_tier(credentials: list[_Credential]) -> list[ProxyTierInfo]:
    """Sum quota groups across credentials, bucketed into paid and free tiers."""
    tiers: dict[str, dict[str, ProxyQuotaGroup]] = {tier: {} for tier in TIER_ORDER}

    for cred in credentials:
        bucket = tiers[normalize_tier(cred.tier)]
        for name, group in (cred.model_groups or {}).items():
            display = GROUP_MAPPING.get(name)
            if display is None:
                continue
            existing = bucket.get(display)
            if existing is None:
                bucket[display] = ProxyQuotaGroup(
                    name=display,
                    remaining=group.requests_remaining,
                    max=group.requests_max,
                    remaining_pct=0.0,
                    reset_time=group.reset_time_iso,
                )
                continue
            existing.remaining += group.requests_remaining
            existing.max += group.requests_max
            existing.reset_time = _later(existing.reset_time, group.reset_time_iso)

    result: list[ProxyTierInfo] = []
    for tier in TIER_ORDER:
        groups = list(tiers[tier].values())
        if not groups:
            continue
        for group in groups:
            group.remaining_pct = _remaining_pct(group.remaining, group.max)
        result.append(ProxyTierInfo(tier=tier, quota_groups=groups))
    return result


class ProxyProvider(UsageProvider):
    name = ProviderName.PROXY
    display_name = "Mirrowel Proxy"
    needs_credential = False

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        endpoint = ctx.config.proxy.endpoint.rstrip("/")
        if not endpoint:
            return None
        headers = {"Accept": "application/json"}
        if ctx.config.proxy.api_key:
            headers["Authorization"] = f"Bearer {ctx.config.proxy.api_key}"
        payload = await get_json(ctx.client, f"{endpoint}{QUOTA_STATS_PATH}", headers)
        if payload is None:
            return None
        return self.normalize(payload)

    def normalize(self, payload: object) -> UsageSnapshot | None:
        try:
            data = ProxyStatsResponse.model_validate(payload)
        except ValidationError as exc:
            logger.debug("unrecognized proxy quota payload: %s", exc.error_count())
            return None

        summary = data.global_summary or data.summary or _Summary()
        quota = ProxyQuota(
            providers=[
                ProxyProviderInfo(name=name, tiers=aggregate_by_tier(provider.credentials))
                for name, provider in data.providers.items()
            ],
            total_credentials=summary.total_credentials,
            active_credentials=summary.active_credentials or 0,
            data_source=data.data_source,
        )
        snapshot = UsageSnapshot(provider=self.name.value, proxy_quota=quota)
        stamp = to_unix_seconds(data.timestamp)
        if stamp is not None:
            snapshot.timestamp = stamp
        return snapshot

    def missing_details(self, ctx: FetchContext, attempted: bool) -> tuple[str, list[str]]:
        return "Proxy quota stats unavailable", [
            f"Endpoint: {ctx.config.proxy.endpoint.rstrip('/')}{QUOTA_STATS_PATH}",
            "Set `proxy.endpoint` with `usagelens config set` or disable the proxy provider.",
        ]
