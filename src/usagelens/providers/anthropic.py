from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, ConfigDict, ValidationError

from usagelens.auth.registry import OAuthCredential, ProviderCredential
from usagelens.models import (
    AnthropicExtraUsage,
    AnthropicLimit,
    AnthropicQuota,
    AnthropicSubscription,
    ProviderName,
    UsageSnapshot,
)
from usagelens.providers.base import FetchContext, UsageProvider, clamp_percent, get_json, make_window, to_unix_seconds

logger = logging.getLogger(__name__)

USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
PROFILE_URL = "https://api.anthropic.com/api/oauth/profile"
BETA_HEADER = "oauth-2025-04-20"
USER_AGENT = "claude-code/2.0.32"

FIVE_HOUR_MINUTES = 300
SEVEN_DAY_MINUTES = 10080

KNOWN_LIMIT_ORDER = (
    "five_hour",
    "seven_day",
    "seven_day_oauth_apps",
    "seven_day_sonnet",
    "seven_day_opus",
    "seven_day_cowork",
    "iguana_necktie",
)

LIMIT_LABELS = {
    "five_hour": "5-Hour",
    "seven_day": "7-Day (All)",
    "seven_day_oauth_apps": "7-Day (OAuth Apps)",
    "seven_day_sonnet": "7-Day (Sonnet)",
    "seven_day_opus": "7-Day (Opus)",
    "seven_day_cowork": "7-Day (Co-work)",
    "iguana_necktie": "Iguana Necktie",
}


class _UsageWindow(BaseModel):
    utilization: float | None = None
    resets_at: str | None = None


class _ExtraUsage(BaseModel):
    is_enabled: bool = False
    monthly_limit: float | str | None = None
    used_credits: float | str | None = None
    utilization: float | None = None


class _Account(BaseModel):
    email: str | None = None
    has_claude_max: bool = False
    has_claude_pro: bool = False


class _Organization(BaseModel):
    organization_type: str | None = None
    rate_limit_tier: str | None = None
    subscription_status: str | None = None


class AnthropicProfileResponse(BaseModel):
    account: _Account = _Account()
    organization: _Organization = _Organization()


class AnthropicUsageResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    five_hour: _UsageWindow | None = None
    seven_day: _UsageWindow | None = None
    extra_usage: _ExtraUsage | None = None


def _as_text(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _humanize(key: str) -> str:
    return " ".join(token[:1].upper() + token[1:] for token in key.split("_") if token)


def extract_limits(raw: dict) -> list[AnthropicLimit]:
    known = [k for k in KNOWN_LIMIT_ORDER if k in raw]
    extras = [k for k in raw if k not in KNOWN_LIMIT_ORDER and k != "extra_usage"]
    limits: list[AnthropicLimit] = []
    for key in known + extras:
        candidate = raw.get(key)
        if not isinstance(candidate, dict) or not ("utilization" in candidate or "resets_at" in candidate):
            continue
        try:
            window = _UsageWindow.model_validate(candidate)
        except ValidationError:
            continue
        utilization = clamp_percent(window.utilization)
        resets_at = to_unix_seconds(window.resets_at)
        if utilization is None and resets_at is None:
            continue
        limits.append(
            AnthropicLimit(
                key=key,
                label=LIMIT_LABELS.get(key, _humanize(key)),
                utilization=utilization if utilization is not None else 0.0,
                resets_at=resets_at,
            )
        )
    return limits


def infer_plan_type(profile: AnthropicProfileResponse | None) -> str | None:
    if profile is None:
        return None
    org_type = (profile.organization.organization_type or "").lower()
    tier = (profile.organization.rate_limit_tier or "").lower()

    if "max_20" in tier:
        return "max_20x"
    if "max_5" in tier:
        return "max_5x"
    if "max" in org_type:
        return "max"
    if "enterprise" in org_type:
        return "enterprise"
    if "team" in org_type:
        return "team"
    if "pro" in org_type:
        return "pro"
    if profile.account.has_claude_max:
        return "max"
    if profile.account.has_claude_pro:
        return "pro"
    return None


class AnthropicProvider(UsageProvider):
    name = ProviderName.ANTHROPIC
    display_name = "Anthropic"

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        if not isinstance(credential, OAuthCredential) or not credential.access:
            return None
        headers = {
            "Authorization": f"Bearer {credential.access}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "anthropic-beta": BETA_HEADER,
        }
        # The profile only adds plan details; usage alone is enough.
        usage, profile = await asyncio.gather(
            get_json(ctx.client, USAGE_URL, headers),
            get_json(ctx.client, PROFILE_URL, headers),
        )
        if usage is None:
            return None
        return self.normalize({"usage": usage, "profile": profile})

    def normalize(self, payload: object) -> UsageSnapshot | None:
        if not isinstance(payload, dict) or not isinstance(payload.get("usage"), dict):
            return None
        raw_usage = payload["usage"]
        try:
            usage = AnthropicUsageResponse.model_validate(raw_usage)
        except ValidationError as exc:
            logger.debug("unrecognized anthropic usage payload: %s", exc.error_count())
            return None

        profile = None
        if isinstance(payload.get("profile"), dict):
            try:
                profile = AnthropicProfileResponse.model_validate(payload["profile"])
            except ValidationError:
                logger.debug("ignoring unrecognized anthropic profile payload")

        limits = extract_limits(raw_usage)
        if not limits:
            return None

        extra = None
        if usage.extra_usage is not None:
            extra = AnthropicExtraUsage(
                is_enabled=usage.extra_usage.is_enabled,
                monthly_limit=_as_text(usage.extra_usage.monthly_limit),
                used_credits=_as_text(usage.extra_usage.used_credits),
                utilization=clamp_percent(usage.extra_usage.utilization),
            )

        subscription = AnthropicSubscription()
        email = None
        if profile is not None:
            subscription = AnthropicSubscription(
                organization_type=profile.organization.organization_type,
                rate_limit_tier=profile.organization.rate_limit_tier,
                subscription_status=profile.organization.subscription_status,
                has_claude_max=profile.account.has_claude_max,
                has_claude_pro=profile.account.has_claude_pro,
            )
            email = profile.account.email

        primary = None
        if usage.five_hour is not None:
            primary = make_window(usage.five_hour.utilization, FIVE_HOUR_MINUTES, usage.five_hour.resets_at)
        secondary = None
        if usage.seven_day is not None:
            secondary = make_window(usage.seven_day.utilization, SEVEN_DAY_MINUTES, usage.seven_day.resets_at)

        return UsageSnapshot(
            provider=self.name.value,
            plan_type=infer_plan_type(profile),
            primary=primary,
            secondary=secondary,
            anthropic_quota=AnthropicQuota(
                limits=limits,
                extra_usage=extra,
                subscription=subscription,
                account_email=email,
            ),
        )

    def missing_details(self, ctx: FetchContext, attempted: bool) -> tuple[str, list[str]]:
        if attempted:
            return "Anthropic usage request failed, timed out, or returned an unknown shape", [f"Endpoint: {USAGE_URL}"]
        details = list(ctx.diagnostics)
        details.append("Also checked $CLAUDE_CODE_OAUTH_TOKEN and the Claude Code credentials file")
        return "No Anthropic OAuth credential found (labels: anthropic, claude)", details
