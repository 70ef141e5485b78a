from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class ProviderName(str, Enum):
    CODEX = "codex"
    ANTHROPIC = "anthropic"
    COPILOT = "copilot"
    PROXY = "proxy"
    ZAI = "zai-coding-plan"
    OPENROUTER = "openrouter"


CORE_PROVIDERS: tuple[ProviderName, ...] = (
    ProviderName.CODEX,
    ProviderName.ANTHROPIC,
    ProviderName.COPILOT,
    ProviderName.PROXY,
)

PLAN_TYPES = frozenset(
    {
        "guest",
        "free",
        "go",
        "plus",
        "pro",
        "max",
        "max_5x",
        "max_20x",
        "free_workspace",
        "team",
        "business",
        "education",
        "quorum",
        "k12",
        "enterprise",
        "edu",
    }
)


@dataclass
class RateLimitWindow:
    used_percent: float
    window_minutes: int | None = None
    resets_at: int | None = None


@dataclass
class CreditsSnapshot:
    has_credits: bool
    unlimited: bool
    balance: str | None = None


@dataclass
class CopilotQuota:
    used: int
    total: int
    percent_remaining: float
    reset_time: str | None = None
    completions_used: int | None = None
    completions_total: int | None = None


@dataclass
class ProxyQuotaGroup:
    name: str
    remaining: float
    max: float
    remaining_pct: float
    reset_time: str | None = None


@dataclass
class ProxyTierInfo:
    tier: str
    quota_groups: list[ProxyQuotaGroup] = field(default_factory=list)


@dataclass
class ProxyProviderInfo:
    name: str
    tiers: list[ProxyTierInfo] = field(default_factory=list)


@dataclass
class ProxyQuota:
    providers: list[ProxyProviderInfo]
    total_credentials: int
    active_credentials: int
    data_source: str | None = None


@dataclass
class ZaiLimit:
    type: str
    usage: float | None
    current_value: float | None
    remaining: float | None
    percentage: float
    next_reset_time: int | None = None
    usage_details: list[dict[str, object]] = field(default_factory=list)


@dataclass
class ZaiQuota:
    limits: list[ZaiLimit]
    model_usage: dict[str, object] | None = None
    tool_usage: dict[str, object] | None = None


@dataclass
class AnthropicLimit:
    key: str
    label: str
    utilization: float
    resets_at: int | None = None


@dataclass
class AnthropicExtraUsage:
    is_enabled: bool
    monthly_limit: str | None = None
    used_credits: str | None = None
    utilization: float | None = None


@dataclass
class AnthropicSubscription:
    organization_type: str | None = None
    rate_limit_tier: str | None = None
    subscription_status: str | None = None
    has_claude_max: bool = False
    has_claude_pro: bool = False


@dataclass
class AnthropicQuota:
    limits: list[AnthropicLimit]
    extra_usage: AnthropicExtraUsage | None = None
    subscription: AnthropicSubscription = field(default_factory=AnthropicSubscription)
    account_email: str | None = None


@dataclass
class OpenRouterQuota:
    limit: float | None
    usage: float
    limit_remaining: float | None
    usage_daily: float = 0.0
    usage_weekly: float = 0.0
    usage_monthly: float = 0.0
    is_free_tier: bool = False


@dataclass
class UsageSnapshot:
    provider: str
    timestamp: int = field(default_factory=lambda: int(time.time()))
    plan_type: str | None = None
    primary: RateLimitWindow | None = None
    secondary: RateLimitWindow | None = None
    code_review: RateLimitWindow | None = None
    credits: CreditsSnapshot | None = None
    copilot_quota: CopilotQuota | None = None
    proxy_quota: ProxyQuota | None = None
    zai_quota: ZaiQuota | None = None
    anthropic_quota: AnthropicQuota | None = None
    openrouter_quota: OpenRouterQuota | None = None
    account_label: str | None = None
    is_missing: bool = False
    missing_reason: str | None = None
    missing_details: list[str] = field(default_factory=list)


def missing_snapshot(provider: str, reason: str, details: list[str] | None = None) -> UsageSnapshot:
    return UsageSnapshot(
        provider=provider,
        is_missing=True,
        missing_reason=reason,
        missing_details=list(details or []),
    )
