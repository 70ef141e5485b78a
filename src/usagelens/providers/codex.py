from __future__ import annotations

import logging
from typing import Mapping

import httpx
from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import OAuthCredential, ProviderCredential
from usagelens.models import PLAN_TYPES, CreditsSnapshot, ProviderName, RateLimitWindow, UsageSnapshot
from usagelens.providers.base import FetchContext, UsageProvider, make_window

logger = logging.getLogger(__name__)

USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"


class _UsageWindow(BaseModel):
    used_percent: float
    limit_window_seconds: float
    reset_after_seconds: float
    reset_at: float


class _RateLimit(BaseModel):
    allowed: bool
    limit_reached: bool
    primary_window: _UsageWindow | None
    secondary_window: _UsageWindow | None


class _CodeReviewRateLimit(BaseModel):
    primary_window: _UsageWindow | None


class _Credits(BaseModel):
    has_credits: bool
    unlimited: bool
    balance: str | None


class CodexUsageResponse(BaseModel):
    plan_type: str | None
    rate_limit: _RateLimit
    code_review_rate_limit: _CodeReviewRateLimit | None = None
    credits: _Credits | None


def _to_window(window: _UsageWindow | None) -> RateLimitWindow | None:
    if window is None:
        return None
    return make_window(window.used_percent, round(window.limit_window_seconds / 60), window.reset_at)


def _plan_type(value: str | None) -> str | None:
    if value and value in PLAN_TYPES:
        return value
    return None


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    value = lowered.get(name)
    return value.strip() if isinstance(value, str) and value.strip() else None


def _header_number(headers: Mapping[str, str], name: str) -> float | None:
    raw = _header(headers, name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _header_bool(headers: Mapping[str, str], name: str) -> bool | None:
    raw = _header(headers, name)
    if raw is None:
        return None
    if raw.lower() in {"true", "1"}:
        return True
    if raw.lower() in {"false", "0"}:
        return False
    return None


def _header_window(headers: Mapping[str, str], prefix: str) -> RateLimitWindow | None:
    used = _header_number(headers, f"x-codex-{prefix}-used-percent")
    if used is None:
        return None
    minutes = _header_number(headers, f"x-codex-{prefix}-window-minutes")
    return make_window(
        used,
        int(minutes) if minutes is not None else None,
        _header_number(headers, f"x-codex-{prefix}-reset-at"),
    )


def parse_rate_limit_headers(headers: Mapping[str, str]) -> UsageSnapshot | None:
    primary = _header_window(headers, "primary")
    secondary = _header_window(headers, "secondary")
    credits = None
    has_credits = _header_bool(headers, "x-codex-credits-has-credits")
    if has_credits is not None:
        credits = CreditsSnapshot(
            has_credits=has_credits,
            unlimited=bool(_header_bool(headers, "x-codex-credits-unlimited")),
            balance=_header(headers, "x-codex-credits-balance"),
        )
    if primary is None and secondary is None and credits is None:
        return None
    return UsageSnapshot(provider=ProviderName.CODEX.value, primary=primary, secondary=secondary, credits=credits)


class CodexProvider(UsageProvider):
    name = ProviderName.CODEX
    display_name = "OpenAI"

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        if not isinstance(credential, OAuthCredential) or not credential.access:
            return None
        headers = {"Authorization": f"Bearer {credential.access}"}
        if credential.account_id:
            headers["ChatGPT-Account-Id"] = credential.account_id
        try:
            response = await ctx.client.get(USAGE_URL, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("GET %s failed: %s", USAGE_URL, exc)
            return None
        if not response.is_success:
            logger.debug("GET %s returned HTTP %s", USAGE_URL, response.status_code)
            return None
        try:
            snapshot = self.normalize(response.json())
        except ValueError:
            snapshot = None
        if snapshot is None:
            # Body shape unknown; the rate-limit headers may still carry the windows.
            snapshot = parse_rate_limit_headers(response.headers)
        if snapshot is not None:
            snapshot.account_label = credential.label
        return snapshot

    def normalize(self, payload: object) -> UsageSnapshot | None:
        try:
            parsed = CodexUsageResponse.model_validate(payload)
        except ValidationError as exc:
            logger.debug("unrecognized codex usage payload: %s", exc.error_count())
            return None

        code_review = None
        if parsed.code_review_rate_limit is not None:
            code_review = _to_window(parsed.code_review_rate_limit.primary_window)
        credits = None
        if parsed.credits is not None:
            credits = CreditsSnapshot(
                has_credits=parsed.credits.has_credits,
                unlimited=parsed.credits.unlimited,
                balance=parsed.credits.balance,
            )

        return UsageSnapshot(
            provider=self.name.value,
            plan_type=_plan_type(parsed.plan_type),
            primary=_to_window(parsed.rate_limit.primary_window),
            secondary=_to_window(parsed.rate_limit.secondary_window),
            code_review=code_review,
            credits=credits,
        )

    def missing_details(self, ctx: FetchContext, attempted: bool) -> tuple[str, list[str]]:
        if attempted:
            return "OpenAI usage request failed, timed out, or returned an unknown shape", [
                f"Endpoint: {USAGE_URL}",
                "The access token may be expired; re-login in the host or run `usagelens switch`.",
            ]
        return "No OpenAI/Codex OAuth credential found (labels: codex, openai)", list(ctx.diagnostics)
