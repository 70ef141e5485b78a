from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Mapping

import httpx
from pydantic import BaseModel, ValidationError

from usagelens.auth.registry import ProviderCredential
from usagelens.models import CopilotQuota, ProviderName, UsageSnapshot
from usagelens.providers.base import FetchContext, UsageProvider, clamp_percent

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
INTERNAL_USER_URL = f"{GITHUB_API_BASE_URL}/copilot_internal/user"
TOKEN_EXCHANGE_URL = f"{GITHUB_API_BASE_URL}/copilot_internal/v2/token"

COPILOT_VERSION = "0.35.0"
COPILOT_HEADERS = {
    "User-Agent": f"GitHubCopilotChat/{COPILOT_VERSION}",
    "Editor-Version": "vscode/1.107.0",
    "Editor-Plugin-Version": f"copilot-chat/{COPILOT_VERSION}",
    "Copilot-Integration-Id": "vscode-chat",
}

STORE_LABELS = ("github-copilot", "copilot")
UNLIMITED = -1


class _LimitedQuotas(BaseModel):
    chat: float | None = None
    completions: float | None = None


class _MonthlyQuotas(BaseModel):
    chat: float | None = None
    completions: float | None = None


class _PremiumInteractions(BaseModel):
    entitlement: float = 0
    percent_remaining: float = 0
    remaining: float = 0
    unlimited: bool = False


class _QuotaSnapshots(BaseModel):
    premium_interactions: _PremiumInteractions | None = None


class CopilotUserResponse(BaseModel):
    limited_user_quotas: _LimitedQuotas | None = None
    limited_user_reset_date: str | None = None
    quota_reset_date: str | None = None
    quota_snapshots: _QuotaSnapshots | None = None
    monthly_quotas: _MonthlyQuotas | None = None


def _scaled(remaining_raw: float, total_raw: float, scale_at: float, factor: int) -> tuple[int, int]:
    # Free-tier counters are reported in fractional units.
    scale = factor if total_raw == scale_at else 1
    return int(remaining_raw // scale), int(total_raw // scale)


def _percent(remaining: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return clamp_percent(round(remaining / total * 100)) or 0.0


def read_usage_token(token_path: Path, records: Mapping[str, Mapping[str, object]]) -> str | None:
    """GitHub OAuth token for Copilot, from the login token file or the store."""
    if token_path.exists():
        try:
            data = json.loads(token_path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.debug("unreadable copilot token file %s: %s", token_path, exc)
        else:
            if isinstance(data, dict) and isinstance(data.get("token"), str) and data["token"]:
                return data["token"]

    for label in STORE_LABELS:
        record = records.get(label)
        if not isinstance(record, Mapping):
            continue
        token = record.get("refresh") or record.get("access")
        if isinstance(token, str) and token:
            return token
    return None


def write_usage_token(token_path: Path, token: str) -> Path:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(json.dumps({"token": token}, indent=2))
    logger.info("stored copilot usage token in %s", token_path)
    return token_path


class CopilotProvider(UsageProvider):
    name = ProviderName.COPILOT
    display_name = "GitHub Copilot"
    needs_credential = False

    async def _get_user(self, client: httpx.AsyncClient, authorization: str) -> httpx.Response | None:
        headers = {"Accept": "application/json", "Authorization": authorization, **COPILOT_HEADERS}
        try:
            return await client.get(INTERNAL_USER_URL, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("copilot user request failed: %s", exc)
            return None

    async def _exchange_token(self, client: httpx.AsyncClient, oauth_token: str) -> str | None:
        headers = {"Accept": "application/json", "Authorization": f"Bearer {oauth_token}", **COPILOT_HEADERS}
        try:
            response = await client.get(TOKEN_EXCHANGE_URL, headers=headers)
        except httpx.HTTPError as exc:
            logger.debug("copilot token exchange failed: %s", exc)
            return None
        if not response.is_success:
            logger.debug("copilot token exchange returned HTTP %s", response.status_code)
            return None
        try:
            token = response.json().get("token")
        except (ValueError, AttributeError):
            return None
        return token if isinstance(token, str) and token else None

    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        oauth_token = ctx.copilot_token
        if oauth_token is None:
            return None

        response = await self._get_user(ctx.client, f"token {oauth_token}")
        if response is None or not response.is_success:
            exchanged = await self._exchange_token(ctx.client, oauth_token)
            if exchanged is not None:
                response = await self._get_user(ctx.client, f"Bearer {exchanged}")
        if response is None or not response.is_success:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        return self.normalize(payload)

    def normalize(self, payload: object) -> UsageSnapshot | None:
        try:
            data = CopilotUserResponse.model_validate(payload)
        except ValidationError as exc:
            logger.debug("unrecognized copilot payload: %s", exc.error_count())
            return None

        quota = None
        if data.limited_user_quotas is not None:
            monthly = data.monthly_quotas or _MonthlyQuotas()
            chat_remaining, chat_total = _scaled(
                data.limited_user_quotas.chat or 0, monthly.chat or 0, 500, 10
            )
            comp_remaining, comp_total = _scaled(
                data.limited_user_quotas.completions or 0,
                monthly.completions if monthly.completions is not None else 2000,
                4000,
                2,
            )
            quota = CopilotQuota(
                used=max(0, chat_total - chat_remaining),
                total=chat_total,
                percent_remaining=_percent(chat_remaining, chat_total),
                reset_time=data.limited_user_reset_date or data.quota_reset_date,
                completions_used=max(0, comp_total - comp_remaining),
                completions_total=comp_total,
            )
        elif data.quota_snapshots is not None and data.quota_snapshots.premium_interactions is not None:
            premium = data.quota_snapshots.premium_interactions
            if premium.unlimited:
                used, total = UNLIMITED, UNLIMITED
            else:
                remaining, total = _scaled(premium.remaining, premium.entitlement, 500, 10)
                used = max(0, total - remaining)
            quota = CopilotQuota(
                used=used,
                total=total,
                percent_remaining=clamp_percent(round(premium.percent_remaining)) or 0.0,
                reset_time=data.quota_reset_date,
            )

        if quota is None:
            return None
        return UsageSnapshot(provider=self.name.value, copilot_quota=quota)

    def missing_details(self, ctx: FetchContext, attempted: bool) -> tuple[str, list[str]]:
        if ctx.copilot_token is None:
            return "No Copilot token found", [
                f"Token file: {ctx.copilot_token_path}",
                f"Store labels checked: {', '.join(STORE_LABELS)}",
                "Run `usagelens login copilot` to authorize.",
            ]
        return "Copilot usage request failed, timed out, or returned an unknown shape", [
            f"Endpoint: {INTERNAL_USER_URL}",
            "The token may lack Copilot access; run `usagelens login copilot` again.",
        ]
