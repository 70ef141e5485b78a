from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
from pathlib import Path
from typing import Mapping

import httpx

from usagelens.auth.registry import ProviderCredential
from usagelens.config import Config
from usagelens.models import ProviderName, RateLimitWindow, UsageSnapshot
from usagelens.paths import copilot_usage_token_path

logger = logging.getLogger(__name__)

# Anything above this is taken to be epoch milliseconds.
_MS_THRESHOLD = 10_000_000_000


@dataclass(frozen=True)
class FetchContext:
    """Read-only inputs shared by every fetch in one aggregation."""

    client: httpx.AsyncClient
    config: Config
    records: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    diagnostics: tuple[str, ...] = ()
    copilot_token_path: Path = field(default_factory=copilot_usage_token_path)
    copilot_token: str | None = None


class UsageProvider(ABC):
    name: ProviderName
    display_name: str
    needs_credential: bool = True

    @abstractmethod
    async def fetch_usage(self, credential: ProviderCredential | None, ctx: FetchContext) -> UsageSnapshot | None:
        raise NotImplementedError

    @abstractmethod
    def normalize(self, payload: object) -> UsageSnapshot | None:
        raise NotImplementedError

    def missing_details(self, ctx: FetchContext, attempted: bool) -> tuple[str, list[str]]:
        if attempted:
            return f"{self.display_name} returned no usable data", []
        return f"No {self.display_name} credential found", list(ctx.diagnostics)


def clamp_percent(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value):
        return None
    return max(0.0, min(100.0, float(value)))


def to_unix_seconds(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value) or value <= 0:
            return None
        if value > _MS_THRESHOLD:
            return int(value // 1000)
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return to_unix_seconds(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())
    return None


def make_window(used_percent: object, window_minutes: int | None = None, resets_at: object = None) -> RateLimitWindow | None:
    used = clamp_percent(used_percent)
    if used is None:
        return None
    return RateLimitWindow(used_percent=used, window_minutes=window_minutes, resets_at=to_unix_seconds(resets_at))


async def get_json(client: httpx.AsyncClient, url: str, headers: Mapping[str, str], **kwargs) -> object | None:
    try:
        response = await client.get(url, headers=dict(headers), **kwargs)
    except httpx.HTTPError as exc:
        logger.debug("GET %s failed: %s", url, exc)
        return None
    if not response.is_success:
        logger.debug("GET %s returned HTTP %s", url, response.status_code)
        return None
    try:
        return response.json()
    except ValueError:
        logger.debug("GET %s returned a non-JSON body", url)
        return None
