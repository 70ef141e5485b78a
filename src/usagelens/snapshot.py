from __future__ import annotations

import asyncio
from dataclasses import asdict
import json
import logging
from typing import Awaitable, Mapping

import httpx

from usagelens import paths
from usagelens.auth.registry import ResolveOptions, resolve
from usagelens.auth.store import CredentialStore
from usagelens.config import Config, load_config
from usagelens.models import CORE_PROVIDERS, ProviderName, UsageSnapshot, missing_snapshot
from usagelens.providers import PROVIDERS, FetchContext, UsageProvider
from usagelens.providers.copilot import read_usage_token

logger = logging.getLogger(__name__)

# Extra time the whole batch gets on top of the per-call timeout.
BATCH_GRACE_SECONDS = 2.0

PROVIDER_ALIASES = {
    "codex": "codex",
    "openai": "codex",
    "gpt": "codex",
    "anthropic": "anthropic",
    "claude": "anthropic",
    "copilot": "copilot",
    "gh": "copilot",
    "github": "copilot",
    "proxy": "proxy",
    "agy": "proxy",
    "antigravity": "proxy",
    "gemini": "proxy",
    "zai": "zai-coding-plan",
    "glm": "zai-coding-plan",
    "zai-coding-plan": "zai-coding-plan",
    "openrouter": "openrouter",
    "or": "openrouter",
}


def resolve_provider_filter(text: str | None) -> str | None:
    """Map free-text filter input to a provider id; unknown text means no filter."""
    if not text:
        return None
    return PROVIDER_ALIASES.get(text.strip().lower())


async def _guarded(provider_id: str, call: Awaitable[UsageSnapshot | None], timeout: float) -> UsageSnapshot | None:
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError:
        logger.warning("%s usage fetch timed out after %ss", provider_id, timeout)
    except Exception as exc:  # fail open per provider
        logger.warning("%s usage fetch failed: %s", provider_id, exc)
        logger.debug("%s failure detail", provider_id, exc_info=True)
    return None


async def _run_batch(jobs: list[tuple[str, Awaitable[UsageSnapshot | None]]], timeout: float) -> list[UsageSnapshot]:
    if not jobs:
        return []
    tasks = [asyncio.create_task(_guarded(pid, call, timeout)) for pid, call in jobs]
    done, pending = await asyncio.wait(tasks, timeout=timeout + BATCH_GRACE_SECONDS)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning("batch deadline hit; dropping %d unfinished fetches", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)
    return [t.result() for t in done if t.result() is not None]


async def collect_snapshots(
    provider_filter: str | None = None,
    options: ResolveOptions | None = None,
    *,
    config: Config | None = None,
    store: CredentialStore | None = None,
    client: httpx.AsyncClient | None = None,
    providers: Mapping[str, UsageProvider] = PROVIDERS,
) -> list[UsageSnapshot]:
    """Fetch usage from every enabled provider concurrently.

    Never raises for a provider failure. Core providers that yield nothing
    come back as ``is_missing`` placeholders. Order is not guaranteed.
    """
    cfg = config or load_config()
    store = store or CredentialStore()
    opts = options or ResolveOptions(rotate_accounts=cfg.general.rotate_accounts)
    target = resolve_provider_filter(provider_filter)

    def wanted(provider_id: str) -> bool:
        return cfg.is_enabled(provider_id) and (target is None or target == provider_id)

    loaded = store.load()
    records = loaded.records
    accounts = store.load_accounts() if opts.rotate_accounts else {}

    entries = [e for e in resolve(records, opts, accounts=accounts) if wanted(e.provider_id) and e.provider_id in providers]
    timeout = cfg.timeout_seconds

    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout)
    try:
        token_path = paths.copilot_usage_token_path()
        ctx = FetchContext(
            client=http,
            config=cfg,
            records=records,
            diagnostics=tuple(loaded.diagnostics),
            copilot_token_path=token_path,
            copilot_token=read_usage_token(token_path, records) if wanted(ProviderName.COPILOT.value) else None,
        )
        jobs = [(e.provider_id, providers[e.provider_id].fetch_usage(e.credential, ctx)) for e in entries]
        attempted = {e.provider_id for e in entries}
        for provider_id, provider in providers.items():
            if provider.needs_credential or not wanted(provider_id):
                continue
            jobs.append((provider_id, provider.fetch_usage(None, ctx)))
            attempted.add(provider_id)

        logger.debug("fetching usage for %s", ", ".join(pid for pid, _ in jobs) or "nothing")
        snapshots = await _run_batch(jobs, timeout)

        produced = {s.provider for s in snapshots}
        for name in CORE_PROVIDERS:
            provider = providers.get(name.value)
            if provider is None or name.value in produced or not wanted(name.value):
                continue
            reason, details = provider.missing_details(ctx, name.value in attempted)
            snapshots.append(missing_snapshot(name.value, reason, details))
    finally:
        if owns_client:
            await http.aclose()

    return snapshots


def snapshot_to_json(snapshots: list[UsageSnapshot]) -> str:
    return json.dumps([asdict(s) for s in snapshots], indent=2)
