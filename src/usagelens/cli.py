from __future__ import annotations

import argparse
import asyncio
from dataclasses import asdict
import json
import logging
import platform

import httpx
from rich.console import Console

from usagelens import paths
from usagelens.auth import (
    AccountIdentity,
    CredentialStore,
    OAuthCredential,
    ResolveOptions,
    cycle_to_next_account,
    ensure_fresh,
    poll_for_token,
    request_device_session,
    switch_candidates,
)
from usagelens.config import CONFIG_PATH, load_config, save_config, set_config_value
from usagelens.errors import RefreshFailed, UsageLensError
from usagelens.providers.copilot import write_usage_token
from usagelens.snapshot import PROVIDER_ALIASES, collect_snapshots, snapshot_to_json

CURRENT_ACCOUNT_LABELS = ("openai", "codex")


async def _login_copilot(console: Console) -> None:
    async with httpx.AsyncClient(timeout=30.0) as client:
        session = await request_device_session(client)
        console.print(f"Open [bold cyan]{session.verification_uri}[/] and enter code [bold]{session.user_code}[/]")
        with console.status("Waiting for authorization..."):
            token = await poll_for_token(client, session)
    target = write_usage_token(paths.copilot_usage_token_path(), token)
    console.print(f"[green]Copilot authorized.[/] Token saved to {target}")


def _oauth_record(credential: OAuthCredential) -> dict[str, object]:
    return {
        "type": "oauth",
        "access": credential.access,
        "refresh": credential.refresh,
        "expires": credential.expires,
        "accountId": credential.account_id,
    }


async def _switch_account(
    console: Console,
    store: CredentialStore,
    order: int | None,
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> None:
    records = store.load().records
    candidates = switch_candidates(records, store.load_accounts())

    current_record = next((records[k] for k in CURRENT_ACCOUNT_LABELS if records.get(k)), None)
    current = AccountIdentity.from_record(current_record) if current_record else None
    selection = cycle_to_next_account(candidates, current, order)

    credential = selection.selected.credential
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=timeout)
    try:
        credential = await ensure_fresh(http, credential)
    except RefreshFailed as exc:
        console.print(f"[yellow]Token refresh failed, keeping stored token:[/] {exc}")
    finally:
        if owns_client:
            await http.aclose()

    record = _oauth_record(credential)
    # Keep the named copy in step so the next switch still recognises it.
    if credential is not selection.selected.credential and not selection.selected.is_fallback:
        store.write_account(selection.selected.label, record)
    target = store.write("openai", record)
    previous = f" (was #{selection.previous_order} {selection.previous_label})" if selection.previous_order else ""
    console.print(
        f"Switched to account #{selection.selected_order}/{selection.total} "
        f"[bold]{selection.selected.label}[/]{previous}; saved to {target}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(prog="usagelens")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    usage = sub.add_parser("usage")
    usage.add_argument("provider", nargs="?", help=f"one of: {', '.join(sorted(PROVIDER_ALIASES))}")
    usage.add_argument("--rotate", action="store_true", help="report every stored OpenAI account")

    login = sub.add_parser("login")
    login.add_argument("target", choices=["copilot"])

    switch = sub.add_parser("switch")
    switch.add_argument("order", nargs="?", type=int)

    sub.add_parser("health")

    config = sub.add_parser("config")
    config_sub = config.add_subparsers(dest="config_cmd")
    config_sub.add_parser("show")
    config_set = config_sub.add_parser("set")
    config_set.add_argument("key")
    config_set.add_argument("value")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cmd = args.cmd or "usage"
    console = Console()
    err_console = Console(stderr=True)

    try:
        cfg = load_config()

        if cmd == "usage":
            options = ResolveOptions(rotate_accounts=getattr(args, "rotate", False) or cfg.general.rotate_accounts)
            snapshots = asyncio.run(collect_snapshots(getattr(args, "provider", None), options, config=cfg))
            print(snapshot_to_json(snapshots))
            return

        if cmd == "login":
            asyncio.run(_login_copilot(console))
            return

        if cmd == "switch":
            asyncio.run(_switch_account(console, CredentialStore(), args.order, cfg.timeout_seconds))
            return

        if cmd == "health":
            store = CredentialStore()
            checks = {
                "config": str(CONFIG_PATH),
                "auth_paths": [str(p) for p in store.auth_paths],
                "auth_write_path": str(store.write_path),
                "claude_credentials": str(store.claude_path),
                "openai_accounts": str(store.accounts_path),
                "copilot_token": str(paths.copilot_usage_token_path()),
                "platform": platform.platform(),
            }
            print(json.dumps(checks, indent=2))
            return

        if cmd == "config":
            if args.config_cmd == "show":
                print(json.dumps(asdict(cfg), indent=2, default=str))
                return
            if args.config_cmd == "set":
                try:
                    set_config_value(cfg, args.key, args.value)
                except ValueError as exc:
                    parser.error(str(exc))
                save_config(cfg)
                print(f"updated {args.key}")
                return
            parser.error("config requires show or set")
    except UsageLensError as exc:
        err_console.print(f"[bold red]error:[/] {exc}")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        raise SystemExit(130)

    parser.error("unknown command")


if __name__ == "__main__":
    main()
