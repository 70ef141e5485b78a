from __future__ import annotations

import os
import sys
from pathlib import Path


def app_data_path() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library/Application Support/opencode"
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA") or home / "AppData/Roaming") / "opencode"
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data) / "opencode"
    return home / ".local/share/opencode"


def possible_auth_paths() -> list[Path]:
    """Auth files to check, highest priority first."""
    home = Path.home()
    paths: list[Path] = []
    if sys.platform == "darwin":
        # opencode on macOS keeps Linux-style paths; Application Support is the fallback.
        paths.append(home / ".local/share/opencode/auth.json")
        paths.append(home / "Library/Application Support/opencode/auth.json")
        paths.append(home / ".codex/auth.json")
    elif sys.platform == "win32":
        paths.append(app_data_path() / "auth.json")
    else:
        xdg_data = os.environ.get("XDG_DATA_HOME")
        if xdg_data:
            paths.append(Path(xdg_data) / "opencode/auth.json")
        paths.append(home / ".local/share/opencode/auth.json")
        paths.append(home / ".codex/auth.json")

    unique: list[Path] = []
    for p in paths:
        if p not in unique:
            unique.append(p)
    return unique


def claude_credentials_path() -> Path:
    return Path.home() / ".claude/credentials.json"


def copilot_usage_token_path() -> Path:
    return app_data_path() / "copilot-usage-token.json"


def openai_accounts_path() -> Path:
    return app_data_path() / "openai.json"
