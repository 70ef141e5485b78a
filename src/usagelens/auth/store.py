from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import json
import logging
import os
from typing import Mapping

from usagelens import paths

logger = logging.getLogger(__name__)

RawRecords = dict[str, dict[str, object]]

STRING_FIELDS = ("type", "access", "refresh", "key", "accountId", "enterpriseUrl")
CLAUDE_TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"


@dataclass
class LoadedCredentials:
    records: RawRecords = field(default_factory=dict)
    diagnostics: list[str] = field(default_factory=list)


def _is_codex_cli_file(path: Path) -> bool:
    return ".codex" in path.parts


def _valid_record(value: object) -> bool:
    if not isinstance(value, dict):
        return False
    return all(value.get(k) is None or isinstance(value.get(k), str) for k in STRING_FIELDS)


def parse_codex_cli_auth(data: Mapping[str, object]) -> dict[str, object] | None:
    tokens = data.get("tokens")
    if not isinstance(tokens, dict) or not tokens.get("access_token"):
        return None
    record: dict[str, object] = {"type": "oauth", "access": tokens["access_token"]}
    if tokens.get("account_id"):
        record["accountId"] = tokens["account_id"]
    if tokens.get("refresh_token"):
        record["refresh"] = tokens["refresh_token"]
    return record


def parse_claude_credentials(data: Mapping[str, object]) -> dict[str, object] | None:
    oauth = data.get("claudeAiOauth")
    if not isinstance(oauth, dict) or not oauth.get("accessToken"):
        return None
    record: dict[str, object] = {"type": "oauth", "access": oauth["accessToken"]}
    if oauth.get("refreshToken"):
        record["refresh"] = oauth["refreshToken"]
    if isinstance(oauth.get("expiresAt"), (int, float)):
        record["expires"] = oauth["expiresAt"]
    return record


def _write_json_atomic(path: Path, data: Mapping[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    tmp.replace(path)


class CredentialStore:
    """Key-value credential file(s) shared with the host.

    ``load`` reads every known file on each call and merges them, lower
    priority first so earlier paths win. ``write`` updates one label in the
    primary auth file and leaves other labels untouched; files are replaced
    whole, never rewritten in place.
    """

    def __init__(
        self,
        auth_paths: list[Path] | None = None,
        claude_path: Path | None = None,
        accounts_path: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.auth_paths = list(auth_paths) if auth_paths is not None else paths.possible_auth_paths()
        self.claude_path = claude_path or paths.claude_credentials_path()
        self.accounts_path = accounts_path or paths.openai_accounts_path()
        self.env = os.environ if env is None else env

    def load(self) -> LoadedCredentials:
        loaded = LoadedCredentials()
        loaded.diagnostics.append("Auth paths checked: " + ", ".join(str(p) for p in self.auth_paths))

        claude = self._read_json(self.claude_path, loaded.diagnostics, "Claude credentials file")
        if claude is not None:
            record = parse_claude_credentials(claude)
            if record:
                loaded.records["anthropic"] = record
                loaded.diagnostics.append(f"Claude credentials loaded from {self.claude_path}")

        for path in reversed(self.auth_paths):
            data = self._read_json(path, loaded.diagnostics)
            if data is None:
                continue
            if _is_codex_cli_file(path):
                record = parse_codex_cli_auth(data)
                if record is None:
                    loaded.diagnostics.append(f"Invalid Codex auth in {path}")
                    continue
                loaded.records["openai"] = record
                loaded.diagnostics.append(f"Codex CLI auth loaded from {path}")
                continue
            if not all(_valid_record(v) for v in data.values()):
                loaded.diagnostics.append(f"Auth file failed schema validation: {path}")
                continue
            loaded.records.update({label: dict(v) for label, v in data.items()})
            loaded.diagnostics.append(f"Loaded auth from {path}")

        token = self.env.get(CLAUDE_TOKEN_ENV)
        if token:
            loaded.records["anthropic"] = {"type": "oauth", "access": token}
            loaded.diagnostics.append(f"Anthropic token taken from ${CLAUDE_TOKEN_ENV}")

        return loaded

    def load_accounts(self) -> RawRecords:
        diagnostics: list[str] = []
        data = self._read_json(self.accounts_path, diagnostics, "OpenAI accounts file")
        for line in diagnostics:
            logger.debug(line)
        if data is None:
            return {}
        return {label: dict(v) for label, v in data.items() if isinstance(v, dict)}

    @property
    def write_path(self) -> Path:
        writable = [p for p in self.auth_paths if not _is_codex_cli_file(p)]
        for p in writable:
            if p.exists():
                return p
        if writable:
            return writable[0]
        return paths.app_data_path() / "auth.json"

    def write(self, label: str, record: Mapping[str, object]) -> Path:
        return self._merge_label(self.write_path, label, record)

    def write_account(self, label: str, record: Mapping[str, object]) -> Path:
        """Update one named account in the account list file."""
        return self._merge_label(self.accounts_path, label, record)

    @staticmethod
    def _merge_label(target: Path, label: str, record: Mapping[str, object]) -> Path:
        current: dict[str, object] = {}
        if target.exists():
            try:
                existing = json.loads(target.read_text())
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("overwriting unreadable credential file %s: %s", target, exc)
            else:
                if isinstance(existing, dict):
                    current = existing
        current[label] = {k: v for k, v in record.items() if v is not None}
        _write_json_atomic(target, current)
        logger.info("stored credential %r in %s", label, target)
        return target

    @staticmethod
    def _read_json(path: Path, diagnostics: list[str], kind: str = "auth file") -> dict | None:
        if not path.exists():
            diagnostics.append(f"Missing {kind}: {path}")
            return None
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            diagnostics.append(f"Failed to read {kind} {path}: {exc}")
            return None
        if not isinstance(data, dict):
            diagnostics.append(f"{kind[0].upper()}{kind[1:]} is not a JSON object: {path}")
            return None
        return data
