from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib
import tomli_w

from usagelens.errors import ConfigError
from usagelens.models import ProviderName


HOME = Path.home()
CONFIG_PATH = HOME / ".config/usagelens/config.toml"

DEFAULT_TIMEOUT_SECONDS = 10.0
MIN_TIMEOUT_SECONDS = 1.0
MAX_TIMEOUT_SECONDS = 60.0

# Keys older configs used for the same provider.
PROVIDER_KEY_ALIASES = {"openai": ProviderName.CODEX.value}


@dataclass
class ProviderConfig:
    enabled: bool = True


@dataclass
class AppConfig:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    rotate_accounts: bool = False


@dataclass
class ProxyConfig:
    endpoint: str = "http://localhost:8000"
    api_key: str = ""


@dataclass
class ZaiConfig:
    endpoint: str = "https://api.z.ai"


@dataclass
class Config:
    general: AppConfig = field(default_factory=AppConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    zai: ZaiConfig = field(default_factory=ZaiConfig)
    providers: dict[str, ProviderConfig] = field(
        default_factory=lambda: {name.value: ProviderConfig(enabled=True) for name in ProviderName}
    )

    def is_enabled(self, provider_id: str) -> bool:
        pc = self.providers.get(provider_id)
        return True if pc is None else pc.enabled

    @property
    def timeout_seconds(self) -> float:
        return clamp_timeout(self.general.timeout_seconds)


def clamp_timeout(value: float | int | None) -> float:
    if value is None:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_SECONDS
    if seconds != seconds:  # NaN
        return DEFAULT_TIMEOUT_SECONDS
    return max(MIN_TIMEOUT_SECONDS, min(MAX_TIMEOUT_SECONDS, seconds))


def _as_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def _providers_from_dict(raw: dict) -> dict[str, ProviderConfig]:
    providers = {name.value: ProviderConfig(enabled=True) for name in ProviderName}
    for key, value in raw.items():
        provider_id = PROVIDER_KEY_ALIASES.get(key, key)
        if isinstance(value, dict):
            enabled = _as_bool(value.get("enabled"), True)
        else:
            enabled = _as_bool(value, True)
        providers[provider_id] = ProviderConfig(enabled=enabled)
    return providers


def load_config(path: Path = CONFIG_PATH) -> Config:
    if not path.exists():
        cfg = Config()
        save_config(cfg, path)
        return cfg

    try:
        raw = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc

    general_raw = raw.get("general", {})
    proxy_raw = raw.get("proxy", {})
    zai_raw = raw.get("zai", {})
    providers_raw = raw.get("providers", {})
    if not all(isinstance(section, dict) for section in (general_raw, proxy_raw, zai_raw, providers_raw)):
        raise ConfigError(f"failed to parse {path}: sections must be tables")

    return Config(
        general=AppConfig(
            timeout_seconds=clamp_timeout(general_raw.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            rotate_accounts=_as_bool(general_raw.get("rotate_accounts"), False),
        ),
        proxy=ProxyConfig(
            endpoint=str(proxy_raw.get("endpoint", "http://localhost:8000")),
            api_key=str(proxy_raw.get("api_key", "")),
        ),
        zai=ZaiConfig(endpoint=str(zai_raw.get("endpoint", "https://api.z.ai"))),
        providers=_providers_from_dict(providers_raw),
    )


def save_config(cfg: Config, path: Path = CONFIG_PATH) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "general": {
            "timeout_seconds": cfg.general.timeout_seconds,
            "rotate_accounts": cfg.general.rotate_accounts,
        },
        "proxy": {
            "endpoint": cfg.proxy.endpoint,
            "api_key": cfg.proxy.api_key,
        },
        "zai": {
            "endpoint": cfg.zai.endpoint,
        },
        "providers": {name: {"enabled": pc.enabled} for name, pc in cfg.providers.items()},
    }
    path.write_text(tomli_w.dumps(payload))


def set_config_value(cfg: Config, dotted_key: str, value: str) -> None:
    if dotted_key == "general.timeout_seconds":
        cfg.general.timeout_seconds = clamp_timeout(float(value))
        return
    if dotted_key == "general.rotate_accounts":
        cfg.general.rotate_accounts = _as_bool(value, cfg.general.rotate_accounts)
        return
    if dotted_key == "proxy.endpoint":
        cfg.proxy.endpoint = value
        return
    if dotted_key == "proxy.api_key":
        cfg.proxy.api_key = value
        return
    if dotted_key == "zai.endpoint":
        cfg.zai.endpoint = value
        return

    keys = dotted_key.split(".")
    if len(keys) == 3 and keys[0] == "providers" and keys[2] == "enabled":
        provider = PROVIDER_KEY_ALIASES.get(keys[1], keys[1])
        if provider not in {name.value for name in ProviderName}:
            raise ValueError(f"unknown provider: {keys[1]}")
        cfg.providers[provider] = ProviderConfig(enabled=_as_bool(value, True))
        return
    raise ValueError(f"unsupported key: {dotted_key}")
