from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Mapping, Union

from usagelens.models import ProviderName

logger = logging.getLogger(__name__)

OAUTH_TYPES = frozenset({"oauth", "token"})


@dataclass(frozen=True)
class OAuthCredential:
    access: str
    refresh: str | None = None
    # Epoch milliseconds, as the host stores it.
    expires: int | None = None
    account_id: str | None = None
    enterprise_url: str | None = None
    label: str | None = None


@dataclass(frozen=True)
class ApiKeyCredential:
    key: str
    label: str | None = None


ProviderCredential = Union[OAuthCredential, ApiKeyCredential]


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    labels: tuple[str, ...]
    requires_oauth: bool
    build: Callable[[Mapping[str, object], str], ProviderCredential | None]
    multi_account: bool = False


@dataclass(frozen=True)
class ResolvedEntry:
    provider_id: str
    credential: ProviderCredential


@dataclass(frozen=True)
class ResolveOptions:
    rotate_accounts: bool = False


@dataclass(frozen=True)
class AccountIdentity:
    access: str | None = None
    refresh: str | None = None
    expires: int | None = None
    account_id: str | None = None
    key: str | None = None

    @classmethod
    def from_record(cls, record: Mapping[str, object]) -> AccountIdentity:
        return cls(
            access=_opt_str(record.get("access")),
            refresh=_opt_str(record.get("refresh")),
            expires=_opt_int(record.get("expires")),
            account_id=_opt_str(record.get("accountId")),
            key=_opt_str(record.get("key")),
        )

    @classmethod
    def from_credential(cls, credential: ProviderCredential) -> AccountIdentity:
        if isinstance(credential, ApiKeyCredential):
            return cls(key=credential.key)
        return cls(
            access=credential.access,
            refresh=credential.refresh,
            expires=credential.expires,
            account_id=credential.account_id,
        )

    def fingerprint(self) -> tuple[str, str, str]:
        return (self.account_id or "", self.access or self.key or "", self.refresh or "")


@dataclass(frozen=True)
class AccountCandidate:
    label: str
    credential: OAuthCredential
    is_fallback: bool = False

    @property
    def identity(self) -> AccountIdentity:
        return AccountIdentity.from_credential(self.credential)


def _opt_str(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _opt_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


def build_oauth(record: Mapping[str, object], label: str) -> OAuthCredential | None:
    access = _opt_str(record.get("access"))
    if access is None:
        return None
    return OAuthCredential(
        access=access,
        refresh=_opt_str(record.get("refresh")),
        expires=_opt_int(record.get("expires")),
        account_id=_opt_str(record.get("accountId")),
        enterprise_url=_opt_str(record.get("enterpriseUrl")),
        label=label,
    )


def build_api_key(record: Mapping[str, object], label: str) -> ApiKeyCredential | None:
    key = _opt_str(record.get("key")) or _opt_str(record.get("access"))
    if key is None:
        return None
    return ApiKeyCredential(key=key, label=label)


CODEX = ProviderDescriptor(
    id=ProviderName.CODEX.value,
    labels=("codex", "openai"),
    requires_oauth=True,
    build=build_oauth,
    multi_account=True,
)

DESCRIPTORS: tuple[ProviderDescriptor, ...] = (
    CODEX,
    ProviderDescriptor(
        id=ProviderName.ANTHROPIC.value,
        labels=("anthropic", "claude"),
        requires_oauth=True,
        build=build_oauth,
    ),
    ProviderDescriptor(
        id=ProviderName.ZAI.value,
        labels=("zai-coding-plan", "zai", "zhipuai"),
        requires_oauth=False,
        build=build_api_key,
    ),
    ProviderDescriptor(
        id=ProviderName.OPENROUTER.value,
        labels=("openrouter",),
        requires_oauth=False,
        build=build_api_key,
    ),
)


def _declared_type_conflicts(descriptor: ProviderDescriptor, record: Mapping[str, object]) -> bool:
    declared = record.get("type")
    return descriptor.requires_oauth and bool(declared) and declared not in OAUTH_TYPES


def looks_oauth_shaped(record: object) -> bool:
    if not isinstance(record, dict):
        return False
    declared = record.get("type")
    if declared and declared not in OAUTH_TYPES:
        return False
    return _opt_str(record.get("access")) is not None and _opt_str(record.get("refresh")) is not None


def _resolve_single(raw: Mapping[str, Mapping[str, object]], descriptor: ProviderDescriptor) -> ProviderCredential | None:
    label = next((k for k in descriptor.labels if raw.get(k)), None)
    if label is None:
        return None
    record = raw[label]
    if _declared_type_conflicts(descriptor, record):
        logger.debug("skipping %s: label %r declares type %r", descriptor.id, label, record.get("type"))
        return None
    credential = descriptor.build(record, label)
    if credential is None:
        logger.debug("skipping %s: label %r has no usable token", descriptor.id, label)
    return credential


def same_account(a: AccountIdentity, b: AccountIdentity) -> bool:
    # A refreshed copy keeps its refresh token but not its access token.
    if any(a.fingerprint()) and a.fingerprint() == b.fingerprint():
        return True
    return bool(a.refresh and a.refresh == b.refresh) or bool(a.access and a.access == b.access)


def account_candidates(
    raw: Mapping[str, Mapping[str, object]],
    accounts: Mapping[str, Mapping[str, object]] | None = None,
    descriptor: ProviderDescriptor = CODEX,
) -> list[AccountCandidate]:
    """Every distinct account for a multi-account provider.

    Named accounts come only from ``accounts`` (the account list file) and
    keep their file order. The host's fallback labels in ``raw`` are appended
    after them, and only when they hold an account not already named.
    """
    candidates: list[AccountCandidate] = []

    def add(label: str, record: Mapping[str, object], is_fallback: bool) -> None:
        credential = descriptor.build(record, label)
        if not isinstance(credential, OAuthCredential):
            return
        candidate = AccountCandidate(label=label, credential=credential, is_fallback=is_fallback)
        if any(same_account(c.identity, candidate.identity) for c in candidates):
            return
        candidates.append(candidate)

    for label, record in (accounts or {}).items():
        if looks_oauth_shaped(record):
            add(label, record, is_fallback=False)
        else:
            logger.debug("skipping account %r: not an oauth record", label)

    for label in descriptor.labels:
        record = raw.get(label)
        if not isinstance(record, dict) or not record or _declared_type_conflicts(descriptor, record):
            continue
        add(label, record, is_fallback=True)

    return candidates


def switch_candidates(
    raw: Mapping[str, Mapping[str, object]],
    accounts: Mapping[str, Mapping[str, object]] | None = None,
) -> list[AccountCandidate]:
    """Accounts ``switch`` cycles through: the named list, else the host's own account."""
    candidates = account_candidates(raw, accounts)
    named = [c for c in candidates if not c.is_fallback]
    return named or candidates


def resolve(
    raw: Mapping[str, Mapping[str, object]],
    options: ResolveOptions | None = None,
    descriptors: tuple[ProviderDescriptor, ...] = DESCRIPTORS,
    accounts: Mapping[str, Mapping[str, object]] | None = None,
) -> list[ResolvedEntry]:
    opts = options or ResolveOptions()
    entries: list[ResolvedEntry] = []

    for descriptor in descriptors:
        if descriptor.multi_account and opts.rotate_accounts:
            for candidate in account_candidates(raw, accounts, descriptor):
                entries.append(ResolvedEntry(descriptor.id, candidate.credential))
            continue
        credential = _resolve_single(raw, descriptor)
        if credential is not None:
            entries.append(ResolvedEntry(descriptor.id, credential))

    return entries
