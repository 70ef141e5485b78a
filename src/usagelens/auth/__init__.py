from usagelens.auth.device import DeviceAuthorizationSession, poll_for_token, request_device_session
from usagelens.auth.refresh import ensure_fresh
from usagelens.auth.registry import (
    AccountCandidate,
    AccountIdentity,
    ApiKeyCredential,
    OAuthCredential,
    ResolvedEntry,
    ResolveOptions,
    account_candidates,
    resolve,
    switch_candidates,
)
from usagelens.auth.rotation import AccountSelection, cycle_to_next_account
from usagelens.auth.store import CredentialStore, LoadedCredentials

__all__ = [
    "AccountCandidate",
    "AccountIdentity",
    "AccountSelection",
    "ApiKeyCredential",
    "CredentialStore",
    "DeviceAuthorizationSession",
    "LoadedCredentials",
    "OAuthCredential",
    "ResolveOptions",
    "ResolvedEntry",
    "account_candidates",
    "cycle_to_next_account",
    "ensure_fresh",
    "poll_for_token",
    "request_device_session",
    "resolve",
    "switch_candidates",
]
