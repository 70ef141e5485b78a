from usagelens.auth.registry import (
    ApiKeyCredential,
    OAuthCredential,
    ResolveOptions,
    account_candidates,
    resolve,
    switch_candidates,
)


def _by_provider(entries):
    out = {}
    for entry in entries:
        out.setdefault(entry.provider_id, []).append(entry.credential)
    return out


def test_resolve_builds_typed_credentials() -> None:
    raw = {
        "openai": {"type": "oauth", "access": "a1", "refresh": "r1", "accountId": "acct", "expires": 1700000000000},
        "claude": {"type": "oauth", "access": "c1"},
        "zai": {"type": "api", "key": "zk"},
        "openrouter": {"key": "ork"},
    }
    found = _by_provider(resolve(raw))

    assert found["codex"] == [
        OAuthCredential(access="a1", refresh="r1", expires=1700000000000, account_id="acct", label="openai")
    ]
    assert found["anthropic"][0].access == "c1"
    assert found["zai-coding-plan"] == [ApiKeyCredential(key="zk", label="zai")]
    assert found["openrouter"] == [ApiKeyCredential(key="ork", label="openrouter")]


def test_resolve_prefers_first_label() -> None:
    raw = {"openai": {"access": "second"}, "codex": {"access": "first"}}
    found = _by_provider(resolve(raw))
    assert [c.access for c in found["codex"]] == ["first"]


def test_resolve_skips_conflicting_type_for_oauth_provider() -> None:
    raw = {"anthropic": {"type": "api", "key": "sk-ant"}}
    assert resolve(raw) == []


def test_resolve_drops_record_missing_mandatory_field() -> None:
    raw = {"codex": {"type": "oauth", "refresh": "r1"}, "openrouter": {"type": "api"}}
    assert resolve(raw) == []


def test_resolve_empty_records_yields_nothing() -> None:
    assert resolve({}) == []


def test_rotation_mode_collects_listed_accounts() -> None:
    raw = {
        "openai": {"type": "oauth", "access": "a1", "refresh": "r1"},
        "anthropic": {"type": "oauth", "access": "c1", "refresh": "cr"},
    }
    accounts = {
        "work": {"type": "oauth", "access": "a2", "refresh": "r2"},
        "notes": {"foo": "bar"},
        "apikey": {"type": "api", "access": "x", "refresh": "y"},
    }
    found = _by_provider(resolve(raw, ResolveOptions(rotate_accounts=True), accounts=accounts))
    assert [c.label for c in found["codex"]] == ["work", "openai"]
    assert len(found["anthropic"]) == 1


def test_host_oauth_labels_are_not_codex_accounts() -> None:
    raw = {
        "openai": {"type": "oauth", "access": "a1", "refresh": "r1"},
        "google": {"type": "oauth", "access": "ya29.google", "refresh": "g-refresh"},
        "github-copilot": {"type": "oauth", "access": "gho", "refresh": "gho"},
    }
    assert [c.label for c in account_candidates(raw)] == ["openai"]


def test_named_account_keeps_its_position_over_fallback() -> None:
    accounts = {
        "one": {"type": "oauth", "access": "a1", "refresh": "r1"},
        "two": {"type": "oauth", "access": "a2", "refresh": "r2", "accountId": "x"},
        "three": {"type": "oauth", "access": "a3", "refresh": "r3"},
    }
    raw = {"openai": {"type": "oauth", "access": "a2", "refresh": "r2", "accountId": "x"}}

    candidates = account_candidates(raw, accounts)
    assert [c.label for c in candidates] == ["one", "two", "three"]
    assert not any(c.is_fallback for c in candidates)


def test_refreshed_fallback_is_not_a_second_account() -> None:
    accounts = {"work": {"type": "oauth", "access": "old", "refresh": "r1"}}
    raw = {"openai": {"type": "oauth", "access": "new", "refresh": "r1", "expires": 1700000000000}}
    assert [c.label for c in account_candidates(raw, accounts)] == ["work"]


def test_dedup_is_idempotent() -> None:
    raw = {
        "codex": {"access": "a1", "refresh": "r1"},
        "openai": {"access": "a1", "refresh": "r1"},
    }
    accounts = {
        "alt": {"type": "oauth", "access": "a2", "refresh": "r2"},
        "alt-copy": {"type": "oauth", "access": "a2", "refresh": "r2"},
    }
    first = account_candidates(raw, accounts)
    second = account_candidates(raw, accounts)

    assert len(first) == 2
    assert {c.identity.fingerprint() for c in first} == {c.identity.fingerprint() for c in second}


def test_switch_candidates_prefer_the_account_list() -> None:
    raw = {"openai": {"type": "oauth", "access": "elsewhere", "refresh": "rx"}}
    accounts = {"work": {"type": "oauth", "access": "a2", "refresh": "r2"}}

    assert [c.label for c in switch_candidates(raw, accounts)] == ["work"]
    assert [c.label for c in switch_candidates(raw, {})] == ["openai"]
