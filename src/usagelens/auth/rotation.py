from __future__ import annotations

from dataclasses import dataclass

from usagelens.auth.registry import AccountCandidate, AccountIdentity
from usagelens.errors import OutOfRangeSelection

# Tunable; only the ordering refresh > account id > access > expiry matters.
REFRESH_WEIGHT = 16
ACCOUNT_ID_WEIGHT = 8
ACCESS_WEIGHT = 4
EXPIRES_WEIGHT = 1


@dataclass(frozen=True)
class AccountSelection:
    selected: AccountCandidate
    selected_order: int
    total: int
    previous_label: str | None = None
    previous_order: int | None = None


def match_score(candidate: AccountIdentity, current: AccountIdentity) -> int:
    score = 0
    if candidate.refresh and candidate.refresh == current.refresh:
        score += REFRESH_WEIGHT
    if candidate.account_id and candidate.account_id == current.account_id:
        score += ACCOUNT_ID_WEIGHT
    candidate_token = candidate.access or candidate.key
    if candidate_token and candidate_token == (current.access or current.key):
        score += ACCESS_WEIGHT
    if candidate.expires and candidate.expires == current.expires:
        score += EXPIRES_WEIGHT
    if score == 0 and any(candidate.fingerprint()) and candidate.fingerprint() == current.fingerprint():
        score = 1
    return score


def find_current_index(candidates: list[AccountCandidate], current: AccountIdentity | None) -> int:
    if current is None:
        return -1
    best_index = -1
    best_score = 0
    for i, candidate in enumerate(candidates):
        score = match_score(candidate.identity, current)
        if score > best_score:
            best_score = score
            best_index = i
    return best_index


def cycle_to_next_account(
    candidates: list[AccountCandidate],
    current: AccountIdentity | None,
    order: int | None = None,
) -> AccountSelection:
    """Pick the account after ``current``, wrapping, or the 1-based ``order`` one."""
    total = len(candidates)
    current_index = find_current_index(candidates, current)

    if order is not None:
        if isinstance(order, bool) or not isinstance(order, int) or order < 1 or order > total:
            raise OutOfRangeSelection(order, total)
        target = order - 1
    else:
        if total == 0:
            raise OutOfRangeSelection(1, 0)
        target = (current_index + 1) % total

    return AccountSelection(
        selected=candidates[target],
        selected_order=target + 1,
        total=total,
        previous_label=candidates[current_index].label if current_index >= 0 else None,
        previous_order=current_index + 1 if current_index >= 0 else None,
    )
