from __future__ import annotations


class UsageLensError(Exception):
    pass


class ConfigError(UsageLensError):
    """Configuration file exists but cannot be parsed."""


class AuthServerError(UsageLensError):
    """Device-code or token endpoint unreachable, failing, or returning a malformed body."""


class DeviceFlowDenied(UsageLensError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"device flow failed: {reason}")
        self.reason = reason


class RefreshFailed(UsageLensError):
    pass


class OutOfRangeSelection(UsageLensError):
    def __init__(self, order: int, total: int) -> None:
        super().__init__(f"order number {order} is out of range (1-{total})")
        self.order = order
        self.total = total
