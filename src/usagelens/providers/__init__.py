from usagelens.providers.anthropic import AnthropicProvider
from usagelens.providers.base import FetchContext, UsageProvider
from usagelens.providers.codex import CodexProvider
from usagelens.providers.copilot import CopilotProvider
from usagelens.providers.openrouter import OpenRouterProvider
from usagelens.providers.proxy import ProxyProvider
from usagelens.providers.zai import ZaiProvider

PROVIDERS: dict[str, UsageProvider] = {
    p.name.value: p
    for p in (
        CodexProvider(),
        AnthropicProvider(),
        CopilotProvider(),
        ProxyProvider(),
        ZaiProvider(),
        OpenRouterProvider(),
    )
}

__all__ = [
    "PROVIDERS",
    "AnthropicProvider",
    "CodexProvider",
    "CopilotProvider",
    "FetchContext",
    "OpenRouterProvider",
    "ProxyProvider",
    "UsageProvider",
    "ZaiProvider",
]
