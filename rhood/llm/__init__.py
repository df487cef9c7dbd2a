"""Completion provider registry with lazy loading.

Usage:
    from rhood.llm import get_provider

    provider = get_provider("openai")
    raw = provider.complete(user_prompt, system=system_prompt)
"""

import importlib

from rhood.llm.base import CompletionProvider

__all__ = ["CompletionProvider", "available_providers", "get_provider"]

# Lazy registry: maps provider name -> (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "anthropic": ("rhood.llm.anthropic", "AnthropicProvider"),
    "openai": ("rhood.llm.openai", "OpenAIProvider"),
}


def get_provider(name: str) -> CompletionProvider:
    """Instantiate and return a completion provider by name.

    Raises:
        ValueError: If the provider name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown LLM provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls()  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
