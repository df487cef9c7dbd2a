"""Anthropic Claude completion provider."""

import logging
import os

from rhood.llm.base import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
    CompletionProvider,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(CompletionProvider):
    """Completion provider using the Anthropic messages API."""

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-3-sonnet-20240229"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def complete(
        self,
        user_prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> str:
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            msg = "ANTHROPIC_API_KEY environment variable is required"
            raise ValueError(msg)

        try:
            import anthropic
        except ImportError:
            msg = "anthropic is required for AI matching. Install with: pip install anthropic"
            raise ImportError(msg) from None

        client = anthropic.Anthropic(api_key=api_key, timeout=timeout)
        use_model = model or self.default_model

        kwargs = {}
        if system is not None:
            kwargs["system"] = system

        logger.info("Sending prompt to Anthropic API (%s)...", use_model)
        message = client.messages.create(
            model=use_model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": user_prompt}],
            **kwargs,
        )

        return "".join(
            block.text for block in message.content if getattr(block, "type", "") == "text"
        )
