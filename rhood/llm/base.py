"""Abstract base class for completion providers."""

from abc import ABC, abstractmethod

DEFAULT_MAX_TOKENS = 4000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT_SECONDS = 30.0


class CompletionProvider(ABC):
    """Base class that every completion backend must implement.

    Backends differ only in request envelope, auth and response field path;
    callers see one `complete()` returning the raw completion text.
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'openai')."""

    @abstractmethod
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
        """Send a prompt to the model and return the raw response text.

        Args:
            user_prompt: The rendered user prompt.
            model: Override the provider's default model. None uses default.
            system: System prompt. None sends no system instructions.
            max_tokens: Completion token budget.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds, enforced by the SDK client.

        Raises:
            ValueError: If the API key environment variable is not set.
            ImportError: If the provider SDK is not installed.
        """

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    @abstractmethod
    def env_var(self) -> str:
        """Environment variable name for the API key."""
