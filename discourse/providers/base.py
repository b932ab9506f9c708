"""Abstract base and error taxonomy for chat-completion providers."""

from abc import ABC, abstractmethod


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class TransientServiceError(ProviderError):
    """Rate limited by the service. Retried by the completion gateway."""


class FatalServiceError(ProviderError):
    """Non-retryable failure, or retries exhausted."""


class AIProvider(ABC):
    """Abstract base for all chat-completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openai', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Return the completion text for an ordered list of chat messages.

        Args:
            messages: Sequence of {"role": ..., "content": ...} dicts. Roles are
                "system", "user" or "assistant".

        Returns:
            The generated text, never empty.

        Raises:
            TransientServiceError: When the service rate-limits the call.
            FatalServiceError: On any other API failure, timeout, or empty response.
        """
        ...


def split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Separate system messages from the conversational ones.

    Returns:
        (joined system text, remaining user/assistant messages)
    """
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    rest = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), rest
