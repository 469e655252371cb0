"""
Completion service interface.

The conversation engines only depend on this protocol, so providers can
be swapped (or faked in tests) without touching the pipeline.
"""

from typing import Dict, List, Optional, Protocol, runtime_checkable


class CompletionError(Exception):
    """A completion call failed (network, provider error, empty output)."""

    def __init__(self, message: str, provider: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.provider = provider
        self.cause = cause


@runtime_checkable
class CompletionService(Protocol):
    """Turns a message list into text."""

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> str:
        """
        Args:
            messages: role/content dicts; a leading "system" message is allowed
            model: model id override
            temperature: sampling temperature
            max_tokens: output token limit
            json_mode: ask the provider for a JSON object

        Raises:
            CompletionError: the call failed or returned nothing
        """
        ...
