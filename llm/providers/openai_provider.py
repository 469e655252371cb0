"""
OpenAI LLM Provider.
"""

import logging
from typing import Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from .base import CompletionError

logger = logging.getLogger(__name__)


class OpenAIProvider:
    """
    OpenAI completion provider.

    Uses the async client; JSON mode maps to response_format json_object.
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: str = DEFAULT_MODEL,
        timeout: float = 20.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (falls back to OPENAI_API_KEY)
            model_id: Default model ID
            timeout: Request timeout in seconds
            client: Pre-built client, mainly for tests
        """
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=1)
        self.model_id = model_id

        logger.info(f"OpenAI provider initialized: {model_id}")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 1024,
        json_mode: bool = False,
    ) -> str:
        kwargs = {
            "model": model or self.model_id,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error(f"OpenAI completion failed: {e}")
            raise CompletionError(str(e), provider="openai", cause=e) from e

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise CompletionError("Empty response from OpenAI", provider="openai")
        return content.strip()
