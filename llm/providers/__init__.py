"""
LLM Provider implementations.
"""

from .base import CompletionError, CompletionService
from .bedrock import BedrockProvider
from .openai_provider import OpenAIProvider

__all__ = ["CompletionError", "CompletionService", "BedrockProvider", "OpenAIProvider"]
