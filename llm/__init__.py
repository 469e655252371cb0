"""
LLM Conversation Module.

This module handles:
- LLM provider abstraction (Bedrock, OpenAI)
- SPIN phase state machine and prompt construction
- The plan -> write -> check -> repair pipeline
- Customer-support conversations
- Conversation state storage and per-key serialization
"""

from .orchestrator import ConsultativeEngine, TurnResult
from .support_engine import SupportEngine, SupportState, SupportTurnResult
from .conversation_service import ConversationService, SupportService
from .conversation_store import ConversationStateStore, InMemoryConversationStateStore
from .prompt_templates import PromptTemplates
from .session_lock import KeyedLockManager

__all__ = [
    "ConsultativeEngine",
    "TurnResult",
    "SupportEngine",
    "SupportState",
    "SupportTurnResult",
    "ConversationService",
    "SupportService",
    "ConversationStateStore",
    "InMemoryConversationStateStore",
    "PromptTemplates",
    "KeyedLockManager",
]
