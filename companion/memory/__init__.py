"""Conversational memory: rolling chat history plus semantic retrieval.

Import the manager from here; backends live under
``companion.memory.vector_store``.
"""

from .keys import ConversationKey, derive_key, is_valid_key
from .manager import MemoryManager, MemoryState, build_memory_manager, get_instance

__all__ = [
    "ConversationKey",
    "derive_key",
    "is_valid_key",
    "MemoryManager",
    "MemoryState",
    "build_memory_manager",
    "get_instance",
]
