"""
Conversation and document context for agent turns.
"""

from .store import (
    ContextStore,
    ConversationEntry,
    Document,
    InMemoryContextStore,
    SupabaseContextStore,
    create_store,
)
from .retriever import ContextBundle, ContextRetriever

__all__ = [
    "ContextStore",
    "ConversationEntry",
    "Document",
    "InMemoryContextStore",
    "SupabaseContextStore",
    "create_store",
    "ContextBundle",
    "ContextRetriever",
]
