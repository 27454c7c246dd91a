"""Conversation Index module."""

from .index import ConversationIndex, IConversationIndex

__all__ = ["ConversationIndex", "IConversationIndex"]
