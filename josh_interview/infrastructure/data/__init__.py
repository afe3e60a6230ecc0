"""
Data management infrastructure for interview conversations.
"""

from .store import (
    ConversationStore,
    InMemoryConversationStore,
    JsonFileConversationStore,
    MessageRecord,
    ProfileEventRecord,
    UserConversation,
)

__all__ = [
    'ConversationStore',
    'InMemoryConversationStore',
    'JsonFileConversationStore',
    'MessageRecord',
    'ProfileEventRecord',
    'UserConversation',
]
